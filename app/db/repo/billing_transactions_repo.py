from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.billing_transactions import BillingTransaction


class BillingTransactionsRepo:
    @staticmethod
    async def try_create(session: AsyncSession, *, values: dict[str, object]) -> int | None:
        stmt = (
            postgresql_insert(BillingTransaction)
            .values({getattr(BillingTransaction, key): value for key, value in values.items()})
            .on_conflict_do_nothing(index_elements=[BillingTransaction.stripe_event_id])
            .returning(BillingTransaction.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def exists_for_event(session: AsyncSession, *, stripe_event_id: str) -> bool:
        stmt = select(BillingTransaction.id).where(BillingTransaction.stripe_event_id == stripe_event_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def get_by_charge_id(
        session: AsyncSession,
        *,
        stripe_charge_id: str,
    ) -> BillingTransaction | None:
        stmt = (
            select(BillingTransaction)
            .where(
                BillingTransaction.stripe_charge_id == stripe_charge_id,
                BillingTransaction.type != "refund",
            )
            .order_by(BillingTransaction.created_at.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_payment_intent_id(
        session: AsyncSession,
        *,
        stripe_payment_intent_id: str,
    ) -> BillingTransaction | None:
        stmt = (
            select(BillingTransaction)
            .where(
                BillingTransaction.stripe_payment_intent_id == stripe_payment_intent_id,
                BillingTransaction.type != "refund",
            )
            .order_by(BillingTransaction.created_at.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def apply_refund(
        session: AsyncSession,
        *,
        transaction_id: int,
        amount_refunded: int,
        fully_refunded: bool,
        now_utc: datetime,
    ) -> bool:
        values: dict[str, object] = {
            "amount_refunded": amount_refunded,
            "updated_at": now_utc,
        }
        if fully_refunded:
            values["status"] = "refunded"
        stmt = (
            update(BillingTransaction)
            .where(BillingTransaction.id == transaction_id)
            .values(**values)
            .returning(BillingTransaction.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
