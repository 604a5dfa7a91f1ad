from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.code_purchases import CodePurchase
from app.db.models.subscription_codes import SubscriptionCode


class CodePurchasesRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, purchase_id: UUID) -> CodePurchase | None:
        return await session.get(CodePurchase, purchase_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, purchase_id: UUID) -> CodePurchase | None:
        stmt = (
            select(CodePurchase)
            .where(CodePurchase.id == purchase_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_billing_refs(
        session: AsyncSession,
        *,
        stripe_subscription_id: str | None,
        stripe_checkout_session_id: str | None,
    ) -> CodePurchase | None:
        conditions = []
        if stripe_subscription_id:
            conditions.append(CodePurchase.stripe_subscription_id == stripe_subscription_id)
        if stripe_checkout_session_id:
            conditions.append(CodePurchase.stripe_checkout_session_id == stripe_checkout_session_id)
        if not conditions:
            return None

        stmt = select(CodePurchase).where(or_(*conditions)).order_by(CodePurchase.created_at.asc()).limit(1)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_stripe_subscription_id(
        session: AsyncSession,
        stripe_subscription_id: str,
    ) -> CodePurchase | None:
        stmt = select(CodePurchase).where(CodePurchase.stripe_subscription_id == stripe_subscription_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_create(session: AsyncSession, *, values: dict[str, object]) -> UUID | None:
        stmt = (
            postgresql_insert(CodePurchase)
            .values({getattr(CodePurchase, key): value for key, value in values.items()})
            .on_conflict_do_nothing()
            .returning(CodePurchase.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def mark_codes_generated(
        session: AsyncSession,
        *,
        purchase_id: UUID,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(CodePurchase)
            .where(CodePurchase.id == purchase_id, CodePurchase.codes_generated.is_(False))
            .values(codes_generated=True, updated_at=now_utc)
            .returning(CodePurchase.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def set_status(
        session: AsyncSession,
        *,
        purchase_id: UUID,
        from_statuses: tuple[str, ...],
        to_status: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(CodePurchase)
            .where(CodePurchase.id == purchase_id, CodePurchase.status.in_(from_statuses))
            .values(status=to_status, updated_at=now_utc)
            .returning(CodePurchase.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def mark_codes_review_required(
        session: AsyncSession,
        *,
        purchase_id: UUID,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(CodePurchase)
            .where(
                CodePurchase.id == purchase_id,
                CodePurchase.codes_generated.is_(False),
                CodePurchase.codes_review_required.is_(False),
            )
            .values(codes_review_required=True, updated_at=now_utc)
            .returning(CodePurchase.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def list_completed_without_codes_older_than(
        session: AsyncSession,
        *,
        older_than_utc: datetime,
        limit: int,
    ) -> list[CodePurchase]:
        stmt = (
            select(CodePurchase)
            .where(
                CodePurchase.status == "completed",
                CodePurchase.codes_generated.is_(False),
                CodePurchase.codes_review_required.is_(False),
                CodePurchase.created_at <= older_than_utc,
            )
            .order_by(CodePurchase.created_at.asc())
            .limit(max(1, limit))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def count_completed_without_codes_older_than(
        session: AsyncSession,
        *,
        older_than_utc: datetime,
    ) -> int:
        stmt = select(func.count(CodePurchase.id)).where(
            CodePurchase.status == "completed",
            CodePurchase.codes_generated.is_(False),
            CodePurchase.created_at <= older_than_utc,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_code_quantity_mismatches(session: AsyncSession) -> int:
        codes_count = (
            select(func.count(SubscriptionCode.id))
            .where(SubscriptionCode.purchase_id == CodePurchase.id)
            .scalar_subquery()
        )
        stmt = select(func.count(CodePurchase.id)).where(
            CodePurchase.codes_generated.is_(True),
            CodePurchase.quantity != codes_count,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_for_issuer(
        session: AsyncSession,
        *,
        issuer_user_id: int | None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[CodePurchase], int]:
        filters = []
        if issuer_user_id is not None:
            filters.append(CodePurchase.issuer_user_id == issuer_user_id)

        count_stmt = select(func.count(CodePurchase.id)).where(*filters)
        total = int((await session.execute(count_stmt)).scalar_one() or 0)

        stmt = (
            select(CodePurchase)
            .where(*filters)
            .order_by(CodePurchase.created_at.desc(), CodePurchase.id.desc())
            .offset(max(0, offset))
            .limit(max(1, limit))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all()), total

    @staticmethod
    async def get_issuer_stats(
        session: AsyncSession,
        *,
        issuer_user_id: int | None,
    ) -> dict[str, int]:
        completed = CodePurchase.status == "completed"
        stmt = select(
            func.count(CodePurchase.id),
            func.coalesce(func.sum(case((completed, 1), else_=0)), 0),
            func.coalesce(func.sum(case((completed, CodePurchase.total_amount), else_=0)), 0),
            func.coalesce(func.sum(case((completed, CodePurchase.quantity), else_=0)), 0),
        )
        if issuer_user_id is not None:
            stmt = stmt.where(CodePurchase.issuer_user_id == issuer_user_id)
        total, completed_total, spent_total, codes_total = (await session.execute(stmt)).one()
        return {
            "total": int(total or 0),
            "completed": int(completed_total or 0),
            "total_spent": int(spent_total or 0),
            "total_codes_purchased": int(codes_total or 0),
        }

    @staticmethod
    async def update_metadata(
        session: AsyncSession,
        *,
        purchase_id: UUID,
        metadata: dict[str, object],
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(CodePurchase)
            .where(CodePurchase.id == purchase_id)
            .values(metadata_=metadata, updated_at=now_utc)
            .returning(CodePurchase.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
