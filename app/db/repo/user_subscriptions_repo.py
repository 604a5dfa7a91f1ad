from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscription_codes import SubscriptionCode
from app.db.models.user_subscriptions import UserSubscription

ACCESS_STATUSES = ("active", "trialing")


def _not_older_than(event_at: datetime):
    return or_(UserSubscription.last_event_at.is_(None), UserSubscription.last_event_at <= event_at)


class UserSubscriptionsRepo:
    @staticmethod
    async def get_by_user_id(
        session: AsyncSession,
        user_id: int,
        *,
        populate_existing: bool = False,
    ) -> UserSubscription | None:
        stmt = select(UserSubscription).where(UserSubscription.user_id == user_id)
        if populate_existing:
            stmt = stmt.execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_stripe_subscription_id(
        session: AsyncSession,
        stripe_subscription_id: str,
    ) -> UserSubscription | None:
        stmt = select(UserSubscription).where(
            UserSubscription.stripe_subscription_id == stripe_subscription_id
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def activate_from_code(
        session: AsyncSession,
        *,
        user_id: int,
        code: SubscriptionCode,
        period_start: datetime,
        period_end: datetime,
        now_utc: datetime,
    ) -> int | None:
        insert_stmt = postgresql_insert(UserSubscription).values(
            user_id=user_id,
            source="CODE",
            stripe_subscription_id=None,
            stripe_price_id=code.stripe_price_id,
            stripe_product_id=code.stripe_product_id,
            plan_name=code.plan_name,
            status="active",
            current_period_start=period_start,
            current_period_end=period_end,
            cancel_at_period_end=True,
            canceled_at=None,
            ended_at=None,
            subscription_code_id=code.id,
            duration_days=code.duration_days,
            last_event_at=now_utc,
            created_at=now_utc,
            updated_at=now_utc,
        )
        excluded = insert_stmt.excluded
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[UserSubscription.user_id],
            set_={
                "source": excluded.source,
                "stripe_subscription_id": None,
                "stripe_price_id": excluded.stripe_price_id,
                "stripe_product_id": excluded.stripe_product_id,
                "plan_name": excluded.plan_name,
                "status": excluded.status,
                "current_period_start": excluded.current_period_start,
                "current_period_end": excluded.current_period_end,
                "cancel_at_period_end": excluded.cancel_at_period_end,
                "canceled_at": None,
                "ended_at": None,
                "subscription_code_id": excluded.subscription_code_id,
                "duration_days": excluded.duration_days,
                "last_event_at": excluded.last_event_at,
                "updated_at": excluded.updated_at,
            },
            where=UserSubscription.status.not_in(ACCESS_STATUSES),
        ).returning(UserSubscription.id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def cancel_code_entitlement(
        session: AsyncSession,
        *,
        user_id: int,
        code_id: int,
        now_utc: datetime,
    ) -> str | None:
        stmt = (
            update(UserSubscription)
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.source == "CODE",
                UserSubscription.subscription_code_id == code_id,
                UserSubscription.status.in_(ACCESS_STATUSES),
            )
            .values(
                status="canceled",
                canceled_at=now_utc,
                ended_at=now_utc,
                last_event_at=now_utc,
                updated_at=now_utc,
            )
            .returning(UserSubscription.status)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert_from_billing(
        session: AsyncSession,
        *,
        user_id: int,
        values: dict[str, object],
        event_at: datetime,
        now_utc: datetime,
    ) -> int | None:
        row = {
            **values,
            "user_id": user_id,
            "source": "BILLING",
            "subscription_code_id": None,
            "duration_days": None,
            "last_event_at": event_at,
            "created_at": now_utc,
            "updated_at": now_utc,
        }
        insert_stmt = postgresql_insert(UserSubscription).values(**row)
        excluded = insert_stmt.excluded
        set_ = {
            column: getattr(excluded, column)
            for column in row
            if column not in {"user_id", "created_at"}
        }
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[UserSubscription.user_id],
            set_=set_,
            where=_not_older_than(event_at),
        ).returning(UserSubscription.id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def update_for_subscription(
        session: AsyncSession,
        *,
        stripe_subscription_id: str,
        values: dict[str, object],
        event_at: datetime,
        now_utc: datetime,
        from_statuses: tuple[str, ...] | None = None,
    ) -> int | None:
        conditions = [
            UserSubscription.stripe_subscription_id == stripe_subscription_id,
            _not_older_than(event_at),
        ]
        if from_statuses is not None:
            conditions.append(UserSubscription.status.in_(from_statuses))

        stmt = (
            update(UserSubscription)
            .where(*conditions)
            .values(**values, last_event_at=event_at, updated_at=now_utc)
            .returning(UserSubscription.user_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def expire_code_entitlements(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = (
            update(UserSubscription)
            .where(
                UserSubscription.source == "CODE",
                UserSubscription.status == "active",
                UserSubscription.current_period_end <= now_utc,
            )
            .values(
                status="canceled",
                ended_at=UserSubscription.current_period_end,
                updated_at=now_utc,
            )
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0)

    @staticmethod
    async def count_code_access_without_redeemed_code(session: AsyncSession) -> int:
        stmt = (
            select(func.count(UserSubscription.id))
            .select_from(UserSubscription)
            .outerjoin(SubscriptionCode, SubscriptionCode.id == UserSubscription.subscription_code_id)
            .where(
                UserSubscription.source == "CODE",
                UserSubscription.status.in_(ACCESS_STATUSES),
                or_(
                    SubscriptionCode.id.is_(None),
                    SubscriptionCode.status != "redeemed",
                    SubscriptionCode.redeemed_by_user_id != UserSubscription.user_id,
                ),
            )
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)
