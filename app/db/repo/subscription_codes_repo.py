from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import Interval, func, literal_column, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscription_codes import SubscriptionCode
from app.db.models.user_subscriptions import UserSubscription
from app.db.models.users import User

ACCESS_SUBSCRIPTION_STATUSES = ("active", "trialing")


def _redemption_period_end():
    one_day = literal_column("INTERVAL '1 day'", type_=Interval)
    return SubscriptionCode.redeemed_at + one_day * SubscriptionCode.duration_days


class SubscriptionCodesRepo:
    @staticmethod
    async def list_all_codes(session: AsyncSession) -> set[str]:
        result = await session.execute(select(SubscriptionCode.code))
        return set(result.scalars().all())

    @staticmethod
    async def insert_codes(
        session: AsyncSession,
        *,
        rows: Sequence[dict[str, object]],
    ) -> list[str]:
        if not rows:
            return []
        stmt = (
            postgresql_insert(SubscriptionCode)
            .values(list(rows))
            .on_conflict_do_nothing(index_elements=[SubscriptionCode.code])
            .returning(SubscriptionCode.code)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def get_by_id(
        session: AsyncSession,
        code_id: int,
        *,
        populate_existing: bool = False,
    ) -> SubscriptionCode | None:
        return await session.get(SubscriptionCode, code_id, populate_existing=populate_existing)

    @staticmethod
    async def get_by_code(session: AsyncSession, code: str) -> SubscriptionCode | None:
        stmt = select(SubscriptionCode).where(SubscriptionCode.code == code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def count_by_purchase(session: AsyncSession, *, purchase_id: UUID) -> int:
        stmt = select(func.count(SubscriptionCode.id)).where(SubscriptionCode.purchase_id == purchase_id)
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def mark_redeemed(
        session: AsyncSession,
        *,
        code_id: int,
        user_id: int,
        now_utc: datetime,
    ) -> SubscriptionCode | None:
        stmt = (
            update(SubscriptionCode)
            .where(
                SubscriptionCode.id == code_id,
                SubscriptionCode.status == "available",
                SubscriptionCode.expires_at >= now_utc,
            )
            .values(
                status="redeemed",
                redeemed_by_user_id=user_id,
                redeemed_at=now_utc,
                previously_redeemed_by_user_id=None,
                updated_at=now_utc,
            )
            .returning(SubscriptionCode)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def mark_expired_if_due(
        session: AsyncSession,
        *,
        code_id: int,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(SubscriptionCode)
            .where(
                SubscriptionCode.id == code_id,
                SubscriptionCode.status == "available",
                SubscriptionCode.expires_at < now_utc,
            )
            .values(status="expired", updated_at=now_utc)
            .returning(SubscriptionCode.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def expire_due_codes(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = (
            update(SubscriptionCode)
            .where(
                SubscriptionCode.status == "available",
                SubscriptionCode.expires_at < now_utc,
            )
            .values(status="expired", updated_at=now_utc)
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0)

    @staticmethod
    async def revoke_available(
        session: AsyncSession,
        *,
        code_id: int,
        reason: str,
        now_utc: datetime,
    ) -> SubscriptionCode | None:
        stmt = (
            update(SubscriptionCode)
            .where(SubscriptionCode.id == code_id, SubscriptionCode.status == "available")
            .values(
                status="revoked",
                revoked_at=now_utc,
                revoked_reason=reason,
                updated_at=now_utc,
            )
            .returning(SubscriptionCode)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def release_redeemed(
        session: AsyncSession,
        *,
        code_id: int,
        reason: str,
        now_utc: datetime,
    ) -> SubscriptionCode | None:
        stmt = (
            update(SubscriptionCode)
            .where(SubscriptionCode.id == code_id, SubscriptionCode.status == "redeemed")
            .values(
                status="available",
                previously_redeemed_by_user_id=SubscriptionCode.redeemed_by_user_id,
                redeemed_by_user_id=None,
                redeemed_at=None,
                revoked_at=now_utc,
                revoked_reason=reason,
                updated_at=now_utc,
            )
            .returning(SubscriptionCode)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def restore_redemption(
        session: AsyncSession,
        *,
        code_id: int,
        user_id: int,
        now_utc: datetime,
    ) -> SubscriptionCode | None:
        stmt = (
            update(SubscriptionCode)
            .where(
                SubscriptionCode.id == code_id,
                SubscriptionCode.status == "available",
                SubscriptionCode.previously_redeemed_by_user_id == user_id,
            )
            .values(
                status="redeemed",
                redeemed_by_user_id=user_id,
                redeemed_at=now_utc,
                previously_redeemed_by_user_id=None,
                revoked_at=None,
                revoked_reason=None,
                updated_at=now_utc,
            )
            .returning(SubscriptionCode)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def make_available(
        session: AsyncSession,
        *,
        code_id: int,
        now_utc: datetime,
    ) -> SubscriptionCode | None:
        stmt = (
            update(SubscriptionCode)
            .where(SubscriptionCode.id == code_id, SubscriptionCode.status == "revoked")
            .values(
                status="available",
                revoked_at=None,
                revoked_reason=None,
                previously_redeemed_by_user_id=None,
                updated_at=now_utc,
            )
            .returning(SubscriptionCode)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def has_other_active_redemption(
        session: AsyncSession,
        *,
        user_id: int,
        exclude_code_id: int,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            select(SubscriptionCode.id)
            .where(
                SubscriptionCode.redeemed_by_user_id == user_id,
                SubscriptionCode.status == "redeemed",
                SubscriptionCode.id != exclude_code_id,
                _redemption_period_end() > now_utc,
            )
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def list_codes(
        session: AsyncSession,
        *,
        issuer_user_id: int | None = None,
        purchase_id: UUID | None = None,
        status: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[tuple[SubscriptionCode, str | None]], int]:
        filters = []
        if issuer_user_id is not None:
            filters.append(SubscriptionCode.issuer_user_id == issuer_user_id)
        if purchase_id is not None:
            filters.append(SubscriptionCode.purchase_id == purchase_id)
        if status is not None:
            filters.append(SubscriptionCode.status == status)
        if search:
            pattern = f"%{search}%"
            filters.append(
                or_(
                    SubscriptionCode.code.ilike(pattern),
                    User.email.ilike(pattern),
                )
            )

        count_stmt = (
            select(func.count(SubscriptionCode.id))
            .select_from(SubscriptionCode)
            .outerjoin(User, User.id == SubscriptionCode.redeemed_by_user_id)
            .where(*filters)
        )
        total = int((await session.execute(count_stmt)).scalar_one() or 0)

        stmt = (
            select(SubscriptionCode, User.email)
            .outerjoin(User, User.id == SubscriptionCode.redeemed_by_user_id)
            .where(*filters)
            .order_by(SubscriptionCode.created_at.desc(), SubscriptionCode.id.desc())
            .offset(max(0, offset))
            .limit(max(1, limit))
        )
        result = await session.execute(stmt)
        rows = [(code, email) for code, email in result.all()]
        return rows, total

    @staticmethod
    async def count_by_status(
        session: AsyncSession,
        *,
        issuer_user_id: int | None = None,
    ) -> dict[str, int]:
        stmt = select(SubscriptionCode.status, func.count(SubscriptionCode.id)).group_by(
            SubscriptionCode.status
        )
        if issuer_user_id is not None:
            stmt = stmt.where(SubscriptionCode.issuer_user_id == issuer_user_id)
        result = await session.execute(stmt)
        return {str(status): int(count) for status, count in result.all()}

    @staticmethod
    async def count_redeemed_without_access(session: AsyncSession, *, now_utc: datetime) -> int:
        access_exists = (
            select(UserSubscription.id)
            .where(
                UserSubscription.user_id == SubscriptionCode.redeemed_by_user_id,
                UserSubscription.status.in_(ACCESS_SUBSCRIPTION_STATUSES),
            )
            .exists()
        )
        stmt = select(func.count(SubscriptionCode.id)).where(
            SubscriptionCode.status == "redeemed",
            _redemption_period_end() > now_utc,
            ~access_exists,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_available_past_deadline(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = select(func.count(SubscriptionCode.id)).where(
            SubscriptionCode.status == "available",
            SubscriptionCode.expires_at < now_utc,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)
