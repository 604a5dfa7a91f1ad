from __future__ import annotations

from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscription_codes import SubscriptionCode
from app.db.repo.user_subscriptions_repo import UserSubscriptionsRepo
from app.economy.codes.errors import AlreadySubscribedError
from app.economy.codes.state import SUBSCRIPTION_STATUSES, has_access
from app.economy.subscriptions.types import EntitlementPeriod, SubscriptionSnapshot

logger = structlog.get_logger(__name__)


class SubscriptionService:
    @staticmethod
    async def has_active_access(session: AsyncSession, *, user_id: int) -> bool:
        subscription = await UserSubscriptionsRepo.get_by_user_id(session, user_id)
        return subscription is not None and has_access(subscription.status)

    @staticmethod
    async def activate_from_code(
        session: AsyncSession,
        *,
        user_id: int,
        code: SubscriptionCode,
        now_utc: datetime,
    ) -> EntitlementPeriod:
        period = EntitlementPeriod(
            period_start=now_utc,
            period_end=now_utc + timedelta(days=code.duration_days),
        )
        subscription_id = await UserSubscriptionsRepo.activate_from_code(
            session,
            user_id=user_id,
            code=code,
            period_start=period.period_start,
            period_end=period.period_end,
            now_utc=now_utc,
        )
        if subscription_id is None:
            raise AlreadySubscribedError

        logger.info(
            "code_entitlement_activated",
            user_id=user_id,
            code_id=code.id,
            period_end=period.period_end.isoformat(),
        )
        return period

    @staticmethod
    async def cancel_code_entitlement(
        session: AsyncSession,
        *,
        user_id: int,
        code_id: int,
        now_utc: datetime,
    ) -> bool:
        canceled = await UserSubscriptionsRepo.cancel_code_entitlement(
            session,
            user_id=user_id,
            code_id=code_id,
            now_utc=now_utc,
        )
        if canceled is None:
            logger.info("code_entitlement_cancel_skipped", user_id=user_id, code_id=code_id)
            return False
        return True

    @staticmethod
    async def apply_billing_snapshot(
        session: AsyncSession,
        *,
        user_id: int,
        snapshot: SubscriptionSnapshot,
        event_at: datetime,
        now_utc: datetime,
    ) -> bool:
        if snapshot.status not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"unsupported subscription status: {snapshot.status}")

        applied_id = await UserSubscriptionsRepo.upsert_from_billing(
            session,
            user_id=user_id,
            values=snapshot.as_values(),
            event_at=event_at,
            now_utc=now_utc,
        )
        if applied_id is None:
            logger.info(
                "billing_subscription_update_stale",
                user_id=user_id,
                stripe_subscription_id=snapshot.stripe_subscription_id,
                event_at=event_at.isoformat(),
            )
            return False
        return True

    @staticmethod
    async def update_billing_subscription(
        session: AsyncSession,
        *,
        stripe_subscription_id: str,
        values: dict[str, object],
        event_at: datetime,
        now_utc: datetime,
        from_statuses: tuple[str, ...] | None = None,
    ) -> int | None:
        status = values.get("status")
        if status is not None and status not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"unsupported subscription status: {status}")

        return await UserSubscriptionsRepo.update_for_subscription(
            session,
            stripe_subscription_id=stripe_subscription_id,
            values=values,
            event_at=event_at,
            now_utc=now_utc,
            from_statuses=from_statuses,
        )

    @staticmethod
    async def expire_code_entitlements(session: AsyncSession, *, now_utc: datetime) -> int:
        return await UserSubscriptionsRepo.expire_code_entitlements(session, now_utc=now_utc)
