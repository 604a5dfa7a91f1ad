from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscription_codes import SubscriptionCode
from app.db.repo.code_purchases_repo import CodePurchasesRepo
from app.db.repo.subscription_codes_repo import SubscriptionCodesRepo
from app.db.repo.user_subscriptions_repo import UserSubscriptionsRepo
from app.db.repo.users_repo import UsersRepo
from app.db.session import SessionLocal
from app.economy.billing.audit import record_transaction_best_effort
from app.economy.codes.errors import (
    AlreadySubscribedError,
    CodeAlreadyRedeemedError,
    CodeExpiredError,
    CodeNotFoundError,
    CodeUserNotFoundError,
)
from app.economy.codes.generator import normalize_code
from app.economy.codes.state import ensure_redeemable, has_access
from app.economy.codes.types import CodePreview, RedemptionResult
from app.economy.subscriptions.service import SubscriptionService

logger = structlog.get_logger(__name__)


class RedemptionService:
    @staticmethod
    async def _get_code(session: AsyncSession, *, raw_code: str) -> SubscriptionCode:
        normalized_code = normalize_code(raw_code)
        if not normalized_code:
            raise CodeNotFoundError

        code = await SubscriptionCodesRepo.get_by_code(session, normalized_code)
        if code is None:
            raise CodeNotFoundError
        return code

    @staticmethod
    async def _persist_lazy_expiry(*, code_id: int, now_utc: datetime) -> None:
        async with SessionLocal.begin() as expiry_session:
            expired = await SubscriptionCodesRepo.mark_expired_if_due(
                expiry_session,
                code_id=code_id,
                now_utc=now_utc,
            )
        if expired:
            logger.info("subscription_code_expired_on_access", code_id=code_id)

    @staticmethod
    async def validate(
        session: AsyncSession,
        *,
        raw_code: str,
        now_utc: datetime | None = None,
    ) -> CodePreview:
        now_utc = now_utc or datetime.now(timezone.utc)
        code = await RedemptionService._get_code(session, raw_code=raw_code)
        ensure_redeemable(code.status, code.expires_at, now_utc=now_utc)

        purchase = await CodePurchasesRepo.get_by_id(session, code.purchase_id)
        return CodePreview(
            code=code.code,
            status=code.status,
            plan_name=code.plan_name,
            duration_days=code.duration_days,
            expires_at=code.expires_at,
            unit_amount=(purchase.unit_amount if purchase is not None else None),
            currency=(purchase.currency if purchase is not None else None),
        )

    @staticmethod
    async def redeem(
        session: AsyncSession,
        *,
        user_id: int,
        raw_code: str,
        now_utc: datetime | None = None,
    ) -> RedemptionResult:
        now_utc = now_utc or datetime.now(timezone.utc)
        user = await UsersRepo.get_by_id(session, user_id)
        if user is None:
            raise CodeUserNotFoundError

        code = await RedemptionService._get_code(session, raw_code=raw_code)
        try:
            ensure_redeemable(code.status, code.expires_at, now_utc=now_utc)
        except CodeExpiredError:
            if code.status == "available":
                await RedemptionService._persist_lazy_expiry(code_id=code.id, now_utc=now_utc)
            raise

        subscription = await UserSubscriptionsRepo.get_by_user_id(session, user_id)
        if subscription is not None and has_access(subscription.status):
            raise AlreadySubscribedError

        redeemed_code = await SubscriptionCodesRepo.mark_redeemed(
            session,
            code_id=code.id,
            user_id=user_id,
            now_utc=now_utc,
        )
        if redeemed_code is None:
            current = await SubscriptionCodesRepo.get_by_id(
                session,
                code.id,
                populate_existing=True,
            )
            if current is None:
                raise CodeNotFoundError
            ensure_redeemable(current.status, current.expires_at, now_utc=now_utc)
            raise CodeAlreadyRedeemedError

        period = await SubscriptionService.activate_from_code(
            session,
            user_id=user_id,
            code=redeemed_code,
            now_utc=now_utc,
        )

        await record_transaction_best_effort(
            session,
            stripe_event_id=f"code_redemption_{redeemed_code.id}_{int(now_utc.timestamp())}",
            raw_event_type="code.redeemed",
            transaction_type="code_redeemed",
            status="succeeded",
            amount=0,
            now_utc=now_utc,
            user_id=user_id,
            purchase_id=redeemed_code.purchase_id,
            stripe_price_id=redeemed_code.stripe_price_id,
            stripe_product_id=redeemed_code.stripe_product_id,
            period_start=period.period_start,
            period_end=period.period_end,
            description=f"Subscription code redeemed: {redeemed_code.plan_name}",
            metadata_={"code_id": redeemed_code.id, "code": redeemed_code.code},
        )

        logger.info(
            "subscription_code_redeemed",
            code_id=redeemed_code.id,
            user_id=user_id,
            duration_days=redeemed_code.duration_days,
        )
        return RedemptionResult(
            code_id=redeemed_code.id,
            code=redeemed_code.code,
            user_id=user_id,
            status=redeemed_code.status,
            plan_name=redeemed_code.plan_name,
            duration_days=redeemed_code.duration_days,
            period_start=period.period_start,
            period_end=period.period_end,
        )
