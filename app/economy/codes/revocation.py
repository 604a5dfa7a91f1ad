from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import NoReturn

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscription_codes import SubscriptionCode
from app.db.repo.subscription_codes_repo import SubscriptionCodesRepo
from app.economy.billing.audit import record_transaction_best_effort
from app.economy.codes.errors import (
    CodeNotFoundError,
    CodeProvenanceConflictError,
    CodeTransitionError,
)
from app.economy.codes.state import effective_code_status, ensure_code_transition
from app.economy.codes.types import CodeState
from app.economy.subscriptions.service import SubscriptionService

DEFAULT_REVOKE_REASON = "Revoked by admin"

logger = structlog.get_logger(__name__)


def as_code_state(code: SubscriptionCode, *, period_end: datetime | None = None) -> CodeState:
    if period_end is None and code.redeemed_at is not None:
        period_end = code.redeemed_at + timedelta(days=code.duration_days)
    return CodeState(
        code_id=code.id,
        code=code.code,
        status=code.status,
        purchase_id=code.purchase_id,
        issuer_user_id=code.issuer_user_id,
        plan_name=code.plan_name,
        duration_days=code.duration_days,
        expires_at=code.expires_at,
        redeemed_by_user_id=code.redeemed_by_user_id,
        redeemed_at=code.redeemed_at,
        revoked_at=code.revoked_at,
        revoked_reason=code.revoked_reason,
        previously_redeemed_by_user_id=code.previously_redeemed_by_user_id,
        period_end=period_end,
    )


class RevocationService:
    @staticmethod
    async def _get_scoped_code(
        session: AsyncSession,
        *,
        code_id: int,
        issuer_user_id: int | None,
    ) -> SubscriptionCode:
        code = await SubscriptionCodesRepo.get_by_id(session, code_id)
        if code is None:
            raise CodeNotFoundError
        if issuer_user_id is not None and code.issuer_user_id != issuer_user_id:
            raise CodeNotFoundError
        return code

    @staticmethod
    async def _raise_transition_conflict(
        session: AsyncSession,
        *,
        code_id: int,
        action: str,
    ) -> NoReturn:
        current = await SubscriptionCodesRepo.get_by_id(session, code_id, populate_existing=True)
        if current is None:
            raise CodeNotFoundError
        ensure_code_transition(current.status, action)
        raise CodeTransitionError(f"Code changed concurrently, retry {action.replace('_', ' ')}")

    @staticmethod
    async def revoke(
        session: AsyncSession,
        *,
        code_id: int,
        reason: str | None = None,
        issuer_user_id: int | None = None,
        now_utc: datetime | None = None,
    ) -> CodeState:
        now_utc = now_utc or datetime.now(timezone.utc)
        code = await RevocationService._get_scoped_code(
            session,
            code_id=code_id,
            issuer_user_id=issuer_user_id,
        )
        current_status = effective_code_status(code.status, code.expires_at, now_utc=now_utc)
        ensure_code_transition(current_status, "revoke")

        resolved_reason = (reason or "").strip() or DEFAULT_REVOKE_REASON
        former_holder_id = code.redeemed_by_user_id
        if current_status == "available":
            updated = await SubscriptionCodesRepo.revoke_available(
                session,
                code_id=code.id,
                reason=resolved_reason,
                now_utc=now_utc,
            )
        else:
            updated = await SubscriptionCodesRepo.release_redeemed(
                session,
                code_id=code.id,
                reason=resolved_reason,
                now_utc=now_utc,
            )
        if updated is None:
            await RevocationService._raise_transition_conflict(
                session,
                code_id=code.id,
                action="revoke",
            )

        if former_holder_id is not None:
            await SubscriptionService.cancel_code_entitlement(
                session,
                user_id=former_holder_id,
                code_id=code.id,
                now_utc=now_utc,
            )

        logger.info(
            "subscription_code_revoked",
            code_id=code.id,
            previous_status=current_status,
            former_holder_id=former_holder_id,
            reason=resolved_reason,
        )
        return as_code_state(updated)

    @staticmethod
    async def reactivate(
        session: AsyncSession,
        *,
        code_id: int,
        issuer_user_id: int | None = None,
        now_utc: datetime | None = None,
    ) -> CodeState:
        now_utc = now_utc or datetime.now(timezone.utc)
        code = await RevocationService._get_scoped_code(
            session,
            code_id=code_id,
            issuer_user_id=issuer_user_id,
        )
        ensure_code_transition(
            effective_code_status(code.status, code.expires_at, now_utc=now_utc),
            "reactivate",
        )

        holder_id = code.previously_redeemed_by_user_id
        if holder_id is None:
            raise CodeProvenanceConflictError("Code has no previous holder to restore")

        if await SubscriptionCodesRepo.has_other_active_redemption(
            session,
            user_id=holder_id,
            exclude_code_id=code.id,
            now_utc=now_utc,
        ):
            raise CodeProvenanceConflictError(
                "Previous holder already has another active subscription code"
            )

        restored = await SubscriptionCodesRepo.restore_redemption(
            session,
            code_id=code.id,
            user_id=holder_id,
            now_utc=now_utc,
        )
        if restored is None:
            await RevocationService._raise_transition_conflict(
                session,
                code_id=code.id,
                action="reactivate",
            )

        period = await SubscriptionService.activate_from_code(
            session,
            user_id=holder_id,
            code=restored,
            now_utc=now_utc,
        )
        await record_transaction_best_effort(
            session,
            stripe_event_id=f"code_reactivation_{restored.id}_{int(now_utc.timestamp())}",
            raw_event_type="code.reactivated",
            transaction_type="code_reactivated",
            status="succeeded",
            amount=0,
            now_utc=now_utc,
            user_id=holder_id,
            purchase_id=restored.purchase_id,
            stripe_price_id=restored.stripe_price_id,
            stripe_product_id=restored.stripe_product_id,
            period_start=period.period_start,
            period_end=period.period_end,
            description=f"Subscription code reactivated: {restored.plan_name}",
            metadata_={"code_id": restored.id, "code": restored.code},
        )

        logger.info(
            "subscription_code_reactivated",
            code_id=restored.id,
            user_id=holder_id,
            period_end=period.period_end.isoformat(),
        )
        return as_code_state(restored, period_end=period.period_end)

    @staticmethod
    async def make_available(
        session: AsyncSession,
        *,
        code_id: int,
        issuer_user_id: int | None = None,
        now_utc: datetime | None = None,
    ) -> CodeState:
        now_utc = now_utc or datetime.now(timezone.utc)
        code = await RevocationService._get_scoped_code(
            session,
            code_id=code_id,
            issuer_user_id=issuer_user_id,
        )
        ensure_code_transition(code.status, "make_available")

        updated = await SubscriptionCodesRepo.make_available(
            session,
            code_id=code.id,
            now_utc=now_utc,
        )
        if updated is None:
            await RevocationService._raise_transition_conflict(
                session,
                code_id=code.id,
                action="make_available",
            )

        logger.info("subscription_code_made_available", code_id=code.id)
        return as_code_state(updated)
