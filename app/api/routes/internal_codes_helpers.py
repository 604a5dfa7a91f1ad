from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn

import structlog
from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.models.code_purchases import CodePurchase
from app.db.repo.users_repo import UsersRepo
from app.economy.codes.errors import CodeError
from app.economy.codes.types import CodeState
from app.economy.purchases.errors import PurchaseError
from app.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

from .internal_codes_models import CodeStateResponse, PurchaseResponse

logger = structlog.get_logger(__name__)

ADMIN_ROLES = frozenset({"ADMIN", "MANAGER"})

CODE_ERROR_STATUS = {
    "not_found": 404,
    "user_not_found": 404,
    "already_redeemed": 409,
    "revoked": 409,
    "expired": 410,
    "already_subscribed": 409,
    "invalid_transition": 409,
    "provenance_conflict": 409,
}
PURCHASE_ERROR_STATUS = {
    "not_found": 404,
    "issuer_not_found": 404,
    "validation_error": 422,
    "purchase_not_completed": 409,
    "codes_already_generated": 409,
    "billing_customer_missing": 409,
    "billing_provider_error": 502,
    "billing_provider_timeout": 504,
}


@dataclass(slots=True)
class AdminActor:
    user_id: int
    role: str

    @property
    def issuer_scope(self) -> int | None:
        # Admins see every issuer, managers only their own codes.
        return None if self.role == "ADMIN" else self.user_id


def _assert_internal_access(request: Request) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(
        request,
        trusted_proxies=settings.internal_api_trusted_proxies,
    )

    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_codes_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(
        request,
        expected_token=settings.internal_api_token,
    ):
        logger.warning(
            "internal_codes_auth_failed",
            reason="invalid_credentials",
            client_ip=client_ip,
        )
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


async def _resolve_admin_actor(session: AsyncSession, *, admin_user_id: int) -> AdminActor:
    user = await UsersRepo.get_by_id(session, admin_user_id)
    if user is None or user.role not in ADMIN_ROLES:
        logger.warning("internal_codes_actor_rejected", admin_user_id=admin_user_id)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})
    return AdminActor(user_id=user.id, role=user.role)


def _error_detail(code: str, message: str) -> dict[str, str]:
    return {"code": f"E_{code.upper()}", "message": message}


def _raise_code_error(exc: CodeError) -> NoReturn:
    status_code = CODE_ERROR_STATUS.get(exc.code, 409)
    raise HTTPException(status_code=status_code, detail=_error_detail(exc.code, exc.message)) from exc


def _raise_purchase_error(exc: PurchaseError) -> NoReturn:
    status_code = PURCHASE_ERROR_STATUS.get(exc.code, 409)
    if status_code >= 500:
        logger.warning("internal_codes_billing_provider_failed", error_code=exc.code)
    raise HTTPException(status_code=status_code, detail=_error_detail(exc.code, exc.message)) from exc


def _page_offset(*, page: int, limit: int) -> int:
    return (max(1, page) - 1) * limit


def _code_state_response(
    state: CodeState,
    *,
    redeemed_by_email: str | None = None,
) -> CodeStateResponse:
    return CodeStateResponse(
        code_id=state.code_id,
        code=state.code,
        status=state.status,
        purchase_id=state.purchase_id,
        issuer_user_id=state.issuer_user_id,
        plan_name=state.plan_name,
        duration_days=state.duration_days,
        expires_at=state.expires_at,
        redeemed_by_user_id=state.redeemed_by_user_id,
        redeemed_by_email=redeemed_by_email,
        redeemed_at=state.redeemed_at,
        revoked_at=state.revoked_at,
        revoked_reason=state.revoked_reason,
        previously_redeemed_by_user_id=state.previously_redeemed_by_user_id,
        period_end=state.period_end,
    )


def _purchase_response(purchase: CodePurchase) -> PurchaseResponse:
    return PurchaseResponse(
        id=purchase.id,
        issuer_user_id=purchase.issuer_user_id,
        source=purchase.source,
        status=purchase.status,
        plan_name=purchase.plan_name,
        quantity=purchase.quantity,
        unit_amount=purchase.unit_amount,
        total_amount=purchase.total_amount,
        currency=purchase.currency,
        duration_days=purchase.duration_days,
        codes_generated=purchase.codes_generated,
        codes_review_required=purchase.codes_review_required,
        stripe_subscription_id=purchase.stripe_subscription_id,
        paid_at=purchase.paid_at,
        created_at=purchase.created_at,
    )
