from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from fastapi import APIRouter, Header, HTTPException, Query, Request

from app.db.repo.code_purchases_repo import CodePurchasesRepo
from app.db.repo.subscription_codes_repo import SubscriptionCodesRepo
from app.db.session import SessionLocal
from app.economy.codes.errors import CodeError
from app.economy.codes.redemption import RedemptionService
from app.economy.codes.revocation import RevocationService, as_code_state
from app.economy.codes.state import CODE_STATUSES
from app.economy.purchases.checkout import create_bulk_checkout_session, create_portal_session
from app.economy.purchases.errors import PurchaseError
from app.economy.purchases.service import PurchaseService

from .internal_codes_helpers import (
    _assert_internal_access,
    _code_state_response,
    _error_detail,
    _page_offset,
    _purchase_response,
    _raise_code_error,
    _raise_purchase_error,
    _resolve_admin_actor,
)
from .internal_codes_models import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CodeGrantRequest,
    CodeGrantResponse,
    CodeIssueResponse,
    CodeListResponse,
    CodeRedeemRequest,
    CodeRedeemResponse,
    CodeRevokeRequest,
    CodeStateResponse,
    CodeStatsResponse,
    PortalSessionRequest,
    PortalSessionResponse,
    PurchaseListResponse,
)

router = APIRouter(tags=["internal", "codes"])
logger = structlog.get_logger(__name__)


@router.post("/internal/codes/redeem", response_model=CodeRedeemResponse)
async def redeem_code(payload: CodeRedeemRequest, request: Request) -> CodeRedeemResponse:
    _assert_internal_access(request)

    try:
        async with SessionLocal.begin() as session:
            result = await RedemptionService.redeem(
                session,
                user_id=payload.user_id,
                raw_code=payload.code,
                now_utc=datetime.now(timezone.utc),
            )
    except CodeError as exc:
        _raise_code_error(exc)

    return CodeRedeemResponse(
        code_id=result.code_id,
        code=result.code,
        status=result.status,
        plan_name=result.plan_name,
        duration_days=result.duration_days,
        period_start=result.period_start,
        period_end=result.period_end,
    )


@router.post("/internal/codes/grants", response_model=CodeGrantResponse)
async def grant_codes(
    payload: CodeGrantRequest,
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
) -> CodeGrantResponse:
    _assert_internal_access(request)

    try:
        async with SessionLocal.begin() as session:
            actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
            result = await PurchaseService.grant_codes(
                session,
                issuer_user_id=actor.user_id,
                months=payload.months,
                quantity=payload.quantity,
                now_utc=datetime.now(timezone.utc),
                plan_name=payload.plan_name,
            )
    except PurchaseError as exc:
        _raise_purchase_error(exc)

    logger.info(
        "internal_codes_granted",
        admin_user_id=admin_user_id,
        purchase_id=str(result.purchase_id),
        quantity=len(result.codes),
    )
    return CodeGrantResponse(
        purchase_id=result.purchase_id,
        plan_name=result.plan_name,
        duration_days=result.duration_days,
        codes=result.codes,
    )


@router.post("/internal/codes/checkout", response_model=CheckoutSessionResponse)
async def create_checkout(
    payload: CheckoutSessionRequest,
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
) -> CheckoutSessionResponse:
    _assert_internal_access(request)

    try:
        async with SessionLocal.begin() as session:
            actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
            result = await create_bulk_checkout_session(
                session,
                issuer_user_id=actor.user_id,
                stripe_price_id=payload.stripe_price_id,
                quantity=payload.quantity,
            )
    except PurchaseError as exc:
        _raise_purchase_error(exc)

    return CheckoutSessionResponse(
        session_id=result.session_id,
        url=result.url,
        quantity=result.quantity,
        duration_days=result.duration_days,
        unit_amount=result.unit_amount,
        currency=result.currency,
    )


@router.post("/internal/codes/portal", response_model=PortalSessionResponse)
async def create_portal(
    payload: PortalSessionRequest,
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
) -> PortalSessionResponse:
    _assert_internal_access(request)

    try:
        async with SessionLocal.begin() as session:
            actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
            url = await create_portal_session(
                session,
                issuer_user_id=actor.user_id,
                return_url=payload.return_url,
            )
    except PurchaseError as exc:
        _raise_purchase_error(exc)
    return PortalSessionResponse(url=url)


@router.get("/internal/codes", response_model=CodeListResponse)
async def list_codes(
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
    status: str | None = Query(default=None, max_length=16),
    search: str | None = Query(default=None, max_length=128),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
) -> CodeListResponse:
    _assert_internal_access(request)
    if status is not None and status not in CODE_STATUSES:
        raise HTTPException(
            status_code=422,
            detail=_error_detail("validation_error", f"Unknown code status: {status}"),
        )

    async with SessionLocal.begin() as session:
        actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
        rows, total = await SubscriptionCodesRepo.list_codes(
            session,
            issuer_user_id=actor.issuer_scope,
            status=status,
            search=(search or "").strip() or None,
            offset=_page_offset(page=page, limit=limit),
            limit=limit,
        )

    return CodeListResponse(
        codes=[
            _code_state_response(as_code_state(code), redeemed_by_email=email)
            for code, email in rows
        ],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/internal/codes/purchases", response_model=PurchaseListResponse)
async def list_purchases(
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> PurchaseListResponse:
    _assert_internal_access(request)

    async with SessionLocal.begin() as session:
        actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
        purchases, total = await CodePurchasesRepo.list_for_issuer(
            session,
            issuer_user_id=actor.issuer_scope,
            offset=_page_offset(page=page, limit=limit),
            limit=limit,
        )

    return PurchaseListResponse(
        purchases=[_purchase_response(purchase) for purchase in purchases],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/internal/codes/purchases/{purchase_id}/codes", response_model=CodeListResponse)
async def list_purchase_codes(
    purchase_id: UUID,
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=100, ge=1, le=200),
) -> CodeListResponse:
    _assert_internal_access(request)

    async with SessionLocal.begin() as session:
        actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
        purchase = await CodePurchasesRepo.get_by_id(session, purchase_id)
        if purchase is None or (
            actor.issuer_scope is not None and purchase.issuer_user_id != actor.issuer_scope
        ):
            raise HTTPException(
                status_code=404,
                detail=_error_detail("not_found", "Purchase not found"),
            )
        rows, total = await SubscriptionCodesRepo.list_codes(
            session,
            purchase_id=purchase_id,
            offset=_page_offset(page=page, limit=limit),
            limit=limit,
        )

    return CodeListResponse(
        codes=[
            _code_state_response(as_code_state(code), redeemed_by_email=email)
            for code, email in rows
        ],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/internal/codes/purchases/{purchase_id}/issue", response_model=CodeIssueResponse)
async def issue_purchase_codes(
    purchase_id: UUID,
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
) -> CodeIssueResponse:
    _assert_internal_access(request)

    try:
        async with SessionLocal.begin() as session:
            actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
            result = await PurchaseService.issue_codes(
                session,
                purchase_id=purchase_id,
                now_utc=datetime.now(timezone.utc),
                issuer_user_id=actor.issuer_scope,
            )
    except PurchaseError as exc:
        _raise_purchase_error(exc)

    return CodeIssueResponse(
        purchase_id=result.purchase_id,
        codes=result.codes,
        expires_at=result.expires_at,
    )


@router.get("/internal/codes/stats", response_model=CodeStatsResponse)
async def get_code_stats(
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
) -> CodeStatsResponse:
    _assert_internal_access(request)

    async with SessionLocal.begin() as session:
        actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
        purchase_stats = await CodePurchasesRepo.get_issuer_stats(
            session,
            issuer_user_id=actor.issuer_scope,
        )
        codes_by_status = await SubscriptionCodesRepo.count_by_status(
            session,
            issuer_user_id=actor.issuer_scope,
        )

    return CodeStatsResponse(
        purchases_total=purchase_stats["total"],
        purchases_completed=purchase_stats["completed"],
        total_spent=purchase_stats["total_spent"],
        total_codes_purchased=purchase_stats["total_codes_purchased"],
        codes_by_status={status: codes_by_status.get(status, 0) for status in CODE_STATUSES},
    )


@router.post("/internal/codes/{code_id}/revoke", response_model=CodeStateResponse)
async def revoke_code(
    code_id: int,
    payload: CodeRevokeRequest,
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
) -> CodeStateResponse:
    _assert_internal_access(request)

    try:
        async with SessionLocal.begin() as session:
            actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
            state = await RevocationService.revoke(
                session,
                code_id=code_id,
                reason=payload.reason,
                issuer_user_id=actor.issuer_scope,
                now_utc=datetime.now(timezone.utc),
            )
    except CodeError as exc:
        _raise_code_error(exc)
    return _code_state_response(state)


@router.post("/internal/codes/{code_id}/reactivate", response_model=CodeStateResponse)
async def reactivate_code(
    code_id: int,
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
) -> CodeStateResponse:
    _assert_internal_access(request)

    try:
        async with SessionLocal.begin() as session:
            actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
            state = await RevocationService.reactivate(
                session,
                code_id=code_id,
                issuer_user_id=actor.issuer_scope,
                now_utc=datetime.now(timezone.utc),
            )
    except CodeError as exc:
        _raise_code_error(exc)
    return _code_state_response(state)


@router.post("/internal/codes/{code_id}/make-available", response_model=CodeStateResponse)
async def make_code_available(
    code_id: int,
    request: Request,
    admin_user_id: int = Header(alias="X-Admin-User-Id", gt=0),
) -> CodeStateResponse:
    _assert_internal_access(request)

    try:
        async with SessionLocal.begin() as session:
            actor = await _resolve_admin_actor(session, admin_user_id=admin_user_id)
            state = await RevocationService.make_available(
                session,
                code_id=code_id,
                issuer_user_id=actor.issuer_scope,
                now_utc=datetime.now(timezone.utc),
            )
    except CodeError as exc:
        _raise_code_error(exc)
    return _code_state_response(state)
