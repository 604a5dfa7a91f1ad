from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.models.code_purchases import CodePurchase
from app.db.repo.code_purchases_repo import CodePurchasesRepo
from app.db.repo.subscription_codes_repo import SubscriptionCodesRepo
from app.economy.codes.generator import generate_code_batch
from app.economy.purchases.errors import (
    CodesAlreadyGeneratedError,
    PurchaseNotCompletedError,
    PurchaseNotFoundError,
)
from app.economy.purchases.types import CodeIssueResult

from .constants import CODE_ISSUE_MAX_ROUNDS

logger = structlog.get_logger(__name__)


def _build_code_row(
    purchase: CodePurchase,
    *,
    code: str,
    expires_at: datetime,
    now_utc: datetime,
) -> dict[str, object]:
    return {
        "code": code,
        "status": "available",
        "purchase_id": purchase.id,
        "issuer_user_id": purchase.issuer_user_id,
        "stripe_price_id": purchase.stripe_price_id,
        "stripe_product_id": purchase.stripe_product_id,
        "plan_name": purchase.plan_name,
        "duration_days": purchase.duration_days,
        "expires_at": expires_at,
        "created_at": now_utc,
        "updated_at": now_utc,
    }


async def issue_codes(
    session: AsyncSession,
    *,
    purchase_id: UUID,
    now_utc: datetime,
    issuer_user_id: int | None = None,
) -> CodeIssueResult:
    purchase = await CodePurchasesRepo.get_by_id_for_update(session, purchase_id)
    if purchase is None:
        raise PurchaseNotFoundError
    if issuer_user_id is not None and purchase.issuer_user_id != issuer_user_id:
        raise PurchaseNotFoundError
    if purchase.codes_generated:
        raise CodesAlreadyGeneratedError
    if purchase.status != "completed":
        raise PurchaseNotCompletedError

    expires_at = now_utc + timedelta(days=get_settings().code_redemption_window_days)
    existing_count = await SubscriptionCodesRepo.count_by_purchase(session, purchase_id=purchase.id)
    remaining = purchase.quantity - existing_count

    issued: list[str] = []
    rounds = 0
    while remaining > 0:
        rounds += 1
        if rounds > CODE_ISSUE_MAX_ROUNDS:
            raise RuntimeError("unable to persist unique subscription codes")

        candidates = await generate_code_batch(session, count=remaining)
        inserted = await SubscriptionCodesRepo.insert_codes(
            session,
            rows=[
                _build_code_row(purchase, code=code, expires_at=expires_at, now_utc=now_utc)
                for code in candidates
            ],
        )
        issued.extend(inserted)
        remaining -= len(inserted)

    await CodePurchasesRepo.mark_codes_generated(session, purchase_id=purchase.id, now_utc=now_utc)
    logger.info(
        "purchase_codes_issued",
        purchase_id=str(purchase.id),
        issued=len(issued),
        previously_persisted=existing_count,
        rounds=rounds,
    )
    return CodeIssueResult(purchase_id=purchase.id, codes=issued, expires_at=expires_at)
