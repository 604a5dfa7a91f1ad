from __future__ import annotations

from datetime import datetime
from uuid import uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.code_purchases import CodePurchase
from app.db.repo.code_purchases_repo import CodePurchasesRepo
from app.db.repo.users_repo import UsersRepo
from app.economy.purchases.errors import PurchaseIssuerNotFoundError
from app.economy.purchases.types import BillingRefs, PurchaseFinalizeResult

from .validation import _validate_purchase_input

logger = structlog.get_logger(__name__)


def _as_finalize_result(purchase: CodePurchase, *, idempotent_replay: bool) -> PurchaseFinalizeResult:
    return PurchaseFinalizeResult(
        purchase_id=purchase.id,
        status=purchase.status,
        codes_generated=purchase.codes_generated,
        idempotent_replay=idempotent_replay,
    )


async def finalize_purchase(
    session: AsyncSession,
    *,
    issuer_user_id: int,
    billing_refs: BillingRefs,
    quantity: int,
    unit_amount: int,
    duration_days: int,
    stripe_price_id: str,
    plan_name: str,
    now_utc: datetime,
    source: str = "CHECKOUT",
    stripe_product_id: str | None = None,
    currency: str = "usd",
    metadata: dict[str, object] | None = None,
) -> PurchaseFinalizeResult:
    _validate_purchase_input(
        source=source,
        quantity=quantity,
        unit_amount=unit_amount,
        duration_days=duration_days,
        stripe_price_id=stripe_price_id,
        currency=currency,
    )

    existing = await CodePurchasesRepo.get_by_billing_refs(
        session,
        stripe_subscription_id=billing_refs.stripe_subscription_id,
        stripe_checkout_session_id=billing_refs.stripe_checkout_session_id,
    )
    if existing is not None:
        logger.info(
            "code_purchase_finalize_replay",
            purchase_id=str(existing.id),
            stripe_subscription_id=billing_refs.stripe_subscription_id,
        )
        return _as_finalize_result(existing, idempotent_replay=True)

    issuer = await UsersRepo.get_by_id(session, issuer_user_id)
    if issuer is None:
        raise PurchaseIssuerNotFoundError

    purchase_id = await CodePurchasesRepo.try_create(
        session,
        values={
            "id": uuid4(),
            "issuer_user_id": issuer_user_id,
            "source": source,
            "stripe_customer_id": billing_refs.stripe_customer_id,
            "stripe_subscription_id": billing_refs.stripe_subscription_id,
            "stripe_checkout_session_id": billing_refs.stripe_checkout_session_id,
            "stripe_price_id": stripe_price_id,
            "stripe_product_id": stripe_product_id,
            "plan_name": plan_name,
            "quantity": quantity,
            "unit_amount": unit_amount,
            "total_amount": unit_amount * quantity,
            "currency": currency.lower(),
            "status": "completed",
            "duration_days": duration_days,
            "codes_generated": False,
            "paid_at": now_utc,
            "metadata_": metadata or {},
            "created_at": now_utc,
            "updated_at": now_utc,
        },
    )
    if purchase_id is None:
        concurrent = await CodePurchasesRepo.get_by_billing_refs(
            session,
            stripe_subscription_id=billing_refs.stripe_subscription_id,
            stripe_checkout_session_id=billing_refs.stripe_checkout_session_id,
        )
        if concurrent is None:
            raise RuntimeError("code purchase insert conflicted without a matching row")
        return _as_finalize_result(concurrent, idempotent_replay=True)

    logger.info(
        "code_purchase_finalized",
        purchase_id=str(purchase_id),
        issuer_user_id=issuer_user_id,
        source=source,
        quantity=quantity,
        total_amount=unit_amount * quantity,
    )
    return PurchaseFinalizeResult(
        purchase_id=purchase_id,
        status="completed",
        codes_generated=False,
        idempotent_replay=False,
    )
