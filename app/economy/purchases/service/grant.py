from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.economy.purchases.catalog import (
    ADMIN_GRANT_CUSTOMER_ID,
    ADMIN_GRANT_PLAN_NAME,
    ADMIN_GRANT_PRICE_ID,
    months_to_days,
)
from app.economy.purchases.errors import PurchaseValidationError
from app.economy.purchases.types import BillingRefs, CodeGrantResult

from .finalize import finalize_purchase
from .issue import issue_codes
from .validation import _validate_quantity


async def grant_codes(
    session: AsyncSession,
    *,
    issuer_user_id: int,
    months: int,
    quantity: int,
    now_utc: datetime,
    plan_name: str | None = None,
) -> CodeGrantResult:
    if months < 1:
        raise PurchaseValidationError("Months must be at least 1")
    _validate_quantity(quantity)

    duration_days = months_to_days(months)
    resolved_plan_name = (plan_name or "").strip() or ADMIN_GRANT_PLAN_NAME
    finalized = await finalize_purchase(
        session,
        issuer_user_id=issuer_user_id,
        billing_refs=BillingRefs(stripe_customer_id=ADMIN_GRANT_CUSTOMER_ID),
        quantity=quantity,
        unit_amount=0,
        duration_days=duration_days,
        stripe_price_id=ADMIN_GRANT_PRICE_ID,
        plan_name=resolved_plan_name,
        now_utc=now_utc,
        source="ADMIN_GRANT",
        metadata={"months": months, "granted_by": issuer_user_id},
    )
    issued = await issue_codes(session, purchase_id=finalized.purchase_id, now_utc=now_utc)
    return CodeGrantResult(
        purchase_id=finalized.purchase_id,
        plan_name=resolved_plan_name,
        duration_days=duration_days,
        codes=issued.codes,
    )
