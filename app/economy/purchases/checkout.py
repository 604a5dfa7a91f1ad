from __future__ import annotations

from collections.abc import Callable
from typing import Any

import stripe
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.repo.users_repo import UsersRepo
from app.economy.purchases.catalog import BULK_PURCHASE_TYPE, interval_to_days
from app.economy.purchases.errors import (
    BillingCustomerMissingError,
    BillingProviderError,
    BillingProviderTimeoutError,
    PurchaseIssuerNotFoundError,
    PurchaseValidationError,
)
from app.economy.purchases.service.validation import _validate_quantity
from app.economy.purchases.types import CheckoutSessionResult
from app.services.stripe_client import StripeClientError, StripeTimeoutError, call_stripe

DEFAULT_BULK_PLAN_NAME = "Bulk Subscription"

logger = structlog.get_logger(__name__)


async def _call_provider(operation: Callable[..., Any], /, **kwargs: Any) -> Any:
    try:
        return await call_stripe(operation, **kwargs)
    except StripeTimeoutError as exc:
        raise BillingProviderTimeoutError from exc
    except StripeClientError as exc:
        raise BillingProviderError(str(exc)) from exc


def _resolve_product(price: Any) -> tuple[str | None, str]:
    product = price.get("product")
    nickname = price.get("nickname")
    if isinstance(product, str):
        return product, nickname or DEFAULT_BULK_PLAN_NAME
    if product is not None:
        return product.get("id"), product.get("name") or nickname or DEFAULT_BULK_PLAN_NAME
    return None, nickname or DEFAULT_BULK_PLAN_NAME


def build_bulk_metadata(
    *,
    issuer_user_id: int,
    quantity: int,
    duration_days: int,
    stripe_price_id: str,
    stripe_product_id: str | None,
    unit_amount: int,
    currency: str,
    plan_name: str,
) -> dict[str, str]:
    return {
        "type": BULK_PURCHASE_TYPE,
        "adminId": str(issuer_user_id),
        "quantity": str(quantity),
        "subscriptionDurationDays": str(duration_days),
        "stripePriceId": stripe_price_id,
        "stripeProductId": stripe_product_id or "",
        "unitAmount": str(unit_amount),
        "currency": currency,
        "planName": plan_name,
    }


async def create_bulk_checkout_session(
    session: AsyncSession,
    *,
    issuer_user_id: int,
    stripe_price_id: str,
    quantity: int,
) -> CheckoutSessionResult:
    _validate_quantity(quantity)
    issuer = await UsersRepo.get_by_id_for_update(session, issuer_user_id)
    if issuer is None:
        raise PurchaseIssuerNotFoundError

    price = await _call_provider(stripe.Price.retrieve, id=stripe_price_id, expand=["product"])
    if not price.get("active"):
        raise PurchaseValidationError("Price is not active")
    recurring = price.get("recurring")
    if not recurring:
        raise PurchaseValidationError("Bulk purchases require a recurring price")

    duration_days = interval_to_days(recurring.get("interval"), recurring.get("interval_count"))
    unit_amount = int(price.get("unit_amount") or 0)
    currency = str(price.get("currency") or "usd")
    stripe_product_id, plan_name = _resolve_product(price)

    customer_id = issuer.stripe_customer_id
    if not customer_id:
        customer = await _call_provider(
            stripe.Customer.create,
            email=issuer.email,
            name=issuer.name,
            metadata={"userId": str(issuer.id)},
        )
        customer_id = str(customer["id"])
        await UsersRepo.set_stripe_customer_id(
            session,
            user_id=issuer.id,
            stripe_customer_id=customer_id,
        )
        logger.info("billing_customer_created", user_id=issuer.id, stripe_customer_id=customer_id)

    metadata = build_bulk_metadata(
        issuer_user_id=issuer.id,
        quantity=quantity,
        duration_days=duration_days,
        stripe_price_id=stripe_price_id,
        stripe_product_id=stripe_product_id,
        unit_amount=unit_amount,
        currency=currency,
        plan_name=plan_name,
    )
    settings = get_settings()
    checkout = await _call_provider(
        stripe.checkout.Session.create,
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": stripe_price_id, "quantity": quantity}],
        metadata=metadata,
        subscription_data={"metadata": metadata},
        success_url=settings.checkout_success_url,
        cancel_url=settings.checkout_cancel_url,
    )
    logger.info(
        "bulk_checkout_session_created",
        issuer_user_id=issuer.id,
        checkout_session_id=checkout["id"],
        quantity=quantity,
    )
    return CheckoutSessionResult(
        session_id=str(checkout["id"]),
        url=checkout.get("url"),
        quantity=quantity,
        duration_days=duration_days,
        unit_amount=unit_amount,
        currency=currency,
    )


async def create_portal_session(
    session: AsyncSession,
    *,
    issuer_user_id: int,
    return_url: str | None = None,
) -> str:
    issuer = await UsersRepo.get_by_id(session, issuer_user_id)
    if issuer is None:
        raise PurchaseIssuerNotFoundError
    if not issuer.stripe_customer_id:
        raise BillingCustomerMissingError

    portal = await _call_provider(
        stripe.billing_portal.Session.create,
        customer=issuer.stripe_customer_id,
        return_url=return_url or get_settings().portal_return_url,
    )
    return str(portal["url"])
