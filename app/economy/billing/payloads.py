from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from app.economy.billing.errors import BillingPayloadError
from app.economy.purchases.catalog import BULK_PURCHASE_TYPE
from app.economy.subscriptions.types import SubscriptionSnapshot


@dataclass(frozen=True, slots=True)
class BulkPurchaseMetadata:
    issuer_user_id: int
    quantity: int
    duration_days: int
    stripe_price_id: str
    stripe_product_id: str | None
    unit_amount: int
    currency: str
    plan_name: str


def as_mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def as_id(value: object) -> str | None:
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        raw_id = value.get("id")
        return str(raw_id) if raw_id else None
    return None


def from_timestamp(value: object) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def event_object(event: Mapping[str, Any]) -> Mapping[str, Any]:
    return as_mapping(as_mapping(event.get("data")).get("object"))


def event_previous_attributes(event: Mapping[str, Any]) -> Mapping[str, Any]:
    return as_mapping(as_mapping(event.get("data")).get("previous_attributes"))


def event_created_at(event: Mapping[str, Any], *, default: datetime) -> datetime:
    return from_timestamp(event.get("created")) or default


def metadata_of(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return as_mapping(obj.get("metadata"))


def is_bulk_metadata(metadata: Mapping[str, Any]) -> bool:
    return metadata.get("type") == BULK_PURCHASE_TYPE


def _parse_int(metadata: Mapping[str, Any], key: str) -> int:
    raw_value = metadata.get(key)
    try:
        return int(str(raw_value))
    except (TypeError, ValueError) as exc:
        raise BillingPayloadError(f"bulk purchase metadata field {key!r} is not an integer") from exc


def parse_bulk_metadata(metadata: Mapping[str, Any]) -> BulkPurchaseMetadata:
    stripe_price_id = metadata.get("stripePriceId")
    if not stripe_price_id:
        raise BillingPayloadError("bulk purchase metadata is missing stripePriceId")
    stripe_product_id = metadata.get("stripeProductId")

    return BulkPurchaseMetadata(
        issuer_user_id=_parse_int(metadata, "adminId"),
        quantity=_parse_int(metadata, "quantity"),
        duration_days=_parse_int(metadata, "subscriptionDurationDays"),
        stripe_price_id=str(stripe_price_id),
        stripe_product_id=str(stripe_product_id) if stripe_product_id else None,
        unit_amount=_parse_int(metadata, "unitAmount"),
        currency=str(metadata.get("currency") or "usd").lower(),
        plan_name=str(metadata.get("planName") or "Bulk Subscription"),
    )


def metadata_user_id(metadata: Mapping[str, Any]) -> int | None:
    raw_value = metadata.get("userId")
    if raw_value is None:
        return None
    try:
        return int(str(raw_value))
    except (TypeError, ValueError):
        return None


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = as_mapping(subscription.get("items")).get("data")
    if isinstance(items, list) and items:
        return as_mapping(items[0])
    return {}


def subscription_snapshot(subscription: Mapping[str, Any]) -> SubscriptionSnapshot:
    """Flatten a provider subscription object into entitlement columns.

    Newer API versions moved the billing period onto the subscription items,
    so the first item is used when the top-level period fields are absent.
    """
    stripe_subscription_id = as_id(subscription.get("id"))
    if stripe_subscription_id is None:
        raise BillingPayloadError("subscription object has no id")
    status = subscription.get("status")
    if not isinstance(status, str) or not status:
        raise BillingPayloadError("subscription object has no status")

    item = _first_item(subscription)
    price = as_mapping(item.get("price"))
    period_start = from_timestamp(subscription.get("current_period_start")) or from_timestamp(
        item.get("current_period_start")
    )
    period_end = from_timestamp(subscription.get("current_period_end")) or from_timestamp(
        item.get("current_period_end")
    )
    product = price.get("product")
    plan_name = price.get("nickname") or as_mapping(product).get("name")

    return SubscriptionSnapshot(
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=as_id(subscription.get("customer")),
        status=status,
        stripe_price_id=as_id(price.get("id")),
        stripe_product_id=as_id(product),
        plan_name=str(plan_name) if plan_name else None,
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        canceled_at=from_timestamp(subscription.get("canceled_at")),
        ended_at=from_timestamp(subscription.get("ended_at")),
    )


def invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    direct = as_id(invoice.get("subscription"))
    if direct is not None:
        return direct
    parent = as_mapping(invoice.get("parent"))
    return as_id(as_mapping(parent.get("subscription_details")).get("subscription"))


def invoice_line_period(invoice: Mapping[str, Any]) -> tuple[datetime | None, datetime | None, str | None]:
    lines = as_mapping(invoice.get("lines")).get("data")
    if not isinstance(lines, list) or not lines:
        return None, None, None
    line = as_mapping(lines[0])
    period = as_mapping(line.get("period"))
    price = as_mapping(line.get("price"))
    return from_timestamp(period.get("start")), from_timestamp(period.get("end")), as_id(price.get("id"))
