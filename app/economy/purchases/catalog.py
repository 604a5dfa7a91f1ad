from __future__ import annotations

BULK_PURCHASE_TYPE = "bulk_subscription_purchase"

MIN_CODES_PER_PURCHASE = 1
MAX_CODES_PER_PURCHASE = 100

DAYS_PER_MONTH = 30
DEFAULT_DURATION_DAYS = 30
INTERVAL_DAYS: dict[str, int] = {
    "day": 1,
    "week": 7,
    "month": DAYS_PER_MONTH,
    "year": 365,
}

ADMIN_GRANT_PRICE_ID = "admin_custom_price"
ADMIN_GRANT_CUSTOMER_ID = "admin_generated"
ADMIN_GRANT_PLAN_NAME = "Custom Subscription"


def interval_to_days(interval: str | None, interval_count: int | None = 1) -> int:
    days_per_interval = INTERVAL_DAYS.get(interval or "")
    if days_per_interval is None:
        return DEFAULT_DURATION_DAYS
    count = interval_count if isinstance(interval_count, int) and interval_count > 0 else 1
    return days_per_interval * count


def months_to_days(months: int) -> int:
    return months * DAYS_PER_MONTH
