from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class SubscriptionSnapshot:
    stripe_subscription_id: str
    stripe_customer_id: str | None
    status: str
    stripe_price_id: str | None = None
    stripe_product_id: str | None = None
    plan_name: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    ended_at: datetime | None = None

    def as_values(self) -> dict[str, object]:
        return {
            "stripe_subscription_id": self.stripe_subscription_id,
            "stripe_customer_id": self.stripe_customer_id,
            "status": self.status,
            "stripe_price_id": self.stripe_price_id,
            "stripe_product_id": self.stripe_product_id,
            "plan_name": self.plan_name,
            "current_period_start": self.current_period_start,
            "current_period_end": self.current_period_end,
            "cancel_at_period_end": self.cancel_at_period_end,
            "canceled_at": self.canceled_at,
            "ended_at": self.ended_at,
        }


@dataclass(slots=True)
class EntitlementPeriod:
    period_start: datetime
    period_end: datetime
