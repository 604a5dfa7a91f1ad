from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID


@dataclass(slots=True)
class BillingRefs:
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    stripe_checkout_session_id: str | None = None


@dataclass(slots=True)
class PurchaseFinalizeResult:
    purchase_id: UUID
    status: str
    codes_generated: bool
    idempotent_replay: bool


@dataclass(slots=True)
class CodeIssueResult:
    purchase_id: UUID
    codes: list[str]
    expires_at: datetime


@dataclass(slots=True)
class CodeGrantResult:
    purchase_id: UUID
    plan_name: str
    duration_days: int
    codes: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CheckoutSessionResult:
    session_id: str
    url: str | None
    quantity: int
    duration_days: int
    unit_amount: int
    currency: str

