from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(slots=True)
class RedemptionResult:
    code_id: int
    code: str
    user_id: int
    status: str
    plan_name: str
    duration_days: int
    period_start: datetime
    period_end: datetime


@dataclass(slots=True)
class CodePreview:
    code: str
    status: str
    plan_name: str
    duration_days: int
    expires_at: datetime
    unit_amount: int | None = None
    currency: str | None = None


@dataclass(slots=True)
class CodeState:
    code_id: int
    code: str
    status: str
    purchase_id: UUID
    issuer_user_id: int
    plan_name: str
    duration_days: int
    expires_at: datetime
    redeemed_by_user_id: int | None = None
    redeemed_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None
    previously_redeemed_by_user_id: int | None = None
    period_end: datetime | None = None
