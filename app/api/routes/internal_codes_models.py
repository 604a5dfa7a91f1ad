from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class CodeRedeemRequest(BaseModel):
    user_id: int = Field(gt=0)
    code: str = Field(min_length=1, max_length=64)


class CodeRedeemResponse(BaseModel):
    code_id: int
    code: str
    status: str
    plan_name: str
    duration_days: int
    period_start: datetime
    period_end: datetime


class CodeValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class CodeValidateResponse(BaseModel):
    valid: bool
    code: str
    plan_name: str
    duration_days: int
    expires_at: datetime
    unit_amount: int | None = None
    currency: str | None = None


class CodeGrantRequest(BaseModel):
    months: int = Field(ge=1, le=120)
    quantity: int = Field(ge=1, le=100)
    plan_name: str | None = Field(default=None, max_length=128)


class CodeGrantResponse(BaseModel):
    purchase_id: UUID
    plan_name: str
    duration_days: int
    codes: list[str]


class CheckoutSessionRequest(BaseModel):
    stripe_price_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(ge=1, le=100)


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str | None = None
    quantity: int
    duration_days: int
    unit_amount: int
    currency: str


class PortalSessionRequest(BaseModel):
    return_url: str | None = Field(default=None, max_length=2048)


class PortalSessionResponse(BaseModel):
    url: str


class CodeRevokeRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=256)


class CodeStateResponse(BaseModel):
    code_id: int
    code: str
    status: str
    purchase_id: UUID
    issuer_user_id: int
    plan_name: str
    duration_days: int
    expires_at: datetime
    redeemed_by_user_id: int | None = None
    redeemed_by_email: str | None = None
    redeemed_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None
    previously_redeemed_by_user_id: int | None = None
    period_end: datetime | None = None


class CodeListResponse(BaseModel):
    codes: list[CodeStateResponse]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    limit: int = Field(ge=1)


class PurchaseResponse(BaseModel):
    id: UUID
    issuer_user_id: int
    source: str
    status: str
    plan_name: str
    quantity: int
    unit_amount: int
    total_amount: int
    currency: str
    duration_days: int
    codes_generated: bool
    codes_review_required: bool = False
    stripe_subscription_id: str | None = None
    paid_at: datetime | None = None
    created_at: datetime


class PurchaseListResponse(BaseModel):
    purchases: list[PurchaseResponse]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    limit: int = Field(ge=1)


class CodeIssueResponse(BaseModel):
    purchase_id: UUID
    codes: list[str]
    expires_at: datetime


class CodeStatsResponse(BaseModel):
    purchases_total: int = Field(ge=0)
    purchases_completed: int = Field(ge=0)
    total_spent: int = Field(ge=0)
    total_codes_purchased: int = Field(ge=0)
    codes_by_status: dict[str, int]
