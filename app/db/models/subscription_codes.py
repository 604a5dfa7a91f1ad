from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class SubscriptionCode(Base):
    __tablename__ = "subscription_codes"
    __table_args__ = (
        CheckConstraint(
            "status IN ('available','redeemed','revoked','expired')",
            name="ck_subscription_codes_status",
        ),
        CheckConstraint(
            "(status = 'redeemed') = (redeemed_by_user_id IS NOT NULL)",
            name="ck_subscription_codes_redeemed_by_matches_status",
        ),
        CheckConstraint("duration_days > 0", name="ck_subscription_codes_duration_positive"),
        Index("idx_subscription_codes_purchase", "purchase_id"),
        Index("idx_subscription_codes_issuer_status", "issuer_user_id", "status"),
        Index("idx_subscription_codes_redeemed_by", "redeemed_by_user_id"),
        Index("idx_subscription_codes_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    code: Mapped[str] = mapped_column(String(19), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    purchase_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("code_purchases.id"),
        nullable=False,
    )
    issuer_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    stripe_price_id: Mapped[str] = mapped_column(String(64), nullable=False)
    stripe_product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    plan_name: Mapped[str] = mapped_column(Text, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    redeemed_by_user_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id"),
        nullable=True,
    )
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(String(256), nullable=True)
    previously_redeemed_by_user_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
