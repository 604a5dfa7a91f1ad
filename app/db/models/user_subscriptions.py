from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BOOLEAN,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"
    __table_args__ = (
        CheckConstraint("source IN ('BILLING','CODE')", name="ck_user_subscriptions_source"),
        CheckConstraint(
            "status IN ('incomplete','incomplete_expired','trialing','active','past_due',"
            "'canceled','unpaid','paused')",
            name="ck_user_subscriptions_status",
        ),
        Index("idx_user_subscriptions_customer", "stripe_customer_id"),
        Index("idx_user_subscriptions_code", "subscription_code_id"),
        Index(
            "idx_user_subscriptions_code_period_end",
            "current_period_end",
            postgresql_where=text("source = 'CODE' AND status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), unique=True, nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    stripe_price_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    plan_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(24), nullable=False)
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(
        BOOLEAN,
        nullable=False,
        server_default=text("false"),
    )
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_code_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("subscription_codes.id"),
        nullable=True,
    )
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_event_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
