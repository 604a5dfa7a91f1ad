from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class BillingTransaction(Base):
    __tablename__ = "billing_transactions"
    __table_args__ = (
        CheckConstraint(
            "type IN ('subscription_created','subscription_renewed','subscription_updated',"
            "'subscription_canceled','payment_succeeded','payment_failed','refund',"
            "'bulk_subscription_purchase','bulk_subscription_updated','bulk_subscription_canceled',"
            "'code_redeemed','code_reactivated')",
            name="ck_billing_transactions_type",
        ),
        CheckConstraint(
            "status IN ('pending','succeeded','failed','refunded','canceled')",
            name="ck_billing_transactions_status",
        ),
        CheckConstraint("amount >= 0", name="ck_billing_transactions_amount_non_negative"),
        Index("idx_billing_transactions_user_created", "user_id", "created_at"),
        Index("idx_billing_transactions_customer_created", "stripe_customer_id", "created_at"),
        Index("idx_billing_transactions_subscription", "stripe_subscription_id"),
        Index("idx_billing_transactions_charge", "stripe_charge_id"),
        Index("idx_billing_transactions_purchase", "purchase_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    stripe_event_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    purchase_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("code_purchases.id"),
        nullable=True,
    )
    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_invoice_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_charge_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    raw_event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_refunded: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default=text("'usd'"))
    stripe_price_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict[str, object]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
