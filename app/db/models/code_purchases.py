from __future__ import annotations

from datetime import datetime
from uuid import UUID

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
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class CodePurchase(Base):
    __tablename__ = "code_purchases"
    __table_args__ = (
        CheckConstraint("source IN ('CHECKOUT','ADMIN_GRANT')", name="ck_code_purchases_source"),
        CheckConstraint(
            "status IN ('pending','completed','failed','refunded')",
            name="ck_code_purchases_status",
        ),
        CheckConstraint("quantity BETWEEN 1 AND 100", name="ck_code_purchases_quantity_range"),
        CheckConstraint("unit_amount >= 0", name="ck_code_purchases_unit_amount_non_negative"),
        CheckConstraint("total_amount >= 0", name="ck_code_purchases_total_amount_non_negative"),
        CheckConstraint("duration_days > 0", name="ck_code_purchases_duration_positive"),
        Index("idx_code_purchases_issuer_created", "issuer_user_id", "created_at"),
        Index(
            "idx_code_purchases_codes_pending",
            "created_at",
            postgresql_where=text("codes_generated = false AND status = 'completed'"),
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    issuer_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
    )
    stripe_price_id: Mapped[str] = mapped_column(String(64), nullable=False)
    stripe_product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    plan_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default=text("'usd'"))
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    codes_generated: Mapped[bool] = mapped_column(
        BOOLEAN,
        nullable=False,
        server_default=text("false"),
    )
    codes_review_required: Mapped[bool] = mapped_column(
        BOOLEAN,
        nullable=False,
        server_default=text("false"),
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metadata_: Mapped[dict[str, object]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
