from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, SmallInteger, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class ProcessedBillingEvent(Base):
    __tablename__ = "processed_billing_events"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PROCESSING','PROCESSED','FAILED','FAILED_REVIEW','IGNORED')",
            name="ck_processed_billing_events_status",
        ),
        Index("idx_processed_billing_events_processed_at", "processed_at"),
        Index(
            "idx_processed_billing_events_failed_age",
            "processed_at",
            postgresql_where=text("status = 'FAILED'"),
        ),
    )

    event_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False, server_default=text("1"))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, object] | None] = mapped_column(JSONB, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
