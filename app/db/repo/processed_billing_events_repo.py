from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.processed_billing_events import ProcessedBillingEvent


class ProcessedBillingEventsRepo:
    @staticmethod
    async def get_by_event_id(
        session: AsyncSession,
        *,
        event_id: str,
    ) -> ProcessedBillingEvent | None:
        return await session.get(ProcessedBillingEvent, event_id)

    @staticmethod
    async def try_create_processing_slot(
        session: AsyncSession,
        *,
        event_id: str,
        event_type: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            postgresql_insert(ProcessedBillingEvent)
            .values(
                event_id=event_id,
                event_type=event_type,
                status="PROCESSING",
                attempts=1,
                received_at=now_utc,
                processed_at=now_utc,
            )
            .on_conflict_do_nothing(index_elements=[ProcessedBillingEvent.event_id])
            .returning(ProcessedBillingEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def try_reclaim_failed_processing_slot(
        session: AsyncSession,
        *,
        event_id: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(ProcessedBillingEvent)
            .where(
                ProcessedBillingEvent.event_id == event_id,
                ProcessedBillingEvent.status == "FAILED",
            )
            .values(
                status="PROCESSING",
                attempts=ProcessedBillingEvent.attempts + 1,
                processed_at=now_utc,
            )
            .returning(ProcessedBillingEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def try_reclaim_stale_processing_slot(
        session: AsyncSession,
        *,
        event_id: str,
        processing_ttl_seconds: int,
        now_utc: datetime,
    ) -> bool:
        processing_age_seconds = func.extract(
            "epoch",
            func.now() - ProcessedBillingEvent.processed_at,
        )
        stmt = (
            update(ProcessedBillingEvent)
            .where(
                ProcessedBillingEvent.event_id == event_id,
                ProcessedBillingEvent.status == "PROCESSING",
                processing_age_seconds >= max(1, int(processing_ttl_seconds)),
            )
            .values(
                attempts=ProcessedBillingEvent.attempts + 1,
                processed_at=now_utc,
            )
            .returning(ProcessedBillingEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def set_status(
        session: AsyncSession,
        *,
        event_id: str,
        status: str,
        now_utc: datetime,
        last_error: str | None = None,
        payload: dict[str, object] | None = None,
    ) -> int:
        values: dict[str, object] = {
            "status": status,
            "processed_at": now_utc,
            "last_error": last_error,
        }
        if payload is not None:
            values["payload"] = payload
        elif status in {"PROCESSED", "IGNORED"}:
            values["payload"] = None
        stmt = (
            update(ProcessedBillingEvent)
            .where(ProcessedBillingEvent.event_id == event_id)
            .values(**values)
            .returning(ProcessedBillingEvent.event_id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0

    @staticmethod
    async def mark_exhausted_for_review(
        session: AsyncSession,
        *,
        max_attempts: int,
        now_utc: datetime,
    ) -> list[str]:
        stmt = (
            update(ProcessedBillingEvent)
            .where(
                ProcessedBillingEvent.status == "FAILED",
                ProcessedBillingEvent.attempts >= max(1, int(max_attempts)),
            )
            .values(status="FAILED_REVIEW", processed_at=now_utc)
            .returning(ProcessedBillingEvent.event_id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_failed_for_replay(
        session: AsyncSession,
        *,
        older_than_utc: datetime,
        max_attempts: int,
        limit: int,
    ) -> list[ProcessedBillingEvent]:
        stmt = (
            select(ProcessedBillingEvent)
            .where(
                ProcessedBillingEvent.status == "FAILED",
                ProcessedBillingEvent.attempts < max(1, int(max_attempts)),
                ProcessedBillingEvent.processed_at <= older_than_utc,
                ProcessedBillingEvent.payload.is_not(None),
            )
            .order_by(ProcessedBillingEvent.processed_at.asc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def count_by_status(session: AsyncSession, *, status: str) -> int:
        stmt = select(func.count(ProcessedBillingEvent.event_id)).where(
            ProcessedBillingEvent.status == status,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)
