from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.db.repo.billing_transactions_repo import BillingTransactionsRepo
from app.db.repo.processed_billing_events_repo import ProcessedBillingEventsRepo
from app.db.session import SessionLocal
from app.economy.billing.event_cache import RecentEventCache
from app.economy.billing.handlers import EVENT_HANDLERS, IGNORED, EventHandler
from app.economy.billing.payloads import event_created_at, event_object
from app.economy.billing.types import BillingEventContext, ReconcileResult
from app.services.alerts import send_ops_alert

PROCESSING_TTL_SECONDS = 300
LAST_ERROR_MAX_LENGTH = 2000

logger = structlog.get_logger(__name__)


class BillingEventReconciler:
    """Folds provider webhook events into purchase and entitlement state.

    Each event id is applied at most once: the in-memory cache short-circuits
    recent repeats, the `processed_billing_events` slot serializes concurrent
    deliveries, and the unique event id on `billing_transactions` keeps the
    audit log free of duplicates. Handler failures are recorded and reported
    but never raised to the caller.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        seen_cache: RecentEventCache,
        handlers: Mapping[str, EventHandler] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._seen_cache = seen_cache
        self._handlers = dict(EVENT_HANDLERS if handlers is None else handlers)

    @property
    def seen_cache(self) -> RecentEventCache:
        return self._seen_cache

    async def _claim(self, *, event_id: str, event_type: str, now_utc: datetime) -> bool:
        async with self._session_factory.begin() as session:
            if await BillingTransactionsRepo.exists_for_event(session, stripe_event_id=event_id):
                existing = await ProcessedBillingEventsRepo.get_by_event_id(session, event_id=event_id)
                if existing is None or existing.status != "FAILED":
                    return False

            if await ProcessedBillingEventsRepo.try_create_processing_slot(
                session,
                event_id=event_id,
                event_type=event_type,
                now_utc=now_utc,
            ):
                return True
            if await ProcessedBillingEventsRepo.try_reclaim_failed_processing_slot(
                session,
                event_id=event_id,
                now_utc=now_utc,
            ):
                return True
            return await ProcessedBillingEventsRepo.try_reclaim_stale_processing_slot(
                session,
                event_id=event_id,
                processing_ttl_seconds=PROCESSING_TTL_SECONDS,
                now_utc=now_utc,
            )

    async def _finish(
        self,
        *,
        event_id: str,
        status: str,
        now_utc: datetime,
        last_error: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        async with self._session_factory.begin() as session:
            await ProcessedBillingEventsRepo.set_status(
                session,
                event_id=event_id,
                status=status,
                now_utc=now_utc,
                last_error=last_error,
                payload=payload,
            )

    async def handle(
        self,
        event: Mapping[str, Any],
        *,
        now_utc: datetime | None = None,
    ) -> ReconcileResult:
        now_utc = now_utc or datetime.now(timezone.utc)
        event_id = str(event.get("id") or "")
        event_type = str(event.get("type") or "")
        if not event_id or not event_type:
            logger.warning("billing_event_malformed", event_id=event_id or None, event_type=event_type or None)
            return ReconcileResult(event_id=event_id, event_type=event_type, status="ignored", detail="malformed")

        if self._seen_cache.seen(event_id):
            logger.info("billing_event_duplicate", event_id=event_id, event_type=event_type, source="cache")
            return ReconcileResult(event_id=event_id, event_type=event_type, status="duplicate")

        if not await self._claim(event_id=event_id, event_type=event_type, now_utc=now_utc):
            self._seen_cache.add(event_id)
            logger.info("billing_event_duplicate", event_id=event_id, event_type=event_type, source="store")
            return ReconcileResult(event_id=event_id, event_type=event_type, status="duplicate")

        handler = self._handlers.get(event_type)
        if handler is None:
            await self._finish(event_id=event_id, status="IGNORED", now_utc=now_utc)
            self._seen_cache.add(event_id)
            logger.info("billing_event_unhandled", event_id=event_id, event_type=event_type)
            return ReconcileResult(event_id=event_id, event_type=event_type, status="ignored")

        ctx = BillingEventContext(
            session_factory=self._session_factory,
            event_id=event_id,
            event_type=event_type,
            event=event,
            obj=event_object(event),
            event_at=event_created_at(event, default=now_utc),
            now_utc=now_utc,
        )
        try:
            outcome = await handler(ctx)
        except Exception as exc:
            logger.exception("billing_event_processing_failed", event_id=event_id, event_type=event_type)
            error_text = f"{type(exc).__name__}: {exc}"[:LAST_ERROR_MAX_LENGTH]
            await self._finish(
                event_id=event_id,
                status="FAILED",
                now_utc=now_utc,
                last_error=error_text,
                payload=dict(event),
            )
            await send_ops_alert(
                event="billing_event_processing_failed",
                payload={
                    "event_id": event_id,
                    "event_type": event_type,
                    "error_type": type(exc).__name__,
                },
            )
            return ReconcileResult(
                event_id=event_id,
                event_type=event_type,
                status="failed",
                detail=type(exc).__name__,
            )

        final_status = "IGNORED" if outcome == IGNORED else "PROCESSED"
        await self._finish(event_id=event_id, status=final_status, now_utc=now_utc)
        self._seen_cache.add(event_id)
        logger.info("billing_event_processed", event_id=event_id, event_type=event_type, outcome=outcome)
        return ReconcileResult(event_id=event_id, event_type=event_type, status=outcome)


@lru_cache(maxsize=1)
def get_billing_reconciler() -> BillingEventReconciler:
    settings = get_settings()
    return BillingEventReconciler(
        session_factory=SessionLocal,
        seen_cache=RecentEventCache(settings.webhook_seen_cache_size),
    )
