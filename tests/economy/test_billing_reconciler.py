from __future__ import annotations

from datetime import datetime, timezone

from app.economy.billing import reconciler as reconciler_module
from app.economy.billing.event_cache import RecentEventCache
from app.economy.billing.handlers import IGNORED, PROCESSED
from app.economy.billing.reconciler import BillingEventReconciler
from app.economy.billing.types import BillingEventContext

NOW_UTC = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _FakeTransaction:
    async def __aenter__(self) -> object:
        return object()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeSessionFactory:
    def begin(self) -> _FakeTransaction:
        return _FakeTransaction()


class _EventStore:
    def __init__(self) -> None:
        self.transactions: set[str] = set()
        self.slots: dict[str, str] = {}
        self.finished: list[tuple[str, str, str | None]] = []

    def install(self, monkeypatch) -> None:
        async def _exists_for_event(session, *, stripe_event_id: str) -> bool:
            return stripe_event_id in self.transactions

        async def _get_by_event_id(session, *, event_id: str):
            status = self.slots.get(event_id)
            return None if status is None else type("Row", (), {"status": status})()

        async def _try_create(session, *, event_id: str, event_type: str, now_utc: datetime) -> bool:
            if event_id in self.slots:
                return False
            self.slots[event_id] = "PROCESSING"
            return True

        async def _try_reclaim_failed(session, *, event_id: str, now_utc: datetime) -> bool:
            if self.slots.get(event_id) != "FAILED":
                return False
            self.slots[event_id] = "PROCESSING"
            return True

        async def _try_reclaim_stale(session, *, event_id: str, processing_ttl_seconds: int, now_utc: datetime) -> bool:
            return False

        async def _set_status(session, *, event_id: str, status: str, now_utc: datetime, last_error=None, payload=None):
            self.slots[event_id] = status
            self.finished.append((event_id, status, last_error))

        repo = reconciler_module.ProcessedBillingEventsRepo
        monkeypatch.setattr(reconciler_module.BillingTransactionsRepo, "exists_for_event", _exists_for_event)
        monkeypatch.setattr(repo, "get_by_event_id", _get_by_event_id)
        monkeypatch.setattr(repo, "try_create_processing_slot", _try_create)
        monkeypatch.setattr(repo, "try_reclaim_failed_processing_slot", _try_reclaim_failed)
        monkeypatch.setattr(repo, "try_reclaim_stale_processing_slot", _try_reclaim_stale)
        monkeypatch.setattr(repo, "set_status", _set_status)


def _build(monkeypatch, handlers) -> tuple[BillingEventReconciler, _EventStore, list[dict[str, object]]]:
    store = _EventStore()
    store.install(monkeypatch)
    alerts: list[dict[str, object]] = []

    async def _fake_alert(*, event: str, payload: dict[str, object]) -> None:
        alerts.append({"event": event, "payload": payload})

    monkeypatch.setattr(reconciler_module, "send_ops_alert", _fake_alert)
    reconciler = BillingEventReconciler(
        session_factory=_FakeSessionFactory(),
        seen_cache=RecentEventCache(16),
        handlers=handlers,
    )
    return reconciler, store, alerts


def _event(event_id: str = "evt_1", event_type: str = "invoice.paid") -> dict[str, object]:
    return {"id": event_id, "type": event_type, "created": 1772366400, "data": {"object": {"id": "in_1"}}}


async def test_handle_dispatches_to_handler_and_marks_processed(monkeypatch) -> None:
    calls: list[BillingEventContext] = []

    async def _handler(ctx: BillingEventContext) -> str:
        calls.append(ctx)
        return PROCESSED

    reconciler, store, alerts = _build(monkeypatch, {"invoice.paid": _handler})

    result = await reconciler.handle(_event(), now_utc=NOW_UTC)

    assert result.status == PROCESSED
    assert len(calls) == 1
    assert calls[0].obj == {"id": "in_1"}
    assert calls[0].event_id == "evt_1"
    assert store.slots["evt_1"] == "PROCESSED"
    assert "evt_1" in reconciler.seen_cache
    assert alerts == []


async def test_handle_repeated_event_short_circuits_on_cache(monkeypatch) -> None:
    calls: list[str] = []

    async def _handler(ctx: BillingEventContext) -> str:
        calls.append(ctx.event_id)
        return PROCESSED

    reconciler, _, _ = _build(monkeypatch, {"invoice.paid": _handler})

    first = await reconciler.handle(_event(), now_utc=NOW_UTC)
    second = await reconciler.handle(_event(), now_utc=NOW_UTC)

    assert first.status == PROCESSED
    assert second.status == "duplicate"
    assert calls == ["evt_1"]


async def test_handle_event_already_recorded_in_store_is_duplicate(monkeypatch) -> None:
    calls: list[str] = []

    async def _handler(ctx: BillingEventContext) -> str:
        calls.append(ctx.event_id)
        return PROCESSED

    reconciler, store, _ = _build(monkeypatch, {"invoice.paid": _handler})
    store.transactions.add("evt_1")
    store.slots["evt_1"] = "PROCESSED"

    result = await reconciler.handle(_event(), now_utc=NOW_UTC)

    assert result.status == "duplicate"
    assert calls == []
    assert "evt_1" in reconciler.seen_cache


async def test_handle_unknown_event_type_is_recorded_as_ignored(monkeypatch) -> None:
    reconciler, store, _ = _build(monkeypatch, {})

    result = await reconciler.handle(_event(event_type="customer.tax_id.created"), now_utc=NOW_UTC)

    assert result.status == "ignored"
    assert store.slots["evt_1"] == "IGNORED"


async def test_handle_noop_outcome_is_stored_as_ignored(monkeypatch) -> None:
    async def _handler(ctx: BillingEventContext) -> str:
        return IGNORED

    reconciler, store, _ = _build(monkeypatch, {"invoice.upcoming": _handler})

    result = await reconciler.handle(_event(event_type="invoice.upcoming"), now_utc=NOW_UTC)

    assert result.status == IGNORED
    assert store.slots["evt_1"] == "IGNORED"


async def test_handle_malformed_event_is_ignored_without_claim(monkeypatch) -> None:
    reconciler, store, _ = _build(monkeypatch, {})

    result = await reconciler.handle({"type": "invoice.paid"}, now_utc=NOW_UTC)

    assert result.status == "ignored"
    assert result.detail == "malformed"
    assert store.slots == {}


async def test_handle_failure_marks_failed_alerts_and_allows_retry(monkeypatch) -> None:
    attempts: list[str] = []

    async def _handler(ctx: BillingEventContext) -> str:
        attempts.append(ctx.event_id)
        if len(attempts) == 1:
            raise RuntimeError("database went away")
        return PROCESSED

    reconciler, store, alerts = _build(monkeypatch, {"invoice.paid": _handler})

    failed = await reconciler.handle(_event(), now_utc=NOW_UTC)

    assert failed.status == "failed"
    assert failed.detail == "RuntimeError"
    assert store.slots["evt_1"] == "FAILED"
    assert store.finished[-1][2] == "RuntimeError: database went away"
    assert "evt_1" not in reconciler.seen_cache
    assert alerts == [
        {
            "event": "billing_event_processing_failed",
            "payload": {"event_id": "evt_1", "event_type": "invoice.paid", "error_type": "RuntimeError"},
        }
    ]

    retried = await reconciler.handle(_event(), now_utc=NOW_UTC)

    assert retried.status == PROCESSED
    assert store.slots["evt_1"] == "PROCESSED"
    assert attempts == ["evt_1", "evt_1"]
