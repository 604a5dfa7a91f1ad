from __future__ import annotations

from types import SimpleNamespace

from app.economy.billing.types import ReconcileResult
from app.workers.tasks import billing_reliability


class _FakeTransaction:
    async def __aenter__(self) -> object:
        return object()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeSessionLocal:
    def begin(self) -> _FakeTransaction:
        return _FakeTransaction()


class _FakeReconciler:
    def __init__(self, statuses: dict[str, str]) -> None:
        self.statuses = statuses
        self.handled: list[str] = []

    async def handle(self, event):
        self.handled.append(event["id"])
        return ReconcileResult(event_id=event["id"], event_type=event["type"], status=self.statuses[event["id"]])


def test_replay_failed_billing_events_task_wrapper(monkeypatch) -> None:
    async def fake_async(*, batch_size: int, min_age_seconds: int) -> dict[str, int]:
        return {"examined": 2, "replayed": 2, "batch_size": batch_size}

    monkeypatch.setattr(billing_reliability, "replay_failed_billing_events_async", fake_async)

    result = billing_reliability.replay_failed_billing_events(batch_size=7)
    assert result["replayed"] == 2
    assert result["batch_size"] == 7


def test_run_codes_reconciliation_task_wrapper(monkeypatch) -> None:
    async def fake_async(*, stuck_minutes: int) -> dict[str, int | str]:
        return {"diff_count": 0, "status": "OK"}

    monkeypatch.setattr(billing_reliability, "run_codes_reconciliation_async", fake_async)

    result = billing_reliability.run_codes_reconciliation()
    assert result["status"] == "OK"


async def test_replay_failed_billing_events_reprocesses_stored_payloads(monkeypatch) -> None:
    failed_events = [
        SimpleNamespace(event_id="evt_ok", attempts=1, payload={"id": "evt_ok", "type": "invoice.paid"}),
        SimpleNamespace(event_id="evt_bad", attempts=2, payload={"id": "evt_bad", "type": "invoice.paid"}),
        SimpleNamespace(event_id="evt_dup", attempts=1, payload={"id": "evt_dup", "type": "invoice.paid"}),
        SimpleNamespace(event_id="evt_empty", attempts=1, payload=None),
    ]
    reconciler = _FakeReconciler({"evt_ok": "processed", "evt_bad": "failed", "evt_dup": "duplicate"})
    alerts: list[dict[str, object]] = []

    async def _fake_mark_exhausted(session, *, max_attempts: int, now_utc) -> list[str]:
        assert max_attempts == billing_reliability.MAX_BILLING_EVENT_ATTEMPTS
        return ["evt_old"]

    async def _fake_list(session, *, older_than_utc, max_attempts: int, limit: int):
        return failed_events

    async def _fake_alert(*, event: str, payload: dict[str, object]) -> None:
        alerts.append({"event": event, "payload": payload})

    monkeypatch.setattr(billing_reliability, "SessionLocal", _FakeSessionLocal())
    monkeypatch.setattr(
        billing_reliability.ProcessedBillingEventsRepo,
        "mark_exhausted_for_review",
        _fake_mark_exhausted,
    )
    monkeypatch.setattr(billing_reliability.ProcessedBillingEventsRepo, "list_failed_for_replay", _fake_list)
    monkeypatch.setattr(billing_reliability, "get_billing_reconciler", lambda: reconciler)
    monkeypatch.setattr(billing_reliability, "send_ops_alert", _fake_alert)

    summary = await billing_reliability.replay_failed_billing_events_async()

    assert summary == {
        "examined": 4,
        "replayed": 1,
        "still_failing": 1,
        "exhausted": 1,
        "skipped": 2,
    }
    assert reconciler.handled == ["evt_ok", "evt_bad", "evt_dup"]
    assert alerts[0]["event"] == "billing_event_replay_exhausted"
    assert alerts[0]["payload"]["event_ids"] == ["evt_old"]


class _FakeEventStore:
    def __init__(self, events: list[SimpleNamespace]) -> None:
        self.events = {event.event_id: event for event in events}

    async def mark_exhausted_for_review(self, session, *, max_attempts: int, now_utc) -> list[str]:
        moved = []
        for event in self.events.values():
            if event.status == "FAILED" and event.attempts >= max_attempts:
                event.status = "FAILED_REVIEW"
                moved.append(event.event_id)
        return moved

    async def list_failed_for_replay(self, session, *, older_than_utc, max_attempts: int, limit: int):
        candidates = [
            event
            for event in self.events.values()
            if event.status == "FAILED" and event.attempts < max_attempts
        ]
        return candidates[:limit]


async def test_exhausted_events_do_not_starve_new_failures(monkeypatch) -> None:
    stuck = [
        SimpleNamespace(
            event_id=f"evt_stuck_{index}",
            status="FAILED",
            attempts=3,
            payload={"id": f"evt_stuck_{index}", "type": "invoice.paid"},
        )
        for index in range(50)
    ]
    fresh = SimpleNamespace(
        event_id="evt_new",
        status="FAILED",
        attempts=1,
        payload={"id": "evt_new", "type": "invoice.paid"},
    )
    store = _FakeEventStore([*stuck, fresh])
    reconciler = _FakeReconciler({"evt_new": "processed"})
    alerts: list[str] = []

    async def _handle(event):
        store.events[event["id"]].status = "PROCESSED"
        return await _FakeReconciler.handle(reconciler, event)

    async def _fake_alert(*, event: str, payload: dict[str, object]) -> None:
        alerts.append(event)

    monkeypatch.setattr(reconciler, "handle", _handle)
    monkeypatch.setattr(billing_reliability, "SessionLocal", _FakeSessionLocal())
    monkeypatch.setattr(
        billing_reliability.ProcessedBillingEventsRepo,
        "mark_exhausted_for_review",
        store.mark_exhausted_for_review,
    )
    monkeypatch.setattr(
        billing_reliability.ProcessedBillingEventsRepo,
        "list_failed_for_replay",
        store.list_failed_for_replay,
    )
    monkeypatch.setattr(billing_reliability, "get_billing_reconciler", lambda: reconciler)
    monkeypatch.setattr(billing_reliability, "send_ops_alert", _fake_alert)

    summaries = [await billing_reliability.replay_failed_billing_events_async(batch_size=50) for _ in range(3)]

    assert reconciler.handled == ["evt_new"]
    assert summaries[0]["exhausted"] == 50
    assert summaries[0]["replayed"] == 1
    assert all(summary["exhausted"] == 0 for summary in summaries[1:])
    assert alerts == ["billing_event_replay_exhausted"]
    assert sum(event.status == "FAILED_REVIEW" for event in store.events.values()) == 50


def _install_reconciliation_counts(monkeypatch, *, redeemed_without_access: int) -> list[dict[str, object]]:
    runs: list[dict[str, object]] = []

    async def _count_redeemed_without_access(session, *, now_utc) -> int:
        return redeemed_without_access

    async def _zero(session, **kwargs) -> int:
        return 0

    async def _events_by_status(session, *, status: str) -> int:
        return {"FAILED": 4, "FAILED_REVIEW": 1}[status]

    async def _create_run(session, **kwargs):
        runs.append(kwargs)
        return SimpleNamespace(id=1, **kwargs)

    module = billing_reliability
    monkeypatch.setattr(module, "SessionLocal", _FakeSessionLocal())
    monkeypatch.setattr(
        module.SubscriptionCodesRepo,
        "count_redeemed_without_access",
        _count_redeemed_without_access,
    )
    monkeypatch.setattr(module.SubscriptionCodesRepo, "count_available_past_deadline", _zero)
    monkeypatch.setattr(module.UserSubscriptionsRepo, "count_code_access_without_redeemed_code", _zero)
    monkeypatch.setattr(module.CodePurchasesRepo, "count_code_quantity_mismatches", _zero)
    monkeypatch.setattr(module.CodePurchasesRepo, "count_completed_without_codes_older_than", _zero)
    monkeypatch.setattr(module.ProcessedBillingEventsRepo, "count_by_status", _events_by_status)
    monkeypatch.setattr(module.ReconciliationRunsRepo, "create", _create_run)
    return runs


async def test_codes_reconciliation_clean_run_records_ok(monkeypatch) -> None:
    runs = _install_reconciliation_counts(monkeypatch, redeemed_without_access=0)
    alerts: list[str] = []

    async def _fake_alert(*, event: str, payload: dict[str, object]) -> None:
        alerts.append(event)

    monkeypatch.setattr(billing_reliability, "send_ops_alert", _fake_alert)

    result = await billing_reliability.run_codes_reconciliation_async()

    assert result["status"] == "OK"
    assert result["diff_count"] == 0
    assert result["failed_billing_events_count"] == 4
    assert result["review_billing_events_count"] == 1
    assert runs[0]["status"] == "OK"
    assert alerts == []


async def test_codes_reconciliation_diff_raises_alert(monkeypatch) -> None:
    runs = _install_reconciliation_counts(monkeypatch, redeemed_without_access=2)
    alerts: list[dict[str, object]] = []

    async def _fake_alert(*, event: str, payload: dict[str, object]) -> None:
        alerts.append({"event": event, "payload": payload})

    monkeypatch.setattr(billing_reliability, "send_ops_alert", _fake_alert)

    result = await billing_reliability.run_codes_reconciliation_async()

    assert result["status"] == "DIFF"
    assert result["diff_count"] == 2
    assert runs[0]["diff_count"] == 2
    assert runs[0]["details"]["redeemed_without_access_count"] == 2
    assert alerts[0]["event"] == "codes_reconciliation_diff_detected"
