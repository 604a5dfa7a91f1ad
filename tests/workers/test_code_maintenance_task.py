from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

from app.economy.purchases.errors import CodesAlreadyGeneratedError
from app.economy.purchases.recovery import RECOVERY_FAILURES_KEY
from app.workers.tasks import code_maintenance


class _FakeTransaction:
    async def __aenter__(self) -> object:
        return object()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeSessionLocal:
    def begin(self) -> _FakeTransaction:
        return _FakeTransaction()


def test_expire_subscription_codes_task_wrapper(monkeypatch) -> None:
    async def fake_async() -> dict[str, int]:
        return {"expired_codes": 4}

    monkeypatch.setattr(code_maintenance, "expire_subscription_codes_async", fake_async)

    result = code_maintenance.expire_subscription_codes()
    assert result["expired_codes"] == 4


def test_expire_code_entitlements_task_wrapper(monkeypatch) -> None:
    async def fake_async() -> dict[str, int]:
        return {"ended_entitlements": 2}

    monkeypatch.setattr(code_maintenance, "expire_code_entitlements_async", fake_async)

    result = code_maintenance.expire_code_entitlements()
    assert result["ended_entitlements"] == 2


def test_recover_purchases_without_codes_task_wrapper(monkeypatch) -> None:
    captured: dict[str, int] = {}

    async def fake_async(*, batch_size: int, grace_minutes: int) -> dict[str, int]:
        captured.update(batch_size=batch_size, grace_minutes=grace_minutes)
        return {"examined": 1, "recovered": 1}

    monkeypatch.setattr(code_maintenance, "recover_purchases_without_codes_async", fake_async)

    result = code_maintenance.recover_purchases_without_codes(batch_size=10, grace_minutes=5)
    assert result["recovered"] == 1
    assert captured == {"batch_size": 10, "grace_minutes": 5}


def test_code_maintenance_beat_schedule_registered() -> None:
    schedule = code_maintenance.celery_app.conf.beat_schedule
    assert schedule["expire-subscription-codes-hourly"]["task"] == (
        "app.workers.tasks.code_maintenance.expire_subscription_codes"
    )
    assert schedule["recover-purchases-without-codes-every-5-minutes"]["options"] == {"queue": "q_high"}


async def test_recover_purchases_classifies_outcomes(monkeypatch) -> None:
    recovered_id, skipped_id, failing_id, review_id = uuid4(), uuid4(), uuid4(), uuid4()
    purchases = {
        recovered_id: SimpleNamespace(id=recovered_id, metadata_={}),
        skipped_id: SimpleNamespace(id=skipped_id, metadata_=None),
        failing_id: SimpleNamespace(id=failing_id, metadata_={RECOVERY_FAILURES_KEY: 1}),
        review_id: SimpleNamespace(id=review_id, metadata_={RECOVERY_FAILURES_KEY: 3}),
    }
    metadata_updates: dict[object, dict[str, object]] = {}
    flagged: list[object] = []
    alerts: list[dict[str, object]] = []

    async def _fake_list(session, *, older_than_utc, limit: int):
        return list(purchases.values())

    async def _fake_issue(session, *, purchase_id, now_utc):
        if purchase_id == skipped_id:
            raise CodesAlreadyGeneratedError
        if purchase_id == failing_id:
            raise RuntimeError("unique index exhausted")
        return None

    async def _fake_get_for_update(session, purchase_id):
        return purchases.get(purchase_id)

    async def _fake_update_metadata(session, *, purchase_id, metadata, now_utc) -> bool:
        metadata_updates[purchase_id] = metadata
        return True

    async def _fake_mark_review(session, *, purchase_id, now_utc) -> bool:
        flagged.append(purchase_id)
        return True

    async def _fake_alert(*, event: str, payload: dict[str, object]) -> None:
        alerts.append({"event": event, "payload": payload})

    monkeypatch.setattr(code_maintenance, "SessionLocal", _FakeSessionLocal())
    monkeypatch.setattr(
        code_maintenance.CodePurchasesRepo,
        "list_completed_without_codes_older_than",
        _fake_list,
    )
    monkeypatch.setattr(code_maintenance.CodePurchasesRepo, "get_by_id_for_update", _fake_get_for_update)
    monkeypatch.setattr(code_maintenance.CodePurchasesRepo, "update_metadata", _fake_update_metadata)
    monkeypatch.setattr(code_maintenance.CodePurchasesRepo, "mark_codes_review_required", _fake_mark_review)
    monkeypatch.setattr(code_maintenance.PurchaseService, "issue_codes", _fake_issue)
    monkeypatch.setattr(code_maintenance, "send_ops_alert", _fake_alert)

    summary = await code_maintenance.recover_purchases_without_codes_async(batch_size=10)

    assert summary == {
        "examined": 4,
        "recovered": 1,
        "review": 1,
        "retryable_failure": 1,
        "skipped": 1,
        "missing": 0,
    }
    assert metadata_updates == {failing_id: {RECOVERY_FAILURES_KEY: 2}}
    assert [alert["event"] for alert in alerts] == ["purchase_codes_recovery_review_required"]
    assert flagged == [review_id]
    assert alerts[0]["payload"]["purchase_ids"] == [str(review_id)]


async def test_recover_purchases_escalates_after_last_attempt(monkeypatch) -> None:
    purchase_id = uuid4()
    purchase = SimpleNamespace(id=purchase_id, metadata_={RECOVERY_FAILURES_KEY: 2})
    alerts: list[str] = []

    async def _fake_list(session, *, older_than_utc, limit: int):
        return [purchase]

    async def _fake_issue(session, *, purchase_id, now_utc):
        raise RuntimeError("still broken")

    async def _fake_get_for_update(session, purchase_id):
        return purchase

    async def _fake_update_metadata(session, *, purchase_id, metadata, now_utc) -> bool:
        purchase.metadata_ = metadata
        return True

    async def _fake_mark_review(session, *, purchase_id, now_utc) -> bool:
        purchase.codes_review_required = True
        return True

    async def _fake_alert(*, event: str, payload: dict[str, object]) -> None:
        alerts.append(event)

    monkeypatch.setattr(code_maintenance, "SessionLocal", _FakeSessionLocal())
    monkeypatch.setattr(
        code_maintenance.CodePurchasesRepo,
        "list_completed_without_codes_older_than",
        _fake_list,
    )
    monkeypatch.setattr(code_maintenance.CodePurchasesRepo, "get_by_id_for_update", _fake_get_for_update)
    monkeypatch.setattr(code_maintenance.CodePurchasesRepo, "update_metadata", _fake_update_metadata)
    monkeypatch.setattr(code_maintenance.CodePurchasesRepo, "mark_codes_review_required", _fake_mark_review)
    monkeypatch.setattr(code_maintenance.PurchaseService, "issue_codes", _fake_issue)
    monkeypatch.setattr(code_maintenance, "send_ops_alert", _fake_alert)

    summary = await code_maintenance.recover_purchases_without_codes_async()

    assert summary["review"] == 1
    assert purchase.metadata_ == {RECOVERY_FAILURES_KEY: 3}
    assert purchase.codes_review_required is True
    assert alerts == ["purchase_codes_recovery_review_required"]


async def test_recover_purchases_already_in_review_does_not_alert_again(monkeypatch) -> None:
    purchase_id = uuid4()
    alerts: list[str] = []

    async def _fake_list(session, *, older_than_utc, limit: int):
        return [SimpleNamespace(id=purchase_id, metadata_={RECOVERY_FAILURES_KEY: 3})]

    async def _fake_issue(session, *, purchase_id, now_utc):
        raise AssertionError("exhausted purchases are not retried")

    async def _fake_mark_review(session, *, purchase_id, now_utc) -> bool:
        return False

    async def _fake_alert(*, event: str, payload: dict[str, object]) -> None:
        alerts.append(event)

    monkeypatch.setattr(code_maintenance, "SessionLocal", _FakeSessionLocal())
    monkeypatch.setattr(
        code_maintenance.CodePurchasesRepo,
        "list_completed_without_codes_older_than",
        _fake_list,
    )
    monkeypatch.setattr(code_maintenance.CodePurchasesRepo, "mark_codes_review_required", _fake_mark_review)
    monkeypatch.setattr(code_maintenance.PurchaseService, "issue_codes", _fake_issue)
    monkeypatch.setattr(code_maintenance, "send_ops_alert", _fake_alert)

    summary = await code_maintenance.recover_purchases_without_codes_async()

    assert summary["review"] == 0
    assert summary["skipped"] == 1
    assert alerts == []


async def test_expire_subscription_codes_reports_count(monkeypatch) -> None:
    async def _fake_expire(session, *, now_utc) -> int:
        return 6

    monkeypatch.setattr(code_maintenance, "SessionLocal", _FakeSessionLocal())
    monkeypatch.setattr(code_maintenance.SubscriptionCodesRepo, "expire_due_codes", _fake_expire)

    assert await code_maintenance.expire_subscription_codes_async() == {"expired_codes": 6}
