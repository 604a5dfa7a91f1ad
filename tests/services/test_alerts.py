from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from app.services import alerts


class _Response:
    def raise_for_status(self) -> None:
        return None


class _Client:
    def __init__(self, calls: list[dict[str, Any]], *, fail_urls: set[str] | None = None) -> None:
        self._calls = calls
        self._fail_urls = fail_urls or set()

    async def __aenter__(self) -> "_Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def post(self, url: str, json: dict[str, object]) -> _Response:
        self._calls.append({"url": url, "json": json})
        if url in self._fail_urls:
            raise httpx.ConnectError("delivery failed")
        return _Response()


def _settings(**overrides: object) -> SimpleNamespace:
    base = {
        "app_env": "test",
        "ops_alert_webhook_url": "",
        "ops_alert_slack_webhook_url": "",
        "ops_alert_pagerduty_events_url": "",
        "ops_alert_pagerduty_routing_key": "",
        "ops_alert_escalation_policy_json": "",
    }
    base.update(overrides)
    return SimpleNamespace(**base)


def _patch_http_client(
    monkeypatch: pytest.MonkeyPatch,
    calls: list[dict[str, Any]],
    *,
    fail_urls: set[str] | None = None,
) -> None:
    def factory(timeout: float) -> _Client:  # noqa: ARG001
        return _Client(calls, fail_urls=fail_urls)

    monkeypatch.setattr(alerts.httpx, "AsyncClient", factory)


async def test_send_ops_alert_returns_false_when_no_targets_configured(monkeypatch) -> None:
    monkeypatch.setattr(alerts, "get_settings", lambda: _settings())
    sent = await alerts.send_ops_alert(event="billing_event_processing_failed", payload={"k": "v"})
    assert sent is False


async def test_send_ops_alert_posts_to_generic_webhook(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        alerts,
        "get_settings",
        lambda: _settings(ops_alert_webhook_url="https://alerts.example/generic"),
    )
    _patch_http_client(monkeypatch, calls)

    sent = await alerts.send_ops_alert(event="some_unrouted_event", payload={"count": 2})

    assert sent is True
    assert len(calls) == 1
    assert calls[0]["url"] == "https://alerts.example/generic"
    assert calls[0]["json"]["event"] == "some_unrouted_event"
    assert calls[0]["json"]["payload"] == {"count": 2}
    assert calls[0]["json"]["severity"] == "warning"


async def test_send_ops_alert_pages_for_reconciliation_diff(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        alerts,
        "get_settings",
        lambda: _settings(
            ops_alert_webhook_url="https://alerts.example/generic",
            ops_alert_slack_webhook_url="https://hooks.slack.example/x",
            ops_alert_pagerduty_routing_key="pd_key",
        ),
    )
    _patch_http_client(monkeypatch, calls)

    sent = await alerts.send_ops_alert(event="codes_reconciliation_diff_detected", payload={"diff_count": 3})

    assert sent is True
    urls = [call["url"] for call in calls]
    assert urls == [
        alerts.DEFAULT_PAGERDUTY_EVENTS_URL,
        "https://hooks.slack.example/x",
        "https://alerts.example/generic",
    ]
    pagerduty_body = calls[0]["json"]
    assert pagerduty_body["routing_key"] == "pd_key"
    assert pagerduty_body["payload"]["severity"] == "critical"
    assert pagerduty_body["dedup_key"] == "subscription-codes:codes_reconciliation_diff_detected:ops_l1"


async def test_send_ops_alert_survives_partial_delivery_failure(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        alerts,
        "get_settings",
        lambda: _settings(
            ops_alert_webhook_url="https://alerts.example/generic",
            ops_alert_slack_webhook_url="https://hooks.slack.example/x",
        ),
    )
    _patch_http_client(monkeypatch, calls, fail_urls={"https://hooks.slack.example/x"})

    sent = await alerts.send_ops_alert(event="billing_event_processing_failed", payload={})

    assert sent is True
    assert len(calls) == 2


async def test_send_ops_alert_returns_false_when_every_delivery_fails(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        alerts,
        "get_settings",
        lambda: _settings(ops_alert_webhook_url="https://alerts.example/generic"),
    )
    _patch_http_client(monkeypatch, calls, fail_urls={"https://alerts.example/generic"})

    sent = await alerts.send_ops_alert(event="billing_event_processing_failed", payload={})

    assert sent is False


def test_resolve_alert_route_applies_policy_overrides() -> None:
    route = alerts.resolve_alert_route(
        event="billing_event_processing_failed",
        policy_raw='{"billing_event_processing_failed": {"channels": ["PagerDuty", "bogus"], "severity": "critical"}}',
    )

    assert route.channels == ("pagerduty",)
    assert route.severity == "critical"
    assert route.escalation_tier == "ops_l2"


def test_resolve_alert_route_ignores_malformed_policy() -> None:
    route = alerts.resolve_alert_route(event="billing_event_replay_exhausted", policy_raw="{not json")
    assert route == alerts.EVENT_ALERT_ROUTES["billing_event_replay_exhausted"]


def test_resolve_alert_targets_falls_back_to_generic_webhook() -> None:
    route = alerts.AlertRoute(channels=("slack",), severity="error", escalation_tier="ops_l2")
    targets = alerts.resolve_alert_targets(
        route=route,
        settings=_settings(ops_alert_webhook_url="https://alerts.example/generic"),
    )
    assert targets == [("generic", "https://alerts.example/generic")]


def test_build_alert_body_rejects_unknown_channel() -> None:
    route = alerts.DEFAULT_ALERT_ROUTE
    with pytest.raises(ValueError):
        alerts.build_alert_body(
            channel="sms",
            event="x",
            payload={},
            sent_at=alerts.datetime.now(alerts.timezone.utc),
            route=route,
            app_env="test",
        )
