from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from app.core.config import get_settings

logger = structlog.get_logger(__name__)

DEFAULT_PAGERDUTY_EVENTS_URL = "https://events.pagerduty.com/v2/enqueue"
ALERT_HTTP_TIMEOUT_SECONDS = 5.0
SERVICE_NAME = "subscription-codes"
CHANNELS = ("generic", "slack", "pagerduty")
SEVERITIES = ("critical", "error", "warning", "info")
SLACK_COLORS = {
    "critical": "#B42318",
    "error": "#F04438",
    "warning": "#F79009",
    "info": "#1570EF",
}


@dataclass(frozen=True)
class AlertRoute:
    channels: tuple[str, ...]
    severity: str
    escalation_tier: str


DEFAULT_ALERT_ROUTE = AlertRoute(channels=("generic",), severity="warning", escalation_tier="ops_l3")

_PAGE = ("pagerduty", "slack", "generic")
_NOTIFY = ("slack", "generic")

EVENT_ALERT_ROUTES: dict[str, AlertRoute] = {
    "billing_event_processing_failed": AlertRoute(_NOTIFY, "error", "ops_l2"),
    "billing_event_replay_exhausted": AlertRoute(_PAGE, "critical", "ops_l1"),
    "codes_reconciliation_diff_detected": AlertRoute(_PAGE, "critical", "ops_l1"),
    "purchase_codes_recovery_review_required": AlertRoute(_PAGE, "error", "ops_l1"),
}


def _setting_str(settings: object, attr: str) -> str:
    value = getattr(settings, attr, "")
    return value.strip() if isinstance(value, str) else ""


def _load_policy_overrides(raw_policy: str) -> dict[str, dict[str, Any]]:
    if not raw_policy:
        return {}
    try:
        parsed = json.loads(raw_policy)
    except json.JSONDecodeError:
        logger.warning("ops_alert_policy_parse_failed")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("ops_alert_policy_invalid_shape")
        return {}
    return {
        str(event_name): route
        for event_name, route in parsed.items()
        if isinstance(event_name, str) and isinstance(route, dict)
    }


def resolve_alert_route(*, event: str, policy_raw: str = "") -> AlertRoute:
    """Route for an alert event, with `OPS_ALERT_ESCALATION_POLICY_JSON` applied.

    The policy maps an event name (or `"*"`) to any of `channels`, `severity`
    and `escalation_tier`; unknown or malformed values keep the built-in route.
    """
    route = EVENT_ALERT_ROUTES.get(event, DEFAULT_ALERT_ROUTE)
    overrides = _load_policy_overrides(policy_raw)
    override = overrides.get(event) or overrides.get("*")
    if override is None:
        return route

    raw_channels = override.get("channels")
    if isinstance(raw_channels, list):
        channels: list[str] = []
        for raw_channel in raw_channels:
            channel = raw_channel.strip().lower() if isinstance(raw_channel, str) else ""
            if channel in CHANNELS and channel not in channels:
                channels.append(channel)
        if channels:
            route = replace(route, channels=tuple(channels))

    raw_severity = override.get("severity")
    if isinstance(raw_severity, str) and raw_severity.strip().lower() in SEVERITIES:
        route = replace(route, severity=raw_severity.strip().lower())

    raw_tier = override.get("escalation_tier")
    if isinstance(raw_tier, str) and raw_tier.strip():
        route = replace(route, escalation_tier=raw_tier.strip())
    return route


def resolve_alert_targets(*, route: AlertRoute, settings: object) -> list[tuple[str, str]]:
    generic_url = _setting_str(settings, "ops_alert_webhook_url")
    urls = {
        "generic": generic_url,
        "slack": _setting_str(settings, "ops_alert_slack_webhook_url"),
    }
    if _setting_str(settings, "ops_alert_pagerduty_routing_key"):
        urls["pagerduty"] = (
            _setting_str(settings, "ops_alert_pagerduty_events_url") or DEFAULT_PAGERDUTY_EVENTS_URL
        )

    targets = [(channel, urls[channel]) for channel in route.channels if urls.get(channel)]
    if not targets and generic_url:
        targets.append(("generic", generic_url))
    return targets


def build_alert_body(
    *,
    channel: str,
    event: str,
    payload: dict[str, object],
    sent_at: datetime,
    route: AlertRoute,
    app_env: str,
    pagerduty_routing_key: str = "",
) -> dict[str, Any]:
    if channel == "generic":
        return {
            "event": event,
            "payload": payload,
            "sent_at": sent_at.isoformat(),
            "severity": route.severity,
            "escalation_tier": route.escalation_tier,
        }
    if channel == "slack":
        payload_text = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return {
            "text": f"[{route.severity.upper()}][{route.escalation_tier}] {event}",
            "attachments": [
                {
                    "color": SLACK_COLORS.get(route.severity, SLACK_COLORS["warning"]),
                    "fields": [
                        {"title": "Environment", "value": app_env, "short": True},
                        {"title": "Sent At", "value": sent_at.isoformat(), "short": True},
                        {"title": "Event", "value": event, "short": False},
                        {"title": "Payload", "value": payload_text, "short": False},
                    ],
                }
            ],
        }
    if channel == "pagerduty":
        return {
            "routing_key": pagerduty_routing_key,
            "event_action": "trigger",
            "dedup_key": f"{SERVICE_NAME}:{event}:{route.escalation_tier}",
            "payload": {
                "summary": f"[{app_env}] {event}",
                "source": f"{SERVICE_NAME}/{app_env}",
                "severity": route.severity,
                "timestamp": sent_at.isoformat(),
                "component": SERVICE_NAME,
                "group": route.escalation_tier,
                "custom_details": {"event": event, "payload": payload},
            },
        }
    raise ValueError(f"Unsupported alert channel: {channel}")


async def send_ops_alert(*, event: str, payload: dict[str, object]) -> bool:
    settings = get_settings()
    route = resolve_alert_route(
        event=event,
        policy_raw=_setting_str(settings, "ops_alert_escalation_policy_json"),
    )
    targets = resolve_alert_targets(route=route, settings=settings)
    if not targets:
        logger.warning("ops_alert_not_configured", alert_event=event, payload=payload)
        return False

    sent_at = datetime.now(timezone.utc)
    app_env = _setting_str(settings, "app_env") or "dev"
    routing_key = _setting_str(settings, "ops_alert_pagerduty_routing_key")

    delivered_to: list[str] = []
    failed_to: list[str] = []
    async with httpx.AsyncClient(timeout=ALERT_HTTP_TIMEOUT_SECONDS) as client:
        for channel, url in targets:
            body = build_alert_body(
                channel=channel,
                event=event,
                payload=payload,
                sent_at=sent_at,
                route=route,
                app_env=app_env,
                pagerduty_routing_key=routing_key,
            )
            try:
                response = await client.post(url, json=body)
                response.raise_for_status()
            except httpx.HTTPError:
                logger.exception("ops_alert_delivery_failed", alert_event=event, provider=channel)
                failed_to.append(channel)
            else:
                delivered_to.append(channel)

    if not delivered_to:
        logger.error(
            "ops_alert_delivery_exhausted",
            alert_event=event,
            severity=route.severity,
            failed_to=failed_to,
        )
        return False

    logger.info(
        "ops_alert_delivered",
        alert_event=event,
        severity=route.severity,
        escalation_tier=route.escalation_tier,
        delivered_to=delivered_to,
        failed_to=failed_to,
    )
    return True
