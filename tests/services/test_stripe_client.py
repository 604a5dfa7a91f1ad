from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe
from pydantic import SecretStr

from app.services import stripe_client
from app.services.stripe_client import (
    StripeClientError,
    StripeNotConfiguredError,
    StripeTimeoutError,
    WebhookSignatureError,
    call_stripe,
    verify_webhook_payload,
)

WEBHOOK_SECRET = "whsec_unit_test"


def _settings(**overrides: object) -> SimpleNamespace:
    base = {
        "stripe_secret_key": SecretStr("sk_test_123"),
        "stripe_webhook_secret": SecretStr(WEBHOOK_SECRET),
        "stripe_webhook_tolerance_seconds": 300,
        "stripe_api_timeout_seconds": 0.05,
        "stripe_max_network_retries": 0,
    }
    base.update(overrides)
    return SimpleNamespace(**base)


def _sign(payload: bytes, *, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def test_verify_webhook_payload_returns_event(monkeypatch) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings())
    payload = json.dumps({"id": "evt_1", "type": "invoice.paid"}).encode("utf-8")

    event = verify_webhook_payload(payload=payload, sig_header=_sign(payload))

    assert event == {"id": "evt_1", "type": "invoice.paid"}


@pytest.mark.parametrize(
    "sig_header",
    [
        None,
        "",
        "t=1,v1=deadbeef",
    ],
)
def test_verify_webhook_payload_rejects_bad_headers(monkeypatch, sig_header: str | None) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings())

    with pytest.raises(WebhookSignatureError):
        verify_webhook_payload(payload=b'{"id": "evt_1"}', sig_header=sig_header)


def test_verify_webhook_payload_rejects_wrong_secret(monkeypatch) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings())
    payload = b'{"id": "evt_1"}'

    with pytest.raises(WebhookSignatureError):
        verify_webhook_payload(payload=payload, sig_header=_sign(payload, secret="whsec_other"))


def test_verify_webhook_payload_rejects_stale_timestamp(monkeypatch) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings())
    payload = b'{"id": "evt_1"}'

    with pytest.raises(WebhookSignatureError):
        verify_webhook_payload(
            payload=payload,
            sig_header=_sign(payload, timestamp=int(time.time()) - 3600),
        )


def test_verify_webhook_payload_requires_configured_secret(monkeypatch) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings(stripe_webhook_secret=SecretStr("")))
    payload = b'{"id": "evt_1"}'

    with pytest.raises(WebhookSignatureError, match="not configured"):
        verify_webhook_payload(payload=payload, sig_header=_sign(payload))


def test_verify_webhook_payload_rejects_non_object_json(monkeypatch) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings())
    payload = b'["not", "an", "event"]'

    with pytest.raises(WebhookSignatureError, match="invalid payload"):
        verify_webhook_payload(payload=payload, sig_header=_sign(payload))


async def test_call_stripe_returns_operation_result(monkeypatch) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings())

    def operation(*, id: str) -> dict[str, str]:
        return {"id": id}

    assert await call_stripe(operation, id="price_1") == {"id": "price_1"}
    assert stripe.api_key == "sk_test_123"


async def test_call_stripe_maps_stripe_errors(monkeypatch) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings())

    def operation() -> None:
        raise stripe.InvalidRequestError("No such price", param="price")

    with pytest.raises(StripeClientError):
        await call_stripe(operation)


async def test_call_stripe_times_out(monkeypatch) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings())

    async def fake_to_thread(operation, *args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(stripe_client.asyncio, "to_thread", fake_to_thread)

    with pytest.raises(StripeTimeoutError):
        await call_stripe(lambda: None)


async def test_call_stripe_requires_secret_key(monkeypatch) -> None:
    monkeypatch.setattr(stripe_client, "get_settings", lambda: _settings(stripe_secret_key=SecretStr("")))

    with pytest.raises(StripeNotConfiguredError):
        await call_stripe(lambda: None)
