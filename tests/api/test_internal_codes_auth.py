from __future__ import annotations

from types import SimpleNamespace

from fastapi.testclient import TestClient

from app.api.routes import internal_codes_helpers
from app.main import app


def _settings(*, allowlist: str) -> SimpleNamespace:
    return SimpleNamespace(
        internal_api_token="internal-secret",
        internal_api_allowlist=allowlist,
        internal_api_trusted_proxies="",
    )


def test_internal_codes_rejects_missing_token(monkeypatch) -> None:
    monkeypatch.setattr(internal_codes_helpers, "get_settings", lambda: _settings(allowlist="127.0.0.1/32"))

    client = TestClient(app)
    response = client.post(
        "/internal/codes/redeem",
        json={"user_id": 1, "code": "ABCD-EFGH-JKMN-PQRS"},
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_internal_codes_rejects_disallowed_ip(monkeypatch) -> None:
    monkeypatch.setattr(internal_codes_helpers, "get_settings", lambda: _settings(allowlist="192.168.0.0/16"))

    client = TestClient(app)
    response = client.post(
        "/internal/codes/7/revoke",
        json={"reason": "fraud"},
        headers={
            "X-Internal-Token": "internal-secret",
            "X-Forwarded-For": "10.0.0.25",
            "X-Admin-User-Id": "1",
        },
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_internal_codes_stats_requires_internal_access(monkeypatch) -> None:
    monkeypatch.setattr(internal_codes_helpers, "get_settings", lambda: _settings(allowlist="10.0.0.0/8"))

    client = TestClient(app)
    response = client.get(
        "/internal/codes/stats",
        headers={"X-Internal-Token": "wrong", "X-Admin-User-Id": "1"},
    )

    assert response.status_code == 403
