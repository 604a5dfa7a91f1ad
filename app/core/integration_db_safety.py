from __future__ import annotations

import re
from dataclasses import dataclass

from sqlalchemy.engine import make_url

TEST_DB_NAME_RE = re.compile(r"test", re.IGNORECASE)
ALLOWED_LOCAL_HOSTS = frozenset(
    {
        "localhost",
        "127.0.0.1",
        "::1",
        "postgres",
        "subscription_codes_postgres",
        "subscription_codes_postgres_test",
    }
)


@dataclass(frozen=True, slots=True)
class IntegrationDbSafetyResult:
    is_safe: bool
    reason: str
    database_name: str
    host: str


def _parse_extra_hosts(raw_hosts: str) -> frozenset[str]:
    return frozenset(host.strip().lower() for host in raw_hosts.split(",") if host.strip())


def _rejection_reason(*, backend: str, db_name: str, host: str, allowed_hosts: frozenset[str]) -> str | None:
    if backend != "postgresql":
        return "Integration tests support only PostgreSQL test databases."
    if not db_name:
        return "Database name is empty."
    if TEST_DB_NAME_RE.search(db_name) is None:
        return "Database name must clearly indicate a test database (contain 'test')."
    if host not in allowed_hosts:
        return "Host is not in allowed local integration-test hosts."
    return None


def assess_integration_db_safety(database_url: str, *, extra_hosts: str = "") -> IntegrationDbSafetyResult:
    parsed = make_url(database_url)
    db_name = (parsed.database or "").strip()
    host = (parsed.host or "").strip().lower()

    reason = _rejection_reason(
        backend=parsed.get_backend_name(),
        db_name=db_name,
        host=host,
        allowed_hosts=ALLOWED_LOCAL_HOSTS | _parse_extra_hosts(extra_hosts),
    )
    return IntegrationDbSafetyResult(
        is_safe=reason is None,
        reason=reason or "ok",
        database_name=db_name,
        host=host,
    )


def assert_safe_integration_db(database_url: str, *, extra_hosts: str = "") -> None:
    result = assess_integration_db_safety(database_url, extra_hosts=extra_hosts)
    if result.is_safe:
        return

    raise RuntimeError(
        "Refusing to run integration tests against a database that TRUNCATE would destroy.\n"
        f"Reason: {result.reason}\n"
        f"Resolved DB: name='{result.database_name}' host='{result.host}'\n"
        "Required: use a dedicated local PostgreSQL test DB, e.g. 'subscription_codes_test'."
    )
