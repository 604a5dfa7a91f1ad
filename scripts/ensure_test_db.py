from __future__ import annotations

import argparse
import asyncio
import os
import re

import asyncpg
from sqlalchemy.engine import make_url

from app.core.config import get_settings
from app.core.integration_db_safety import assess_integration_db_safety

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _validate_target(database_url: str, *, extra_hosts: str = "") -> None:
    safety = assess_integration_db_safety(database_url, extra_hosts=extra_hosts)
    if not safety.is_safe:
        raise RuntimeError(f"Refusing to create database '{safety.database_name}': {safety.reason}")
    if IDENTIFIER_RE.fullmatch(safety.database_name) is None:
        raise RuntimeError(
            f"Unsupported database name '{safety.database_name}'. "
            "Only [A-Za-z0-9_] identifiers are supported."
        )


async def _ensure_database_exists(database_url: str, *, extra_hosts: str = "") -> bool:
    _validate_target(database_url, extra_hosts=extra_hosts)
    parsed = make_url(database_url)
    if parsed.username is None:
        raise RuntimeError("DATABASE_URL username is required.")

    db_name = str(parsed.database)
    conn = await asyncpg.connect(
        host=parsed.host or "localhost",
        port=int(parsed.port or 5432),
        user=parsed.username,
        password=parsed.password,
        database="postgres",
    )
    try:
        exists = await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name)
        if exists:
            return False
        await conn.execute(f'CREATE DATABASE "{db_name}"')
        return True
    finally:
        await conn.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create the local integration-test database if missing")
    parser.add_argument("--database-url", help="Defaults to DATABASE_URL")
    parser.add_argument(
        "--extra-hosts",
        default=os.environ.get("INTEGRATION_DB_EXTRA_HOSTS", ""),
        help="Comma-separated hosts allowed in addition to the local defaults",
    )
    args = parser.parse_args(argv)

    database_url = args.database_url or get_settings().database_url
    created = asyncio.run(_ensure_database_exists(database_url, extra_hosts=args.extra_hosts))
    parsed = make_url(database_url)
    print(  # noqa: T201
        f"ensure_test_db: {'created' if created else 'exists'} db={parsed.database} host={parsed.host}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
