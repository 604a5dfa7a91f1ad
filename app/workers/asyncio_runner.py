from __future__ import annotations

import asyncio
import time
from collections.abc import Coroutine
from typing import Any, TypeVar

import structlog

from app.db.session import dispose_engine

T = TypeVar("T")

logger = structlog.get_logger(__name__)


async def _run_with_fresh_db_pool(job: Coroutine[Any, Any, T]) -> T:
    # Each asyncio.run gets its own loop; pooled asyncpg connections cannot cross loops.
    structlog.contextvars.bind_contextvars(job=getattr(job, "__qualname__", "unknown"))
    started = time.monotonic()
    await dispose_engine()
    try:
        return await job
    finally:
        await dispose_engine()
        logger.info("worker_job_finished", duration_ms=int((time.monotonic() - started) * 1000))
        structlog.contextvars.unbind_contextvars("job")


def run_async_job(job: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(_run_with_fresh_db_pool(job))
