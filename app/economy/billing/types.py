from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@dataclass(slots=True)
class BillingEventContext:
    session_factory: async_sessionmaker[AsyncSession]
    event_id: str
    event_type: str
    event: Mapping[str, Any]
    obj: Mapping[str, Any]
    event_at: datetime
    now_utc: datetime


@dataclass(slots=True)
class ReconcileResult:
    event_id: str
    event_type: str
    status: str
    detail: str | None = None
