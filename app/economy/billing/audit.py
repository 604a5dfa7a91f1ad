from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.repo.billing_transactions_repo import BillingTransactionsRepo

logger = structlog.get_logger(__name__)


async def record_transaction(
    session: AsyncSession,
    *,
    stripe_event_id: str,
    raw_event_type: str,
    transaction_type: str,
    status: str,
    amount: int,
    now_utc: datetime,
    **fields: object,
) -> int | None:
    values: dict[str, object] = {
        "stripe_event_id": stripe_event_id,
        "raw_event_type": raw_event_type,
        "type": transaction_type,
        "status": status,
        "amount": max(0, int(amount)),
        "created_at": now_utc,
        "updated_at": now_utc,
        **{key: value for key, value in fields.items() if value is not None},
    }
    transaction_id = await BillingTransactionsRepo.try_create(session, values=values)
    if transaction_id is None:
        logger.info(
            "billing_transaction_duplicate",
            stripe_event_id=stripe_event_id,
            transaction_type=transaction_type,
        )
    return transaction_id


async def record_transaction_best_effort(
    session: AsyncSession,
    *,
    stripe_event_id: str,
    raw_event_type: str,
    transaction_type: str,
    status: str,
    amount: int,
    now_utc: datetime,
    **fields: object,
) -> int | None:
    """Write an audit row inside a savepoint; a failure is logged and swallowed
    so the surrounding operation still commits."""
    try:
        async with session.begin_nested():
            return await record_transaction(
                session,
                stripe_event_id=stripe_event_id,
                raw_event_type=raw_event_type,
                transaction_type=transaction_type,
                status=status,
                amount=amount,
                now_utc=now_utc,
                **fields,
            )
    except SQLAlchemyError:
        logger.exception(
            "billing_transaction_record_failed",
            stripe_event_id=stripe_event_id,
            transaction_type=transaction_type,
        )
        return None
