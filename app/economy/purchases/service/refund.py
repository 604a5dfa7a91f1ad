from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.repo.code_purchases_repo import CodePurchasesRepo
from app.economy.codes.state import can_transition_purchase

logger = structlog.get_logger(__name__)


async def mark_purchase_refunded(
    session: AsyncSession,
    *,
    purchase_id: UUID,
    now_utc: datetime,
) -> bool:
    purchase = await CodePurchasesRepo.get_by_id(session, purchase_id)
    if purchase is None or not can_transition_purchase(purchase.status, "refunded"):
        return False

    updated = await CodePurchasesRepo.set_status(
        session,
        purchase_id=purchase_id,
        from_statuses=(purchase.status,),
        to_status="refunded",
        now_utc=now_utc,
    )
    if updated:
        logger.info("code_purchase_refunded", purchase_id=str(purchase_id))
    return updated
