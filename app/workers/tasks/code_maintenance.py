from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

import structlog

from app.db.repo.code_purchases_repo import CodePurchasesRepo
from app.db.repo.subscription_codes_repo import SubscriptionCodesRepo
from app.db.session import SessionLocal
from app.economy.purchases.errors import (
    CodesAlreadyGeneratedError,
    PurchaseNotCompletedError,
    PurchaseNotFoundError,
)
from app.economy.purchases.recovery import (
    MAX_CODES_RECOVERY_ATTEMPTS,
    increment_recovery_failures,
    recovery_failures,
)
from app.economy.purchases.service import PurchaseService
from app.economy.subscriptions.service import SubscriptionService
from app.services.alerts import send_ops_alert
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


async def expire_subscription_codes_async() -> dict[str, int]:
    now_utc = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        expired_codes = await SubscriptionCodesRepo.expire_due_codes(session, now_utc=now_utc)

    result = {"expired_codes": expired_codes}
    logger.info("subscription_codes_expiry_finished", **result)
    return result


async def expire_code_entitlements_async() -> dict[str, int]:
    now_utc = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        ended = await SubscriptionService.expire_code_entitlements(session, now_utc=now_utc)

    result = {"ended_entitlements": ended}
    logger.info("code_entitlements_expiry_finished", **result)
    return result


async def _escalate_to_review(purchase_id: UUID, *, now_utc: datetime) -> str:
    async with SessionLocal.begin() as session:
        flagged = await CodePurchasesRepo.mark_codes_review_required(
            session,
            purchase_id=purchase_id,
            now_utc=now_utc,
        )
    return "review" if flagged else "skipped"


async def _record_recovery_failure(purchase_id: UUID, *, now_utc: datetime) -> str:
    async with SessionLocal.begin() as session:
        purchase = await CodePurchasesRepo.get_by_id_for_update(session, purchase_id)
        if purchase is None:
            return "missing"
        metadata, failures = increment_recovery_failures(purchase.metadata_)
        await CodePurchasesRepo.update_metadata(
            session,
            purchase_id=purchase_id,
            metadata=metadata,
            now_utc=now_utc,
        )
        if failures < MAX_CODES_RECOVERY_ATTEMPTS:
            return "retryable_failure"
        flagged = await CodePurchasesRepo.mark_codes_review_required(
            session,
            purchase_id=purchase_id,
            now_utc=now_utc,
        )
    return "review" if flagged else "skipped"


async def _recover_single_purchase(purchase_id: UUID, *, now_utc: datetime) -> str:
    async with SessionLocal.begin() as session:
        try:
            await PurchaseService.issue_codes(session, purchase_id=purchase_id, now_utc=now_utc)
        except PurchaseNotFoundError:
            return "missing"
        except (CodesAlreadyGeneratedError, PurchaseNotCompletedError):
            return "skipped"
    return "recovered"


async def recover_purchases_without_codes_async(
    *,
    batch_size: int = 50,
    grace_minutes: int = 10,
) -> dict[str, int]:
    now_utc = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        candidates = await CodePurchasesRepo.list_completed_without_codes_older_than(
            session,
            older_than_utc=now_utc - timedelta(minutes=grace_minutes),
            limit=batch_size,
        )
        pending = [(purchase.id, recovery_failures(purchase.metadata_)) for purchase in candidates]

    summary: dict[str, int] = {
        "examined": len(pending),
        "recovered": 0,
        "review": 0,
        "retryable_failure": 0,
        "skipped": 0,
        "missing": 0,
    }
    review_ids: list[str] = []
    for purchase_id, failures in pending:
        if failures >= MAX_CODES_RECOVERY_ATTEMPTS:
            outcome = await _escalate_to_review(purchase_id, now_utc=now_utc)
        else:
            try:
                outcome = await _recover_single_purchase(purchase_id, now_utc=now_utc)
            except Exception:
                logger.exception("purchase_codes_recovery_error", purchase_id=str(purchase_id))
                outcome = await _record_recovery_failure(purchase_id, now_utc=now_utc)
        summary[outcome] = summary.get(outcome, 0) + 1
        if outcome == "review":
            review_ids.append(str(purchase_id))

    if review_ids:
        await send_ops_alert(
            event="purchase_codes_recovery_review_required",
            payload={**summary, "purchase_ids": review_ids[:20]},
        )

    logger.info("purchase_codes_recovery_finished", **summary)
    return summary


@celery_app.task(name="app.workers.tasks.code_maintenance.expire_subscription_codes")
def expire_subscription_codes() -> dict[str, int]:
    return run_async_job(expire_subscription_codes_async())


@celery_app.task(name="app.workers.tasks.code_maintenance.expire_code_entitlements")
def expire_code_entitlements() -> dict[str, int]:
    return run_async_job(expire_code_entitlements_async())


@celery_app.task(name="app.workers.tasks.code_maintenance.recover_purchases_without_codes")
def recover_purchases_without_codes(batch_size: int = 50, grace_minutes: int = 10) -> dict[str, int]:
    return run_async_job(
        recover_purchases_without_codes_async(
            batch_size=batch_size,
            grace_minutes=grace_minutes,
        )
    )


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "expire-subscription-codes-hourly": {
            "task": "app.workers.tasks.code_maintenance.expire_subscription_codes",
            "schedule": 3600.0,
            "options": {"queue": "q_normal"},
        },
        "expire-code-entitlements-every-15-minutes": {
            "task": "app.workers.tasks.code_maintenance.expire_code_entitlements",
            "schedule": 900.0,
            "options": {"queue": "q_normal"},
        },
        "recover-purchases-without-codes-every-5-minutes": {
            "task": "app.workers.tasks.code_maintenance.recover_purchases_without_codes",
            "schedule": 300.0,
            "options": {"queue": "q_high"},
        },
    }
)
