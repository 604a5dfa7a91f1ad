from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from celery.schedules import crontab

from app.db.repo.code_purchases_repo import CodePurchasesRepo
from app.db.repo.processed_billing_events_repo import ProcessedBillingEventsRepo
from app.db.repo.reconciliation_runs_repo import ReconciliationRunsRepo
from app.db.repo.subscription_codes_repo import SubscriptionCodesRepo
from app.db.repo.user_subscriptions_repo import UserSubscriptionsRepo
from app.db.session import SessionLocal
from app.economy.billing.reconciler import get_billing_reconciler
from app.services.alerts import send_ops_alert
from app.services.codes_reconciliation import (
    compute_codes_reconciliation_diff,
    reconciliation_status,
)
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app

MAX_BILLING_EVENT_ATTEMPTS = 3

logger = structlog.get_logger(__name__)


async def replay_failed_billing_events_async(
    *,
    batch_size: int = 50,
    min_age_seconds: int = 60,
) -> dict[str, int]:
    now_utc = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        exhausted_ids = await ProcessedBillingEventsRepo.mark_exhausted_for_review(
            session,
            max_attempts=MAX_BILLING_EVENT_ATTEMPTS,
            now_utc=now_utc,
        )
        candidates = await ProcessedBillingEventsRepo.list_failed_for_replay(
            session,
            older_than_utc=now_utc - timedelta(seconds=min_age_seconds),
            max_attempts=MAX_BILLING_EVENT_ATTEMPTS,
            limit=batch_size,
        )
        pending = [event.payload for event in candidates]

    summary: dict[str, int] = {
        "examined": len(pending),
        "replayed": 0,
        "still_failing": 0,
        "exhausted": len(exhausted_ids),
        "skipped": 0,
    }
    reconciler = get_billing_reconciler()
    for payload in pending:
        if not isinstance(payload, dict):
            summary["skipped"] += 1
            continue

        result = await reconciler.handle(payload)
        if result.status == "failed":
            summary["still_failing"] += 1
        elif result.status == "duplicate":
            summary["skipped"] += 1
        else:
            summary["replayed"] += 1

    if exhausted_ids:
        logger.warning("billing_events_moved_to_review", event_ids=exhausted_ids[:20], count=len(exhausted_ids))
        await send_ops_alert(
            event="billing_event_replay_exhausted",
            payload={**summary, "event_ids": exhausted_ids[:20]},
        )

    logger.info("billing_events_replay_finished", **summary)
    return summary


async def run_codes_reconciliation_async(*, stuck_minutes: int = 30) -> dict[str, int | str]:
    started_at = datetime.now(timezone.utc)

    async with SessionLocal.begin() as session:
        redeemed_without_access_count = await SubscriptionCodesRepo.count_redeemed_without_access(
            session,
            now_utc=started_at,
        )
        access_without_redeemed_code_count = (
            await UserSubscriptionsRepo.count_code_access_without_redeemed_code(session)
        )
        quantity_mismatch_count = await CodePurchasesRepo.count_code_quantity_mismatches(session)
        available_past_deadline_count = await SubscriptionCodesRepo.count_available_past_deadline(
            session,
            now_utc=started_at,
        )
        stuck_purchases_count = await CodePurchasesRepo.count_completed_without_codes_older_than(
            session,
            older_than_utc=started_at - timedelta(minutes=stuck_minutes),
        )
        failed_billing_events_count = await ProcessedBillingEventsRepo.count_by_status(
            session,
            status="FAILED",
        )
        review_billing_events_count = await ProcessedBillingEventsRepo.count_by_status(
            session,
            status="FAILED_REVIEW",
        )
        diff_count = compute_codes_reconciliation_diff(
            redeemed_without_access_count=redeemed_without_access_count,
            access_without_redeemed_code_count=access_without_redeemed_code_count,
            quantity_mismatch_count=quantity_mismatch_count,
            available_past_deadline_count=available_past_deadline_count,
            stuck_purchases_count=stuck_purchases_count,
        )
        status = reconciliation_status(diff_count)

        details: dict[str, object] = {
            "redeemed_without_access_count": redeemed_without_access_count,
            "access_without_redeemed_code_count": access_without_redeemed_code_count,
            "quantity_mismatch_count": quantity_mismatch_count,
            "available_past_deadline_count": available_past_deadline_count,
            "stuck_purchases_count": stuck_purchases_count,
            "failed_billing_events_count": failed_billing_events_count,
            "review_billing_events_count": review_billing_events_count,
        }
        await ReconciliationRunsRepo.create(
            session,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            status=status,
            diff_count=diff_count,
            details=details,
        )

    result: dict[str, int | str] = {
        **{key: int(value) for key, value in details.items()},
        "diff_count": diff_count,
        "status": status,
    }
    if diff_count > 0:
        await send_ops_alert(event="codes_reconciliation_diff_detected", payload=result)
        logger.warning("codes_reconciliation_diff_detected", **result)
    else:
        logger.info("codes_reconciliation_finished", **result)
    return result


@celery_app.task(name="app.workers.tasks.billing_reliability.replay_failed_billing_events")
def replay_failed_billing_events(batch_size: int = 50, min_age_seconds: int = 60) -> dict[str, int]:
    return run_async_job(
        replay_failed_billing_events_async(
            batch_size=batch_size,
            min_age_seconds=min_age_seconds,
        )
    )


@celery_app.task(name="app.workers.tasks.billing_reliability.run_codes_reconciliation")
def run_codes_reconciliation(stuck_minutes: int = 30) -> dict[str, int | str]:
    return run_async_job(run_codes_reconciliation_async(stuck_minutes=stuck_minutes))


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "replay-failed-billing-events-every-5-minutes": {
            "task": "app.workers.tasks.billing_reliability.replay_failed_billing_events",
            "schedule": 300.0,
            "options": {"queue": "q_high"},
        },
        "codes-reconciliation-every-30-minutes": {
            "task": "app.workers.tasks.billing_reliability.run_codes_reconciliation",
            "schedule": 1800.0,
            "options": {"queue": "q_normal"},
        },
        "codes-reconciliation-daily-0330-utc": {
            "task": "app.workers.tasks.billing_reliability.run_codes_reconciliation",
            "schedule": crontab(hour=3, minute=30),
            "options": {"queue": "q_normal"},
        },
    }
)
