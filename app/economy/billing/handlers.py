from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import stripe
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.repo.billing_transactions_repo import BillingTransactionsRepo
from app.db.repo.code_purchases_repo import CodePurchasesRepo
from app.db.repo.user_subscriptions_repo import UserSubscriptionsRepo
from app.db.repo.users_repo import UsersRepo
from app.economy.billing.audit import record_transaction
from app.economy.billing.payloads import (
    as_id,
    event_previous_attributes,
    invoice_line_period,
    invoice_subscription_id,
    is_bulk_metadata,
    metadata_of,
    metadata_user_id,
    parse_bulk_metadata,
    subscription_snapshot,
)
from app.economy.billing.types import BillingEventContext
from app.economy.purchases.errors import CodesAlreadyGeneratedError
from app.economy.purchases.service import PurchaseService
from app.economy.purchases.types import BillingRefs
from app.economy.subscriptions.service import SubscriptionService
from app.services.stripe_client import call_stripe

PROCESSED = "processed"
IGNORED = "ignored"

SIGNIFICANT_SUBSCRIPTION_CHANGES = ("status", "items", "cancel_at_period_end")
PAYMENT_FAILED_FROM_STATUSES = ("active", "trialing", "past_due", "unpaid", "incomplete")

EventHandler = Callable[[BillingEventContext], Awaitable[str]]

logger = structlog.get_logger(__name__)


async def _resolve_subscription_user_id(
    session: AsyncSession,
    *,
    stripe_subscription_id: str | None,
    stripe_customer_id: str | None,
    metadata: Mapping[str, Any],
) -> int | None:
    user_id = metadata_user_id(metadata)
    if user_id is not None:
        user = await UsersRepo.get_by_id(session, user_id)
        if user is not None:
            return user.id

    if stripe_subscription_id:
        subscription = await UserSubscriptionsRepo.get_by_stripe_subscription_id(
            session,
            stripe_subscription_id,
        )
        if subscription is not None:
            return subscription.user_id

    if stripe_customer_id:
        user = await UsersRepo.get_by_stripe_customer_id(session, stripe_customer_id)
        if user is not None:
            return user.id
    return None


def _has_significant_change(ctx: BillingEventContext) -> bool:
    previous = event_previous_attributes(ctx.event)
    return any(field in previous for field in SIGNIFICANT_SUBSCRIPTION_CHANGES)


async def handle_checkout_completed(ctx: BillingEventContext) -> str:
    metadata = metadata_of(ctx.obj)
    if is_bulk_metadata(metadata):
        return await _handle_bulk_checkout_completed(ctx, metadata)
    return await _handle_user_checkout_completed(ctx, metadata)


async def _handle_bulk_checkout_completed(
    ctx: BillingEventContext,
    metadata: Mapping[str, Any],
) -> str:
    if ctx.obj.get("payment_status") == "unpaid":
        logger.info(
            "bulk_checkout_unpaid",
            event_id=ctx.event_id,
            checkout_session_id=ctx.obj.get("id"),
        )
        return IGNORED

    bulk = parse_bulk_metadata(metadata)
    refs = BillingRefs(
        stripe_customer_id=as_id(ctx.obj.get("customer")),
        stripe_subscription_id=as_id(ctx.obj.get("subscription")),
        stripe_checkout_session_id=as_id(ctx.obj.get("id")),
    )
    amount_total = ctx.obj.get("amount_total")
    total_amount = int(amount_total) if isinstance(amount_total, int) else bulk.unit_amount * bulk.quantity

    async with ctx.session_factory.begin() as session:
        finalized = await PurchaseService.finalize_purchase(
            session,
            issuer_user_id=bulk.issuer_user_id,
            billing_refs=refs,
            quantity=bulk.quantity,
            unit_amount=bulk.unit_amount,
            duration_days=bulk.duration_days,
            stripe_price_id=bulk.stripe_price_id,
            stripe_product_id=bulk.stripe_product_id,
            plan_name=bulk.plan_name,
            currency=bulk.currency,
            metadata={"checkout_event_id": ctx.event_id},
            now_utc=ctx.now_utc,
        )
        await record_transaction(
            session,
            stripe_event_id=ctx.event_id,
            raw_event_type=ctx.event_type,
            transaction_type="bulk_subscription_purchase",
            status="succeeded",
            amount=total_amount,
            now_utc=ctx.now_utc,
            currency=bulk.currency,
            user_id=bulk.issuer_user_id,
            purchase_id=finalized.purchase_id,
            stripe_customer_id=refs.stripe_customer_id,
            stripe_subscription_id=refs.stripe_subscription_id,
            stripe_price_id=bulk.stripe_price_id,
            stripe_product_id=bulk.stripe_product_id,
            description=f"Bulk purchase of {bulk.quantity} subscription codes",
            metadata_={"quantity": bulk.quantity, "duration_days": bulk.duration_days},
        )

    if finalized.codes_generated:
        return PROCESSED

    async with ctx.session_factory.begin() as session:
        try:
            await PurchaseService.issue_codes(
                session,
                purchase_id=finalized.purchase_id,
                now_utc=ctx.now_utc,
            )
        except CodesAlreadyGeneratedError:
            logger.info("bulk_checkout_codes_already_generated", purchase_id=str(finalized.purchase_id))
    return PROCESSED


async def _handle_user_checkout_completed(
    ctx: BillingEventContext,
    metadata: Mapping[str, Any],
) -> str:
    stripe_subscription_id = as_id(ctx.obj.get("subscription"))
    user_id = metadata_user_id(metadata)
    if stripe_subscription_id is None or user_id is None:
        logger.info("checkout_completed_without_subscription_user", event_id=ctx.event_id)
        return IGNORED

    subscription = await call_stripe(stripe.Subscription.retrieve, id=stripe_subscription_id)
    snapshot = subscription_snapshot(subscription)

    async with ctx.session_factory.begin() as session:
        user = await UsersRepo.get_by_id(session, user_id)
        if user is None:
            logger.warning("checkout_completed_unknown_user", event_id=ctx.event_id, user_id=user_id)
            return IGNORED
        if snapshot.stripe_customer_id:
            await UsersRepo.set_stripe_customer_id(
                session,
                user_id=user.id,
                stripe_customer_id=snapshot.stripe_customer_id,
            )
        await SubscriptionService.apply_billing_snapshot(
            session,
            user_id=user.id,
            snapshot=snapshot,
            event_at=ctx.event_at,
            now_utc=ctx.now_utc,
        )
    return PROCESSED


async def _record_bulk_subscription_change(
    ctx: BillingEventContext,
    *,
    transaction_type: str,
) -> str:
    stripe_subscription_id = as_id(ctx.obj.get("id"))
    async with ctx.session_factory.begin() as session:
        purchase = (
            await CodePurchasesRepo.get_by_stripe_subscription_id(session, stripe_subscription_id)
            if stripe_subscription_id
            else None
        )
        await record_transaction(
            session,
            stripe_event_id=ctx.event_id,
            raw_event_type=ctx.event_type,
            transaction_type=transaction_type,
            status="canceled" if transaction_type == "bulk_subscription_canceled" else "succeeded",
            amount=0,
            now_utc=ctx.now_utc,
            user_id=(purchase.issuer_user_id if purchase is not None else None),
            purchase_id=(purchase.id if purchase is not None else None),
            stripe_customer_id=as_id(ctx.obj.get("customer")),
            stripe_subscription_id=stripe_subscription_id,
            description=f"Bulk subscription {ctx.obj.get('status')}",
            metadata_={"subscription_status": ctx.obj.get("status")},
        )
    return PROCESSED


async def handle_subscription_changed(ctx: BillingEventContext) -> str:
    metadata = metadata_of(ctx.obj)
    significant = ctx.event_type != "customer.subscription.updated" or _has_significant_change(ctx)
    if is_bulk_metadata(metadata):
        if ctx.event_type == "customer.subscription.created" or not significant:
            return IGNORED
        return await _record_bulk_subscription_change(ctx, transaction_type="bulk_subscription_updated")

    snapshot = subscription_snapshot(ctx.obj)
    async with ctx.session_factory.begin() as session:
        user_id = await _resolve_subscription_user_id(
            session,
            stripe_subscription_id=snapshot.stripe_subscription_id,
            stripe_customer_id=snapshot.stripe_customer_id,
            metadata=metadata,
        )
        if user_id is None:
            logger.warning(
                "billing_subscription_user_unresolved",
                event_id=ctx.event_id,
                stripe_subscription_id=snapshot.stripe_subscription_id,
            )
            return IGNORED

        await SubscriptionService.apply_billing_snapshot(
            session,
            user_id=user_id,
            snapshot=snapshot,
            event_at=ctx.event_at,
            now_utc=ctx.now_utc,
        )
        if ctx.event_type == "customer.subscription.updated" and significant:
            await record_transaction(
                session,
                stripe_event_id=ctx.event_id,
                raw_event_type=ctx.event_type,
                transaction_type="subscription_updated",
                status="succeeded",
                amount=0,
                now_utc=ctx.now_utc,
                user_id=user_id,
                stripe_customer_id=snapshot.stripe_customer_id,
                stripe_subscription_id=snapshot.stripe_subscription_id,
                stripe_price_id=snapshot.stripe_price_id,
                stripe_product_id=snapshot.stripe_product_id,
                period_start=snapshot.current_period_start,
                period_end=snapshot.current_period_end,
                description=f"Subscription {snapshot.status}",
                metadata_={"cancel_at_period_end": snapshot.cancel_at_period_end},
            )
    return PROCESSED


async def handle_subscription_deleted(ctx: BillingEventContext) -> str:
    metadata = metadata_of(ctx.obj)
    if is_bulk_metadata(metadata):
        return await _record_bulk_subscription_change(ctx, transaction_type="bulk_subscription_canceled")

    snapshot = subscription_snapshot(ctx.obj)
    snapshot.status = "canceled"
    snapshot.canceled_at = snapshot.canceled_at or ctx.event_at
    snapshot.ended_at = snapshot.ended_at or ctx.event_at
    async with ctx.session_factory.begin() as session:
        user_id = await _resolve_subscription_user_id(
            session,
            stripe_subscription_id=snapshot.stripe_subscription_id,
            stripe_customer_id=snapshot.stripe_customer_id,
            metadata=metadata,
        )
        if user_id is None:
            logger.warning(
                "billing_subscription_user_unresolved",
                event_id=ctx.event_id,
                stripe_subscription_id=snapshot.stripe_subscription_id,
            )
            return IGNORED

        await SubscriptionService.apply_billing_snapshot(
            session,
            user_id=user_id,
            snapshot=snapshot,
            event_at=ctx.event_at,
            now_utc=ctx.now_utc,
        )
        await record_transaction(
            session,
            stripe_event_id=ctx.event_id,
            raw_event_type=ctx.event_type,
            transaction_type="subscription_canceled",
            status="canceled",
            amount=0,
            now_utc=ctx.now_utc,
            user_id=user_id,
            stripe_customer_id=snapshot.stripe_customer_id,
            stripe_subscription_id=snapshot.stripe_subscription_id,
            stripe_price_id=snapshot.stripe_price_id,
            description="Subscription canceled",
        )
    return PROCESSED


async def handle_invoice_paid(ctx: BillingEventContext) -> str:
    stripe_subscription_id = invoice_subscription_id(ctx.obj)
    stripe_customer_id = as_id(ctx.obj.get("customer"))
    period_start, period_end, stripe_price_id = invoice_line_period(ctx.obj)
    first_invoice = ctx.obj.get("billing_reason") == "subscription_create"

    async with ctx.session_factory.begin() as session:
        purchase = (
            await CodePurchasesRepo.get_by_stripe_subscription_id(session, stripe_subscription_id)
            if stripe_subscription_id
            else None
        )
        if purchase is not None:
            user_id: int | None = purchase.issuer_user_id
        else:
            user_id = await _resolve_subscription_user_id(
                session,
                stripe_subscription_id=stripe_subscription_id,
                stripe_customer_id=stripe_customer_id,
                metadata={},
            )

        await record_transaction(
            session,
            stripe_event_id=ctx.event_id,
            raw_event_type=ctx.event_type,
            transaction_type="subscription_created" if first_invoice else "subscription_renewed",
            status="succeeded",
            amount=int(ctx.obj.get("amount_paid") or 0),
            now_utc=ctx.now_utc,
            currency=str(ctx.obj.get("currency") or "usd"),
            user_id=user_id,
            purchase_id=(purchase.id if purchase is not None else None),
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            stripe_invoice_id=as_id(ctx.obj.get("id")),
            stripe_charge_id=as_id(ctx.obj.get("charge")),
            stripe_payment_intent_id=as_id(ctx.obj.get("payment_intent")),
            stripe_price_id=stripe_price_id,
            period_start=period_start,
            period_end=period_end,
            description="Initial subscription payment" if first_invoice else "Subscription renewal",
        )
    return PROCESSED


async def handle_invoice_payment_succeeded(ctx: BillingEventContext) -> str:
    stripe_subscription_id = invoice_subscription_id(ctx.obj)
    if stripe_subscription_id is None:
        return IGNORED

    async with ctx.session_factory.begin() as session:
        user_id = await SubscriptionService.update_billing_subscription(
            session,
            stripe_subscription_id=stripe_subscription_id,
            values={"status": "active"},
            event_at=ctx.event_at,
            now_utc=ctx.now_utc,
            from_statuses=("past_due",),
        )
    if user_id is not None:
        logger.info(
            "billing_subscription_recovered",
            user_id=user_id,
            stripe_subscription_id=stripe_subscription_id,
        )
    return PROCESSED


async def handle_invoice_payment_failed(ctx: BillingEventContext) -> str:
    stripe_subscription_id = invoice_subscription_id(ctx.obj)
    stripe_customer_id = as_id(ctx.obj.get("customer"))

    async with ctx.session_factory.begin() as session:
        user_id = None
        if stripe_subscription_id is not None:
            user_id = await SubscriptionService.update_billing_subscription(
                session,
                stripe_subscription_id=stripe_subscription_id,
                values={"status": "past_due"},
                event_at=ctx.event_at,
                now_utc=ctx.now_utc,
                from_statuses=PAYMENT_FAILED_FROM_STATUSES,
            )
        if user_id is None:
            user_id = await _resolve_subscription_user_id(
                session,
                stripe_subscription_id=stripe_subscription_id,
                stripe_customer_id=stripe_customer_id,
                metadata={},
            )

        await record_transaction(
            session,
            stripe_event_id=ctx.event_id,
            raw_event_type=ctx.event_type,
            transaction_type="payment_failed",
            status="failed",
            amount=int(ctx.obj.get("amount_due") or 0),
            now_utc=ctx.now_utc,
            currency=str(ctx.obj.get("currency") or "usd"),
            user_id=user_id,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            stripe_invoice_id=as_id(ctx.obj.get("id")),
            description="Subscription payment failed",
        )
    return PROCESSED


async def handle_charge_refunded(ctx: BillingEventContext) -> str:
    stripe_charge_id = as_id(ctx.obj.get("id"))
    stripe_payment_intent_id = as_id(ctx.obj.get("payment_intent"))
    amount_refunded = int(ctx.obj.get("amount_refunded") or 0)
    fully_refunded = bool(ctx.obj.get("refunded"))

    async with ctx.session_factory.begin() as session:
        original = None
        if stripe_charge_id is not None:
            original = await BillingTransactionsRepo.get_by_charge_id(
                session,
                stripe_charge_id=stripe_charge_id,
            )
        if original is None and stripe_payment_intent_id is not None:
            original = await BillingTransactionsRepo.get_by_payment_intent_id(
                session,
                stripe_payment_intent_id=stripe_payment_intent_id,
            )

        if original is not None:
            await BillingTransactionsRepo.apply_refund(
                session,
                transaction_id=original.id,
                amount_refunded=amount_refunded,
                fully_refunded=fully_refunded,
                now_utc=ctx.now_utc,
            )
            if original.purchase_id is not None and fully_refunded:
                await PurchaseService.mark_purchase_refunded(
                    session,
                    purchase_id=original.purchase_id,
                    now_utc=ctx.now_utc,
                )
        else:
            logger.warning(
                "refund_original_transaction_missing",
                event_id=ctx.event_id,
                stripe_charge_id=stripe_charge_id,
            )

        await record_transaction(
            session,
            stripe_event_id=ctx.event_id,
            raw_event_type=ctx.event_type,
            transaction_type="refund",
            status="refunded",
            amount=amount_refunded,
            now_utc=ctx.now_utc,
            currency=str(ctx.obj.get("currency") or "usd"),
            user_id=(original.user_id if original is not None else None),
            purchase_id=(original.purchase_id if original is not None else None),
            stripe_customer_id=as_id(ctx.obj.get("customer")),
            stripe_charge_id=stripe_charge_id,
            stripe_payment_intent_id=stripe_payment_intent_id,
            description="Charge refunded" if fully_refunded else "Charge partially refunded",
        )
    return PROCESSED


async def handle_noop(ctx: BillingEventContext) -> str:
    logger.info("billing_event_noop", event_id=ctx.event_id, event_type=ctx.event_type)
    return IGNORED


EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_completed,
    "checkout.session.expired": handle_noop,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.paused": handle_subscription_changed,
    "customer.subscription.resumed": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "customer.subscription.trial_will_end": handle_noop,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "invoice.upcoming": handle_noop,
    "invoice.finalized": handle_noop,
    "payment_intent.succeeded": handle_noop,
    "payment_intent.payment_failed": handle_noop,
    "customer.updated": handle_noop,
    "charge.refunded": handle_charge_refunded,
}
