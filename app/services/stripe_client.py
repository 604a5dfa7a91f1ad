from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any, TypeVar

import stripe
import structlog

from app.core.config import get_settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class StripeClientError(Exception):
    pass


class StripeTimeoutError(StripeClientError):
    pass


class StripeNotConfiguredError(StripeClientError):
    pass


class WebhookSignatureError(Exception):
    pass


def configure_stripe() -> None:
    settings = get_settings()
    secret_key = settings.stripe_secret_key.get_secret_value()
    if not secret_key:
        raise StripeNotConfiguredError("STRIPE_SECRET_KEY is not configured")
    stripe.api_key = secret_key
    stripe.max_network_retries = settings.stripe_max_network_retries


async def call_stripe(operation: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run a blocking Stripe SDK call in a worker thread with a bounded wait.

    Every Stripe call made by the service goes through here so that provider
    latency never holds a request open past `STRIPE_API_TIMEOUT_SECONDS`.
    """
    settings = get_settings()
    configure_stripe()
    operation_name = getattr(operation, "__qualname__", repr(operation))
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(operation, *args, **kwargs),
            timeout=settings.stripe_api_timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        logger.warning(
            "stripe_call_timeout",
            operation=operation_name,
            timeout_seconds=settings.stripe_api_timeout_seconds,
        )
        raise StripeTimeoutError(f"Stripe call timed out: {operation_name}") from exc
    except stripe.StripeError as exc:
        logger.warning(
            "stripe_call_failed",
            operation=operation_name,
            error_type=type(exc).__name__,
            http_status=getattr(exc, "http_status", None),
        )
        raise StripeClientError(getattr(exc, "user_message", None) or str(exc)) from exc


def verify_webhook_payload(*, payload: bytes, sig_header: str | None) -> dict[str, Any]:
    settings = get_settings()
    secret = settings.stripe_webhook_secret.get_secret_value()
    if not secret:
        raise WebhookSignatureError("webhook secret is not configured")
    if not sig_header:
        raise WebhookSignatureError("missing signature header")

    try:
        payload_text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            payload_text,
            sig_header,
            secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
        raise WebhookSignatureError("signature verification failed") from exc

    try:
        event = json.loads(payload_text)
    except ValueError as exc:
        raise WebhookSignatureError("invalid payload") from exc
    if not isinstance(event, dict):
        raise WebhookSignatureError("invalid payload")
    return event
