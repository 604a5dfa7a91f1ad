from __future__ import annotations

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from app.economy.billing.reconciler import get_billing_reconciler
from app.services.stripe_client import WebhookSignatureError, verify_webhook_payload

router = APIRouter(tags=["stripe"])
logger = structlog.get_logger(__name__)


@router.post("/webhook/stripe")
async def stripe_webhook(request: Request) -> JSONResponse:
    # Signature is computed over the raw bytes, so the body must not be parsed first.
    payload = await request.body()
    try:
        event = verify_webhook_payload(
            payload=payload,
            sig_header=request.headers.get("Stripe-Signature"),
        )
    except WebhookSignatureError as exc:
        logger.warning("stripe_webhook_rejected", reason=str(exc))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid_signature"},
        )

    try:
        result = await get_billing_reconciler().handle(event)
    except Exception:
        logger.exception(
            "stripe_webhook_processing_error",
            event_id=event.get("id"),
            event_type=event.get("type"),
        )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"received": True, "status": "failed"},
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"received": True, "status": result.status},
    )
