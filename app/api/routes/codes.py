from __future__ import annotations

import structlog
from fastapi import APIRouter

from app.db.session import SessionLocal
from app.economy.codes.errors import CodeError
from app.economy.codes.redemption import RedemptionService

from .internal_codes_helpers import _raise_code_error
from .internal_codes_models import CodeValidateRequest, CodeValidateResponse

router = APIRouter(tags=["codes"])
logger = structlog.get_logger(__name__)


@router.post("/codes/validate", response_model=CodeValidateResponse)
async def validate_code(payload: CodeValidateRequest) -> CodeValidateResponse:
    try:
        async with SessionLocal() as session:
            preview = await RedemptionService.validate(session, raw_code=payload.code)
    except CodeError as exc:
        logger.info("subscription_code_validation_rejected", reason=exc.code)
        _raise_code_error(exc)

    return CodeValidateResponse(
        valid=True,
        code=preview.code,
        plan_name=preview.plan_name,
        duration_days=preview.duration_days,
        expires_at=preview.expires_at,
        unit_amount=preview.unit_amount,
        currency=preview.currency,
    )
