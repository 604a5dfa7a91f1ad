from __future__ import annotations

from app.economy.purchases.catalog import MAX_CODES_PER_PURCHASE, MIN_CODES_PER_PURCHASE
from app.economy.purchases.errors import PurchaseValidationError

from .constants import PURCHASE_SOURCES


def _validate_quantity(quantity: int) -> None:
    if not MIN_CODES_PER_PURCHASE <= quantity <= MAX_CODES_PER_PURCHASE:
        raise PurchaseValidationError(
            f"Quantity must be between {MIN_CODES_PER_PURCHASE} and {MAX_CODES_PER_PURCHASE}"
        )


def _validate_purchase_input(
    *,
    source: str,
    quantity: int,
    unit_amount: int,
    duration_days: int,
    stripe_price_id: str,
    currency: str,
) -> None:
    if source not in PURCHASE_SOURCES:
        raise PurchaseValidationError(f"Unsupported purchase source: {source}")
    _validate_quantity(quantity)
    if unit_amount < 0:
        raise PurchaseValidationError("Unit amount must not be negative")
    if duration_days <= 0:
        raise PurchaseValidationError("Duration must be at least one day")
    if not stripe_price_id:
        raise PurchaseValidationError("Price reference is required")
    if len(currency) != 3:
        raise PurchaseValidationError("Currency must be a three-letter code")
