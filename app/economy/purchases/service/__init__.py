from __future__ import annotations

from .constants import CODE_ISSUE_MAX_ROUNDS
from .finalize import _as_finalize_result, finalize_purchase
from .grant import grant_codes
from .issue import _build_code_row, issue_codes
from .refund import mark_purchase_refunded
from .validation import _validate_purchase_input, _validate_quantity


class PurchaseService:
    _as_finalize_result = staticmethod(_as_finalize_result)
    _build_code_row = staticmethod(_build_code_row)
    _validate_purchase_input = staticmethod(_validate_purchase_input)
    _validate_quantity = staticmethod(_validate_quantity)
    finalize_purchase = staticmethod(finalize_purchase)
    issue_codes = staticmethod(issue_codes)
    grant_codes = staticmethod(grant_codes)
    mark_purchase_refunded = staticmethod(mark_purchase_refunded)


__all__ = [
    "CODE_ISSUE_MAX_ROUNDS",
    "PurchaseService",
]
