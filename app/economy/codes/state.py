from __future__ import annotations

from datetime import datetime

from app.economy.codes.errors import (
    CodeAlreadyRedeemedError,
    CodeError,
    CodeExpiredError,
    CodeRevokedError,
    CodeTransitionError,
)

CODE_STATUSES = ("available", "redeemed", "revoked", "expired")

# (from_status, action) -> to_status
CODE_TRANSITIONS: dict[tuple[str, str], str] = {
    ("available", "redeem"): "redeemed",
    ("available", "revoke"): "revoked",
    ("redeemed", "revoke"): "available",
    ("available", "reactivate"): "redeemed",
    ("available", "expire"): "expired",
    ("revoked", "make_available"): "available",
}

PURCHASE_STATUSES = ("pending", "completed", "failed", "refunded")
PURCHASE_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"completed", "failed"}),
    "completed": frozenset({"refunded"}),
    "failed": frozenset(),
    "refunded": frozenset(),
}

SUBSCRIPTION_STATUSES = (
    "incomplete",
    "incomplete_expired",
    "trialing",
    "active",
    "past_due",
    "canceled",
    "unpaid",
    "paused",
)
ACCESS_STATUSES = frozenset({"active", "trialing"})

_STATUS_ERRORS: dict[str, type[CodeError]] = {
    "redeemed": CodeAlreadyRedeemedError,
    "revoked": CodeRevokedError,
    "expired": CodeExpiredError,
}


def next_code_status(current_status: str, action: str) -> str | None:
    return CODE_TRANSITIONS.get((current_status, action))


def ensure_code_transition(current_status: str, action: str) -> str:
    next_status = next_code_status(current_status, action)
    if next_status is None:
        raise CodeTransitionError(f"Cannot {action.replace('_', ' ')} a code that is {current_status}")
    return next_status


def is_past_deadline(expires_at: datetime, *, now_utc: datetime) -> bool:
    return now_utc > expires_at


def effective_code_status(status: str, expires_at: datetime, *, now_utc: datetime) -> str:
    if status == "available" and is_past_deadline(expires_at, now_utc=now_utc):
        return "expired"
    return status


def ensure_redeemable(status: str, expires_at: datetime, *, now_utc: datetime) -> None:
    """Raise the user-facing error for a code that cannot be redeemed right now.

    Checked in a fixed order: redeemed, revoked, then expired. A code still
    stored as `available` whose deadline has passed counts as expired.
    """
    resolved = effective_code_status(status, expires_at, now_utc=now_utc)
    error_cls = _STATUS_ERRORS.get(resolved)
    if error_cls is not None:
        raise error_cls
    ensure_code_transition(resolved, "redeem")


def can_transition_purchase(current_status: str, next_status: str) -> bool:
    return next_status in PURCHASE_TRANSITIONS.get(current_status, frozenset())


def has_access(status: str | None) -> bool:
    return status in ACCESS_STATUSES
