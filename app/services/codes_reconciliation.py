from __future__ import annotations


def compute_codes_reconciliation_diff(
    *,
    redeemed_without_access_count: int,
    access_without_redeemed_code_count: int,
    quantity_mismatch_count: int,
    available_past_deadline_count: int,
    stuck_purchases_count: int,
) -> int:
    return (
        max(0, redeemed_without_access_count)
        + max(0, access_without_redeemed_code_count)
        + max(0, quantity_mismatch_count)
        + max(0, available_past_deadline_count)
        + max(0, stuck_purchases_count)
    )


def reconciliation_status(diff_count: int) -> str:
    return "OK" if diff_count == 0 else "DIFF"
