from __future__ import annotations

from copy import deepcopy

RECOVERY_FAILURES_KEY = "_codes_recovery_failures"
MAX_CODES_RECOVERY_ATTEMPTS = 3


def increment_recovery_failures(
    metadata: dict[str, object] | None,
) -> tuple[dict[str, object], int]:
    payload = deepcopy(metadata) if isinstance(metadata, dict) else {}
    current_value = payload.get(RECOVERY_FAILURES_KEY, 0)

    try:
        current_failures = int(current_value)
    except (TypeError, ValueError):
        current_failures = 0

    next_failures = current_failures + 1
    payload[RECOVERY_FAILURES_KEY] = next_failures
    return payload, next_failures


def recovery_failures(metadata: dict[str, object] | None) -> int:
    if not isinstance(metadata, dict):
        return 0
    try:
        return max(0, int(metadata.get(RECOVERY_FAILURES_KEY, 0)))
    except (TypeError, ValueError):
        return 0
