from app.workers.tasks.billing_reliability import replay_failed_billing_events, run_codes_reconciliation
from app.workers.tasks.code_maintenance import (
    expire_code_entitlements,
    expire_subscription_codes,
    recover_purchases_without_codes,
)

__all__ = [
    "expire_code_entitlements",
    "expire_subscription_codes",
    "recover_purchases_without_codes",
    "replay_failed_billing_events",
    "run_codes_reconciliation",
]
