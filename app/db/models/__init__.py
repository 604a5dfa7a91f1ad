from app.db.models.billing_transactions import BillingTransaction
from app.db.models.code_purchases import CodePurchase
from app.db.models.processed_billing_events import ProcessedBillingEvent
from app.db.models.reconciliation_runs import ReconciliationRun
from app.db.models.subscription_codes import SubscriptionCode
from app.db.models.user_subscriptions import UserSubscription
from app.db.models.users import User

__all__ = [
    "BillingTransaction",
    "CodePurchase",
    "ProcessedBillingEvent",
    "ReconciliationRun",
    "SubscriptionCode",
    "UserSubscription",
    "User",
]
