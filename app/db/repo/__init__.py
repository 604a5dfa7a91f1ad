from app.db.repo.billing_transactions_repo import BillingTransactionsRepo
from app.db.repo.code_purchases_repo import CodePurchasesRepo
from app.db.repo.processed_billing_events_repo import ProcessedBillingEventsRepo
from app.db.repo.reconciliation_runs_repo import ReconciliationRunsRepo
from app.db.repo.subscription_codes_repo import SubscriptionCodesRepo
from app.db.repo.user_subscriptions_repo import UserSubscriptionsRepo
from app.db.repo.users_repo import UsersRepo

__all__ = [
    "BillingTransactionsRepo",
    "CodePurchasesRepo",
    "ProcessedBillingEventsRepo",
    "ReconciliationRunsRepo",
    "SubscriptionCodesRepo",
    "UserSubscriptionsRepo",
    "UsersRepo",
]
