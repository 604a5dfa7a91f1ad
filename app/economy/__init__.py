from app.economy.billing.reconciler import BillingEventReconciler
from app.economy.codes.redemption import RedemptionService
from app.economy.codes.revocation import RevocationService
from app.economy.purchases.service import PurchaseService
from app.economy.subscriptions.service import SubscriptionService

__all__ = [
    "BillingEventReconciler",
    "PurchaseService",
    "RedemptionService",
    "RevocationService",
    "SubscriptionService",
]
