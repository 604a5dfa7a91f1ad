from __future__ import annotations


class PurchaseError(Exception):
    code = "purchase_error"
    message = "Purchase operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message is not None:
            self.message = message


class PurchaseNotFoundError(PurchaseError):
    code = "not_found"
    message = "Purchase not found"


class PurchaseIssuerNotFoundError(PurchaseError):
    code = "issuer_not_found"
    message = "Issuer not found"


class PurchaseValidationError(PurchaseError):
    code = "validation_error"
    message = "Invalid purchase request"


class PurchaseNotCompletedError(PurchaseError):
    code = "purchase_not_completed"
    message = "Codes can only be issued for completed purchases"


class CodesAlreadyGeneratedError(PurchaseError):
    code = "codes_already_generated"
    message = "Codes have already been generated for this purchase"


class BillingProviderError(PurchaseError):
    code = "billing_provider_error"
    message = "Billing provider request failed"


class BillingProviderTimeoutError(BillingProviderError):
    code = "billing_provider_timeout"
    message = "Billing provider did not respond in time"


class BillingCustomerMissingError(PurchaseError):
    code = "billing_customer_missing"
    message = "No billing customer exists for this account yet"
