from __future__ import annotations


class CodeError(Exception):
    code = "code_error"
    message = "Subscription code operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message is not None:
            self.message = message


class CodeNotFoundError(CodeError):
    code = "not_found"
    message = "Invalid subscription code"


class CodeUserNotFoundError(CodeError):
    code = "user_not_found"
    message = "User not found"


class CodeAlreadyRedeemedError(CodeError):
    code = "already_redeemed"
    message = "This code has already been redeemed"


class CodeRevokedError(CodeError):
    code = "revoked"
    message = "This code has been revoked and is no longer valid"


class CodeExpiredError(CodeError):
    code = "expired"
    message = "This code has expired"


class AlreadySubscribedError(CodeError):
    code = "already_subscribed"
    message = (
        "You already have an active subscription. "
        "Please wait for it to expire or cancel it first."
    )


class CodeTransitionError(CodeError):
    code = "invalid_transition"
    message = "Code status does not allow this operation"


class CodeProvenanceConflictError(CodeError):
    code = "provenance_conflict"
    message = "Code cannot be reactivated for its previous holder"
