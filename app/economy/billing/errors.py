from __future__ import annotations


class BillingEventError(Exception):
    pass


class BillingPayloadError(BillingEventError):
    pass
