"""
Error taxonomy for the entitlement engine.

Services raise these; ``app.main`` maps each class to an HTTP status so the
routers never build HTTPException for domain failures themselves.
"""

class EntitlementError(Exception):
    status_code: int = 500
    default_detail: str = "Internal error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

class NotConfigured(EntitlementError):
    """Gateway credentials are missing. Purchases must not start."""
    status_code = 503
    default_detail = "Payment system is not configured. Please contact support."

class Conflict(EntitlementError):
    status_code = 409
    default_detail = "A purchase for this item is already in progress or completed"

class NotFound(EntitlementError):
    status_code = 404
    default_detail = "Not found"

class TransientStoreError(EntitlementError):
    status_code = 503
    default_detail = "Storage temporarily unavailable. Please retry."

class PaymentVerificationError(EntitlementError):
    status_code = 400
    default_detail = "Payment confirmation could not be verified"
