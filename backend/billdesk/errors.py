"""
Billing error taxonomy.

WHY: Business-rule violations are returned to the caller as typed failures
carrying an HTTP status and structured details. Infrastructure failures are
logged where they happen and surface as a generic InternalError.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for every failure the billing core reports to callers."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(BillingError):
    """400-level input problem."""
    status_code = 400


class NotFoundError(BillingError):
    """Entity is missing or not owned by the caller."""
    status_code = 404


class SessionExpiredError(BillingError):
    """Billing session window elapsed, or the session id no longer matches."""
    status_code = 401

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["session_expired"] = True
        return payload


class InsufficientStockError(BillingError):
    """Requested quantity exceeds what is on the shelf."""
    status_code = 400

    def __init__(self, product_id, requested, available):
        super().__init__(
            "Insufficient stock available",
            details={
                "product_id": product_id,
                "requested_quantity": str(requested),
                "available_stock": str(available),
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ConflictError(BillingError):
    """409-level conflict: duplicate active draft or a lost optimistic-lock race."""
    status_code = 409


class StateTransitionError(BillingError):
    """Operation is not valid for the invoice's current status."""
    status_code = 409


class PermissionDeniedError(BillingError):
    """Actor's role does not allow the operation."""
    status_code = 403


class InternalError(BillingError):
    """Unexpected store failure. Detail is logged server-side, never returned."""
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
