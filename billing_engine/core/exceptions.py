"""
Error taxonomy for the billing engine.

Every error carries a machine-readable ``kind`` and a human-readable
``message``. Transport status codes are assigned at the HTTP boundary
(see ``billing_engine.main``), never inside the engine.
"""
from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base exception for billing engine errors."""
    kind = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"kind": self.kind, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BillingError):
    """Bad input: negative quantity, missing item fields, unknown status or discount type."""
    kind = "validation"


class NotFoundError(BillingError):
    """Document missing, or present under a different document type."""
    kind = "not_found"


class ConflictError(BillingError):
    """Numbering collision after retries, or a duplicate conversion."""
    kind = "conflict"


class PersistenceError(BillingError):
    """Unexpected storage failure."""
    kind = "persistence"


class OperationTimeoutError(PersistenceError):
    """The operation exceeded its per-call timeout and was rolled back."""
    kind = "timeout"
