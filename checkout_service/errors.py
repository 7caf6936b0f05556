"""
errors.py — Error Taxonomy for the Checkout Flow

Every failure the checkout flow can surface to the shopper is a `CheckoutError`
with a stable `kind` discriminant, so callers branch on the kind instead of
matching message strings.

Kinds:
    • validation   — locally detected or rejected payload, shown per field
    • conflict     — the seller-group's cart no longer matches the server
    • provider     — the payment gateway rejected the preference
    • network      — transient transport failure or 5xx
    • not_found    — requested resource does not exist
    • unauthorized — missing or expired session token
"""

from enum import Enum
from typing import Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    PROVIDER = "provider"
    NETWORK = "network"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    UNEXPECTED = "unexpected"


class CheckoutError(Exception):
    """
    Base class of the taxonomy.

    Attributes:
        kind (ErrorKind): Stable discriminant.
        message (str): Human-readable message, ready to be shown to the shopper.
        details (dict): Raw payload returned by the backend, if any.
    """
    kind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class ValidationError(CheckoutError):
    """Blocks submission. Recoverable by editing the offending fields."""
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None, details: Optional[dict] = None):
        super().__init__(message, details)
        self.field_errors = dict(field_errors or {})

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field_errors"] = self.field_errors
        return data


class ConflictError(CheckoutError):
    """The seller-group is no longer in the cart. Recoverable by reloading the cart."""
    kind = ErrorKind.CONFLICT


class ProviderError(CheckoutError):
    """
    The payment gateway could not set up the payment.

    When `order_id` is set the order already exists in a pending state and
    must not be created again.
    """
    kind = ErrorKind.PROVIDER

    def __init__(self, message: str, order_id: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details)
        self.order_id = order_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["order_id"] = self.order_id
        return data


class NetworkError(CheckoutError):
    kind = ErrorKind.NETWORK


class NotFoundError(CheckoutError):
    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(CheckoutError):
    kind = ErrorKind.UNAUTHORIZED


class CheckoutStateError(RuntimeError):
    """Raised on an illegal state machine transition (a programming error, not shown to shoppers)."""
