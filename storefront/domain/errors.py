"""Error taxonomy for checkout and payment reconciliation.

Each error carries the HTTP status it maps to; the API layer renders all of
them as ``{"success": false, "error": ..., "details": [...]}``.
"""

from typing import List, Optional


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[List[dict]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(StorefrontError):
    """Malformed or missing input. Never retried automatically."""

    status_code = 400

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls("Validation failed", details=[{"field": field, "message": message}])


class AmountMismatchError(ValidationError):
    """Client-displayed amount disagrees with the server-computed one."""


class GatewayConfigurationError(StorefrontError):
    status_code = 500


class GatewayRequestError(StorefrontError):
    """The gateway rejected the call; ``message`` is the gateway's own description."""

    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.upstream_status = upstream_status


class SignatureMismatchError(StorefrontError):
    status_code = 400


class PaymentNotAllowedError(StorefrontError):
    status_code = 400


class InvalidStatusTransitionError(StorefrontError):
    status_code = 400


class OrderNotFoundError(StorefrontError):
    status_code = 404

    def __init__(self, message: str = "Order not found"):
        super().__init__(message)


class OrderCreationError(StorefrontError):
    status_code = 500


class DatabaseNotConfiguredError(StorefrontError):
    status_code = 503

    def __init__(self, message: str = "Database not configured"):
        super().__init__(message)


class PartialCreationFailure(StorefrontError):
    """Order row committed without its items. Logged, never surfaced to the customer."""


class NotificationFailure(StorefrontError):
    """Email delivery failed. Always non-fatal."""
