# tenancy/errors.py — Error taxonomy for access and admission control
from typing import Optional


class TenancyError(Exception):
    """Base class. Every subclass describes a side-effect free failure."""

    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(TenancyError):
    default_message = "Invalid request"


class Unauthorized(TenancyError):
    default_message = "Unauthorized"

    def __init__(self, message: Optional[str] = None, reason=None):
        super().__init__(message)
        self.reason = reason


class NotFound(TenancyError):
    default_message = "Not found"


class LimitReached(TenancyError):
    default_message = "Subscription limit reached"

    def __init__(self, kind=None, message: Optional[str] = None):
        if message is None and kind is not None:
            message = f"Subscription limit reached - max {kind.value} exceeded"
        super().__init__(message)
        self.kind = kind


class TenantInactive(TenancyError):
    default_message = "Tenant is not active"


class Conflict(TenancyError):
    default_message = "Resource already exists"


class TransientStoreError(TenancyError):
    default_message = "Data store temporarily unavailable"
