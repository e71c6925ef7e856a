# tenancy — Tenant access & admission control
from tenancy.principal import Principal
from tenancy.policy import Action, Decision, DenyReason, decide, authorize
from tenancy.quota import QuotaGovernor, ResourceKind, Admission
from tenancy.audit import AuditTrail, AuditEntry
from tenancy.errors import (
    TenancyError, ValidationError, Unauthorized, NotFound, LimitReached,
    TenantInactive, Conflict, TransientStoreError,
)

__all__ = [
    "Principal",
    "Action", "Decision", "DenyReason", "decide", "authorize",
    "QuotaGovernor", "ResourceKind", "Admission",
    "AuditTrail", "AuditEntry",
    "TenancyError", "ValidationError", "Unauthorized", "NotFound", "LimitReached",
    "TenantInactive", "Conflict", "TransientStoreError",
]
