# tenancy/policy.py — Access Policy Engine
"""
Single source of truth for "may this principal do this to that entity".

Every action is a row in ACTION_RULES. Adding an entity type means adding
rows, not new branches in the routers. ``decide`` is pure and total over
(Action, UserRole); ``authorize`` is the raising wrapper used by routers.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from models import UserRole
from tenancy.errors import Unauthorized
from tenancy.principal import Principal

logger = logging.getLogger("workspace-hub.policy")


class Action(str, Enum):
    # Tenants
    TENANT_READ = "tenant:read"
    TENANT_UPDATE = "tenant:update"
    TENANT_MANAGE = "tenant:manage"
    TENANT_LIST = "tenant:list"
    # Users
    USER_READ = "user:read"
    USER_CREATE = "user:create"
    USER_MANAGE = "user:manage"
    USER_UPDATE_PROFILE = "user:update_profile"
    USER_DELETE = "user:delete"
    # Projects
    PROJECT_READ = "project:read"
    PROJECT_CREATE = "project:create"
    PROJECT_UPDATE = "project:update"
    PROJECT_DELETE = "project:delete"
    # Tasks
    TASK_READ = "task:read"
    TASK_CREATE = "task:create"
    TASK_UPDATE = "task:update"
    TASK_UPDATE_STATUS = "task:update_status"
    TASK_DELETE = "task:delete"


class Scope(str, Enum):
    MEMBER = "member"                  # any role inside the resource's tenant
    ADMIN = "admin"                    # tenant_admin inside the resource's tenant
    OWNER_OR_ADMIN = "owner_or_admin"  # tenant_admin, or the resource owner
    SELF = "self"                      # only the principal's own record
    PLATFORM = "platform"              # super_admin only


class DenyReason(str, Enum):
    CROSS_TENANT = "cross_tenant"
    INSUFFICIENT_ROLE = "insufficient_role"
    NOT_OWNER = "not_owner"
    SELF_ACTION_FORBIDDEN = "self_action_forbidden"


@dataclass(frozen=True)
class Rule:
    scope: Scope
    forbid_self: bool = False


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


ACTION_RULES: Dict[Action, Rule] = {
    Action.TENANT_READ: Rule(Scope.MEMBER),
    Action.TENANT_UPDATE: Rule(Scope.ADMIN),
    Action.TENANT_MANAGE: Rule(Scope.PLATFORM),
    Action.TENANT_LIST: Rule(Scope.PLATFORM),

    Action.USER_READ: Rule(Scope.MEMBER),
    Action.USER_CREATE: Rule(Scope.ADMIN),
    Action.USER_MANAGE: Rule(Scope.ADMIN, forbid_self=True),
    Action.USER_UPDATE_PROFILE: Rule(Scope.SELF),
    Action.USER_DELETE: Rule(Scope.ADMIN, forbid_self=True),

    Action.PROJECT_READ: Rule(Scope.MEMBER),
    Action.PROJECT_CREATE: Rule(Scope.MEMBER),
    Action.PROJECT_UPDATE: Rule(Scope.OWNER_OR_ADMIN),
    Action.PROJECT_DELETE: Rule(Scope.OWNER_OR_ADMIN),

    Action.TASK_READ: Rule(Scope.MEMBER),
    Action.TASK_CREATE: Rule(Scope.MEMBER),
    Action.TASK_UPDATE: Rule(Scope.MEMBER),
    Action.TASK_UPDATE_STATUS: Rule(Scope.MEMBER),
    Action.TASK_DELETE: Rule(Scope.OWNER_OR_ADMIN),
}

DENY_MESSAGES = {
    DenyReason.CROSS_TENANT: "Unauthorized",
    DenyReason.INSUFFICIENT_ROLE: "Unauthorized",
    DenyReason.NOT_OWNER: "Unauthorized",
    DenyReason.SELF_ACTION_FORBIDDEN: "Cannot perform this action on yourself",
}


def decide(
    principal: Principal,
    action: Action,
    resource_tenant_id: Optional[str],
    resource_owner_id: Optional[str] = None,
) -> Decision:
    rule = ACTION_RULES[action]
    is_self = resource_owner_id is not None and resource_owner_id == principal.user_id

    # Applies to every role, super_admin included
    if rule.forbid_self and is_self:
        return Decision(False, DenyReason.SELF_ACTION_FORBIDDEN)

    if principal.role == UserRole.SUPER_ADMIN:
        return ALLOW

    if principal.tenant_id is None or principal.tenant_id != resource_tenant_id:
        return Decision(False, DenyReason.CROSS_TENANT)

    if rule.scope == Scope.MEMBER:
        return ALLOW
    if rule.scope == Scope.ADMIN:
        if principal.role == UserRole.TENANT_ADMIN:
            return ALLOW
        return Decision(False, DenyReason.INSUFFICIENT_ROLE)
    if rule.scope == Scope.OWNER_OR_ADMIN:
        if principal.role == UserRole.TENANT_ADMIN or is_self:
            return ALLOW
        return Decision(False, DenyReason.NOT_OWNER)
    if rule.scope == Scope.SELF:
        return ALLOW if is_self else Decision(False, DenyReason.NOT_OWNER)
    # Scope.PLATFORM
    return Decision(False, DenyReason.INSUFFICIENT_ROLE)


def authorize(
    principal: Principal,
    action: Action,
    resource_tenant_id: Optional[str],
    resource_owner_id: Optional[str] = None,
) -> None:
    """Raise Unauthorized unless ``decide`` allows the action."""
    decision = decide(principal, action, resource_tenant_id, resource_owner_id)
    if decision.allowed:
        return
    logger.info(
        f"Denied {action.value} for user={principal.user_id} "
        f"tenant={principal.tenant_id} target_tenant={resource_tenant_id} "
        f"reason={decision.reason.value}"
    )
    raise Unauthorized(DENY_MESSAGES[decision.reason], reason=decision.reason)
