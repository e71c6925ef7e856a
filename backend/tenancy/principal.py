# tenancy/principal.py — Resolved caller identity
from dataclasses import dataclass
from typing import Optional

from models import UserRole


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as produced by the session layer.

    ``tenant_id`` is None only for super admins.
    """
    user_id: str
    tenant_id: Optional[str]
    role: UserRole
    email: str = ""

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    @property
    def is_tenant_admin(self) -> bool:
        return self.role == UserRole.TENANT_ADMIN
