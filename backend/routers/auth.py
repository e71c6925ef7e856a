# routers/auth.py — Tenant registration, login and session endpoints
import re
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, get_current_principal, get_token_payload,
    ACCESS_TOKEN_EXPIRE_MINUTES, MIN_PASSWORD_LENGTH,
)
from database import get_db_session
from dependencies import get_audit_trail, get_quota_governor, client_ip, commit_or_conflict
from models import (
    Tenant, User, TenantStatus, SubscriptionPlan, UserRole, AuditAction,
    PLAN_LIMITS, new_uuid,
)
from routers.users import _user_to_out
from routers.tenants import _tenant_summary
from tenancy import AuditTrail, AuditEntry, Conflict, Principal, QuotaGovernor

router = APIRouter(prefix="/api/auth", tags=["Authentication"])

SUBDOMAIN_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61}[a-z0-9])$")


# --- Schemas ---

class TenantRegister(BaseModel):
    tenant_name: str = Field(..., min_length=2, max_length=100)
    subdomain: str
    admin_email: EmailStr
    admin_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    admin_full_name: str = Field(..., min_length=1, max_length=200)

    @field_validator("subdomain")
    @classmethod
    def validate_subdomain(cls, v: str) -> str:
        v = v.strip().lower()
        if not SUBDOMAIN_RE.match(v):
            raise ValueError("Subdomain must be 3-63 lowercase letters, digits or hyphens")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    tenant_subdomain: Optional[str] = None
    tenant_id: Optional[str] = None


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


# --- Endpoints ---

@router.post("/register-tenant", status_code=201)
async def register_tenant(
    data: TenantRegister,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    quota: QuotaGovernor = Depends(get_quota_governor),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Create a tenant on the free plan together with its first tenant_admin"""
    result = await db.execute(select(Tenant.id).where(Tenant.subdomain == data.subdomain))
    if result.scalar_one_or_none():
        raise Conflict("Subdomain already exists")

    tenant = Tenant(
        id=new_uuid(),
        name=data.tenant_name,
        subdomain=data.subdomain,
        status=TenantStatus.ACTIVE,
        subscription_plan=SubscriptionPlan.FREE,
        **PLAN_LIMITS[SubscriptionPlan.FREE],
    )
    admin = User(
        id=new_uuid(),
        tenant=tenant,
        email=data.admin_email,
        password_hash=AuthService.hash_password(data.admin_password),
        full_name=data.admin_full_name,
        role=UserRole.TENANT_ADMIN,
        is_active=True,
    )
    db.add_all([tenant, admin])
    await db.flush()
    await quota.seed(db, tenant.id)
    await commit_or_conflict(db, "Subdomain already exists")

    audit.record(AuditEntry(
        tenant_id=tenant.id,
        user_id=admin.id,
        action=AuditAction.REGISTER_TENANT,
        entity_type="tenant",
        entity_id=tenant.id,
        ip_address=client_ip(request),
    ))

    return {
        "tenant_id": tenant.id,
        "subdomain": tenant.subdomain,
        "admin_user": _user_to_out(admin),
    }


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Authenticate against a tenant (or as a super admin with no tenant)"""
    tenant = None
    if credentials.tenant_subdomain or credentials.tenant_id:
        stmt = select(Tenant)
        if credentials.tenant_subdomain:
            stmt = stmt.where(Tenant.subdomain == credentials.tenant_subdomain.lower())
        else:
            stmt = stmt.where(Tenant.id == credentials.tenant_id)
        result = await db.execute(stmt)
        tenant = result.scalar_one_or_none()
        if not tenant or tenant.status != TenantStatus.ACTIVE:
            raise HTTPException(status_code=403, detail="Tenant not found or inactive")

    user = await AuthService.authenticate(credentials.email, credentials.password, tenant, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    audit.record(AuditEntry(
        tenant_id=user.tenant_id,
        user_id=user.id,
        action=AuditAction.LOGIN,
        entity_type="user",
        entity_id=user.id,
        ip_address=client_ip(request),
    ))

    return TokenResponse(
        token=AuthService.create_access_token(user),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=_user_to_out(user),
    )


@router.get("/me")
async def me(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
):
    """Current user with a summary of their tenant"""
    result = await db.execute(select(User).where(User.id == principal.user_id))
    user = result.scalar_one()
    tenant = None
    if user.tenant_id:
        tenant_result = await db.execute(select(Tenant).where(Tenant.id == user.tenant_id))
        tenant = tenant_result.scalar_one_or_none()

    out = _user_to_out(user)
    out["tenant"] = _tenant_summary(tenant) if tenant else None
    return out


@router.post("/logout")
async def logout(
    request: Request,
    payload: Dict[str, Any] = Depends(get_token_payload),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Revoke the presented token"""
    await AuthService.revoke_token(payload, db)
    audit.record(AuditEntry(
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        action=AuditAction.LOGOUT,
        entity_type="user",
        entity_id=principal.user_id,
        ip_address=client_ip(request),
    ))
    return {"message": "Logged out successfully"}
