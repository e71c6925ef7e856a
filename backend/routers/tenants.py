# routers/tenants.py — Tenant details, settings and tenant-scoped users
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService, get_current_principal, MIN_PASSWORD_LENGTH
from database import get_db_session
from dependencies import (
    get_audit_trail, get_quota_governor, client_ip, commit_or_conflict,
    page_window, pagination,
)
from models import (
    Tenant, User, Project, Task, TenantStatus, SubscriptionPlan, UserRole,
    AuditAction, PLAN_LIMITS, new_uuid,
)
from routers.users import _user_to_out
from tenancy import (
    Action, AuditTrail, AuditEntry, Conflict, NotFound, Principal, QuotaGovernor,
    ResourceKind, ValidationError, authorize,
)

router = APIRouter(prefix="/api/tenants", tags=["Tenants"])

TENANT_ROLES = (UserRole.TENANT_ADMIN, UserRole.USER)


# --- Schemas ---

class TenantUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    status: Optional[TenantStatus] = None
    subscription_plan: Optional[SubscriptionPlan] = None
    max_users: Optional[int] = Field(default=None, gt=0)
    max_projects: Optional[int] = Field(default=None, gt=0)


class TenantUserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    full_name: str = Field(..., min_length=1, max_length=200)
    role: UserRole = UserRole.USER


# --- Helpers ---

def _tenant_summary(t: Tenant) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "subdomain": t.subdomain,
        "status": TenantStatus(t.status).value,
        "subscription_plan": SubscriptionPlan(t.subscription_plan).value,
        "max_users": t.max_users,
        "max_projects": t.max_projects,
        "created_at": t.created_at.isoformat() if t.created_at else None,
    }


async def _get_tenant(db: AsyncSession, tenant_id: str) -> Tenant:
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise NotFound("Tenant not found")
    return tenant


async def _count(db: AsyncSession, model, tenant_id: str) -> int:
    result = await db.execute(select(func.count(model.id)).where(model.tenant_id == tenant_id))
    return result.scalar() or 0


# --- Endpoints ---

@router.get("")
async def list_tenants(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    status: Optional[TenantStatus] = None,
    plan: Optional[SubscriptionPlan] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    """List all tenants (super_admin only)"""
    authorize(principal, Action.TENANT_LIST, None)

    filters = []
    if status:
        filters.append(Tenant.status == status)
    if plan:
        filters.append(Tenant.subscription_plan == plan)

    total_result = await db.execute(select(func.count(Tenant.id)).where(*filters))
    total = total_result.scalar() or 0

    stmt = (
        select(Tenant)
        .where(*filters)
        .order_by(Tenant.created_at.desc())
        .offset(page_window(page, limit))
        .limit(limit)
    )
    result = await db.execute(stmt)
    tenants = result.scalars().all()

    out = []
    for t in tenants:
        item = _tenant_summary(t)
        item["total_users"] = await _count(db, User, t.id)
        item["total_projects"] = await _count(db, Project, t.id)
        out.append(item)

    return {"tenants": out, "total": total, "pagination": pagination(total, page, limit)}


@router.get("/{tenant_id}")
async def get_tenant(
    tenant_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    quota: QuotaGovernor = Depends(get_quota_governor),
):
    """Tenant details with usage statistics"""
    tenant = await _get_tenant(db, tenant_id)
    authorize(principal, Action.TENANT_READ, tenant.id)

    out = _tenant_summary(tenant)
    out["stats"] = {
        "total_users": await _count(db, User, tenant.id),
        "total_projects": await _count(db, Project, tenant.id),
        "total_tasks": await _count(db, Task, tenant.id),
    }
    out["usage"] = await quota.usage(db, tenant.id)
    return out


@router.put("/{tenant_id}")
async def update_tenant(
    tenant_id: str,
    update: TenantUpdate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Rename a tenant (tenant_admin) or change status, plan and limits (super_admin)"""
    fields = update.model_dump(exclude_none=True)
    if not fields:
        raise ValidationError("No fields to update")

    tenant = await _get_tenant(db, tenant_id)
    if fields.keys() - {"name"}:
        authorize(principal, Action.TENANT_MANAGE, tenant.id)
    if "name" in fields:
        authorize(principal, Action.TENANT_UPDATE, tenant.id)

    if update.name is not None:
        tenant.name = update.name
    if update.status is not None:
        tenant.status = update.status
    if update.subscription_plan is not None:
        tenant.subscription_plan = update.subscription_plan
        defaults = PLAN_LIMITS[update.subscription_plan]
        tenant.max_users = update.max_users or defaults["max_users"]
        tenant.max_projects = update.max_projects or defaults["max_projects"]
    else:
        if update.max_users is not None:
            tenant.max_users = update.max_users
        if update.max_projects is not None:
            tenant.max_projects = update.max_projects

    await db.commit()
    await db.refresh(tenant)

    audit.record(AuditEntry(
        tenant_id=tenant.id,
        user_id=principal.user_id,
        action=AuditAction.UPDATE_TENANT,
        entity_type="tenant",
        entity_id=tenant.id,
        ip_address=client_ip(request),
    ))
    return _tenant_summary(tenant)


@router.post("/{tenant_id}/users", status_code=201)
async def create_tenant_user(
    tenant_id: str,
    data: TenantUserCreate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    quota: QuotaGovernor = Depends(get_quota_governor),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Add a user to a tenant, admitted against the tenant's user ceiling"""
    tenant = await _get_tenant(db, tenant_id)
    authorize(principal, Action.USER_CREATE, tenant.id)

    if data.role not in TENANT_ROLES:
        raise ValidationError("Role must be tenant_admin or user")

    existing = await db.execute(
        select(User.id).where(User.tenant_id == tenant.id, User.email == data.email)
    )
    if existing.scalar_one_or_none():
        raise Conflict("Email already exists in this tenant")

    password_hash = AuthService.hash_password(data.password)
    await quota.admit(db, tenant.id, ResourceKind.USERS)

    user = User(
        id=new_uuid(),
        tenant_id=tenant.id,
        email=data.email,
        password_hash=password_hash,
        full_name=data.full_name,
        role=data.role,
        is_active=True,
    )
    db.add(user)
    await commit_or_conflict(db, "Email already exists in this tenant")

    audit.record(AuditEntry(
        tenant_id=tenant.id,
        user_id=principal.user_id,
        action=AuditAction.CREATE_USER,
        entity_type="user",
        entity_id=user.id,
        ip_address=client_ip(request),
    ))

    return _user_to_out(user)


@router.get("/{tenant_id}/users")
async def list_tenant_users(
    tenant_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    search: Optional[str] = None,
    role: Optional[UserRole] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
):
    """List a tenant's users with search, role filter and pagination"""
    tenant = await _get_tenant(db, tenant_id)
    authorize(principal, Action.USER_READ, tenant.id)

    filters = [User.tenant_id == tenant.id]
    if search:
        pattern = f"%{search}%"
        filters.append(or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))
    if role:
        filters.append(User.role == role)

    total_result = await db.execute(select(func.count(User.id)).where(*filters))
    total = total_result.scalar() or 0

    stmt = (
        select(User)
        .where(*filters)
        .order_by(User.created_at.desc())
        .offset(page_window(page, limit))
        .limit(limit)
    )
    result = await db.execute(stmt)

    return {
        "users": [_user_to_out(u) for u in result.scalars().all()],
        "total": total,
        "pagination": pagination(total, page, limit),
    }
