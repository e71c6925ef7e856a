# routers/users.py — User profile, role management and deletion
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_principal
from database import get_db_session
from dependencies import get_audit_trail, get_quota_governor, client_ip
from models import User, Task, Project, UserRole, AuditAction
from tenancy import (
    Action, AuditTrail, AuditEntry, NotFound, Principal, QuotaGovernor,
    ResourceKind, ValidationError, authorize,
)

router = APIRouter(prefix="/api/users", tags=["Users"])


# --- Schemas ---

class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


# --- Helpers ---

def _user_to_out(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "full_name": u.full_name or "",
        "role": UserRole(u.role).value,
        "tenant_id": u.tenant_id,
        "is_active": u.is_active,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


async def _get_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    target = result.scalar_one_or_none()
    if not target:
        raise NotFound("User not found")
    return target


# --- Endpoints ---

@router.get("/{user_id}")
async def get_user(
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_user(db, user_id)
    authorize(principal, Action.USER_READ, target.tenant_id, target.id)
    return _user_to_out(target)


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    data: UserUpdate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Update own full name, or (tenant_admin) another user's name, role or active flag"""
    if data.full_name is None and data.role is None and data.is_active is None:
        raise ValidationError("No fields to update")

    target = await _get_user(db, user_id)
    if data.role is not None or data.is_active is not None or target.id != principal.user_id:
        action = Action.USER_MANAGE
    else:
        action = Action.USER_UPDATE_PROFILE
    authorize(principal, action, target.tenant_id, target.id)

    if data.role is not None:
        if target.tenant_id is None or data.role == UserRole.SUPER_ADMIN:
            raise ValidationError("Role must be tenant_admin or user")
        target.role = data.role
    if data.is_active is not None:
        target.is_active = data.is_active
    if data.full_name is not None:
        target.full_name = data.full_name

    await db.commit()
    await db.refresh(target)

    audit.record(AuditEntry(
        tenant_id=target.tenant_id,
        user_id=principal.user_id,
        action=AuditAction.UPDATE_USER,
        entity_type="user",
        entity_id=target.id,
        ip_address=client_ip(request),
    ))
    return _user_to_out(target)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    quota: QuotaGovernor = Depends(get_quota_governor),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Delete a user, unassigning their tasks, and free their seat"""
    target = await _get_user(db, user_id)
    authorize(principal, Action.USER_DELETE, target.tenant_id, target.id)
    tenant_id = target.tenant_id

    await db.execute(
        update(Task)
        .where(Task.assigned_to == target.id)
        .values(assigned_to=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Project)
        .where(Project.created_by == target.id)
        .values(created_by=None)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        delete(User).where(User.id == target.id).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Removed by a concurrent request; its seat was already released there
        raise NotFound("User not found")
    if tenant_id is not None:
        await quota.release(db, tenant_id, ResourceKind.USERS)
    await db.commit()

    audit.record(AuditEntry(
        tenant_id=tenant_id,
        user_id=principal.user_id,
        action=AuditAction.DELETE_USER,
        entity_type="user",
        entity_id=user_id,
        ip_address=client_ip(request),
    ))
    return {"message": "User deleted successfully"}
