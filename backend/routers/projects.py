# routers/projects.py — Tenant projects, admitted against the project ceiling
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import get_current_principal
from database import get_db_session
from dependencies import (
    get_audit_trail, get_quota_governor, client_ip, commit_or_conflict,
    page_window, pagination,
)
from models import Project, Task, ProjectStatus, TaskStatus, AuditAction, new_uuid
from tenancy import (
    Action, AuditTrail, AuditEntry, NotFound, Principal, QuotaGovernor,
    ResourceKind, ValidationError, authorize,
)

router = APIRouter(prefix="/api/projects", tags=["Projects"])


# --- Schemas ---

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    # Only meaningful for super_admin; everyone else creates in their own tenant
    tenant_id: Optional[str] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None


# --- Helpers ---

def _project_to_out(
    p: Project,
    task_count: int = 0,
    completed_task_count: int = 0,
    creator_name: Optional[str] = None,
) -> dict:
    return {
        "id": p.id,
        "tenant_id": p.tenant_id,
        "name": p.name,
        "description": p.description,
        "status": ProjectStatus(p.status).value,
        "created_by": p.created_by,
        "creator_name": creator_name,
        "task_count": task_count,
        "completed_task_count": completed_task_count,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }


def _creator_name(p: Project) -> Optional[str]:
    return p.creator.full_name if p.creator is not None else None


async def _get_project(db: AsyncSession, project_id: str) -> Project:
    result = await db.execute(
        select(Project)
        .options(selectinload(Project.creator))
        .where(Project.id == project_id)
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if not project:
        raise NotFound("Project not found")
    return project


async def _task_counts(db: AsyncSession, project_id: str):
    total = await db.execute(select(func.count(Task.id)).where(Task.project_id == project_id))
    done = await db.execute(
        select(func.count(Task.id)).where(
            Task.project_id == project_id, Task.status == TaskStatus.COMPLETED
        )
    )
    return total.scalar() or 0, done.scalar() or 0


# --- Endpoints ---

@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    quota: QuotaGovernor = Depends(get_quota_governor),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Create a project, admitted against the tenant's project ceiling"""
    tenant_id = data.tenant_id or principal.tenant_id
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    authorize(principal, Action.PROJECT_CREATE, tenant_id)

    await quota.admit(db, tenant_id, ResourceKind.PROJECTS)

    project = Project(
        id=new_uuid(),
        tenant_id=tenant_id,
        name=data.name,
        description=data.description,
        status=data.status,
        # Creator must belong to the project's tenant
        created_by=principal.user_id if principal.tenant_id == tenant_id else None,
    )
    db.add(project)
    await commit_or_conflict(db, "Project could not be created")

    audit.record(AuditEntry(
        tenant_id=tenant_id,
        user_id=principal.user_id,
        action=AuditAction.CREATE_PROJECT,
        entity_type="project",
        entity_id=project.id,
        ip_address=client_ip(request),
    ))
    return _project_to_out(project)


@router.get("")
async def list_projects(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    tenant_id: Optional[str] = None,
    status: Optional[ProjectStatus] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
):
    """List projects of the caller's tenant with task counts"""
    tenant_id = tenant_id or principal.tenant_id
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    authorize(principal, Action.PROJECT_READ, tenant_id)

    filters = [Project.tenant_id == tenant_id]
    if status:
        filters.append(Project.status == status)
    if search:
        filters.append(Project.name.ilike(f"%{search}%"))

    total_result = await db.execute(select(func.count(Project.id)).where(*filters))
    total = total_result.scalar() or 0

    task_count = (
        select(func.count(Task.id))
        .where(Task.project_id == Project.id)
        .correlate(Project)
        .scalar_subquery()
    )
    completed_count = (
        select(func.count(Task.id))
        .where(Task.project_id == Project.id, Task.status == TaskStatus.COMPLETED)
        .correlate(Project)
        .scalar_subquery()
    )
    stmt = (
        select(Project, task_count, completed_count)
        .options(selectinload(Project.creator))
        .where(*filters)
        .order_by(Project.created_at.desc())
        .offset(page_window(page, limit))
        .limit(limit)
    )
    result = await db.execute(stmt)

    return {
        "projects": [_project_to_out(p, tc or 0, cc or 0, _creator_name(p)) for p, tc, cc in result.all()],
        "total": total,
        "pagination": pagination(total, page, limit),
    }


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
):
    project = await _get_project(db, project_id)
    authorize(principal, Action.PROJECT_READ, project.tenant_id)
    total, done = await _task_counts(db, project.id)
    return _project_to_out(project, total, done, _creator_name(project))


@router.put("/{project_id}")
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Update a project (tenant_admin or the project's creator)"""
    project = await _get_project(db, project_id)
    authorize(principal, Action.PROJECT_UPDATE, project.tenant_id, project.created_by)

    if data.name is not None:
        project.name = data.name
    if "description" in data.model_fields_set:
        project.description = data.description
    if data.status is not None:
        project.status = data.status

    await db.commit()
    project = await _get_project(db, project_id)

    audit.record(AuditEntry(
        tenant_id=project.tenant_id,
        user_id=principal.user_id,
        action=AuditAction.UPDATE_PROJECT,
        entity_type="project",
        entity_id=project.id,
        ip_address=client_ip(request),
    ))
    total, done = await _task_counts(db, project.id)
    return _project_to_out(project, total, done, _creator_name(project))


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    quota: QuotaGovernor = Depends(get_quota_governor),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Delete a project and its tasks, freeing one project slot"""
    project = await _get_project(db, project_id)
    authorize(principal, Action.PROJECT_DELETE, project.tenant_id, project.created_by)
    tenant_id = project.tenant_id

    await db.execute(
        delete(Task)
        .where(Task.project_id == project.id)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        delete(Project).where(Project.id == project.id).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("Project not found")
    await quota.release(db, tenant_id, ResourceKind.PROJECTS)
    await db.commit()

    audit.record(AuditEntry(
        tenant_id=tenant_id,
        user_id=principal.user_id,
        action=AuditAction.DELETE_PROJECT,
        entity_type="project",
        entity_id=project_id,
        ip_address=client_ip(request),
    ))
    return {"message": "Project deleted successfully"}
