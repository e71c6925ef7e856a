# routers/tasks.py — Project tasks with tenant-checked assignment
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import get_current_principal
from database import get_db_session
from dependencies import get_audit_trail, client_ip, page_window, pagination
from models import (
    Project, Task, User, TaskStatus, TaskPriority, AuditAction,
    PRIORITY_RANK, new_uuid,
)
from tenancy import (
    Action, AuditTrail, AuditEntry, NotFound, Principal, ValidationError, authorize,
)

router = APIRouter(prefix="/api", tags=["Tasks"])

PRIORITY_ORDER = case(
    *[(Task.priority == priority, rank) for priority, rank in PRIORITY_RANK.items()],
    else_=0,
)


# --- Schemas ---

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[date] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = None
    due_date: Optional[date] = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


# --- Helpers ---

def _task_to_out(t: Task, assignee: Optional[User] = None) -> dict:
    return {
        "id": t.id,
        "project_id": t.project_id,
        "tenant_id": t.tenant_id,
        "title": t.title,
        "description": t.description,
        "status": TaskStatus(t.status).value,
        "priority": TaskPriority(t.priority).value,
        "assigned_to": {
            "id": assignee.id,
            "full_name": assignee.full_name,
            "email": assignee.email,
        } if assignee is not None else None,
        "due_date": t.due_date.isoformat() if t.due_date else None,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


async def _get_task(db: AsyncSession, task_id: str) -> Task:
    result = await db.execute(
        select(Task)
        .options(selectinload(Task.assignee), selectinload(Task.project))
        .where(Task.id == task_id)
        .execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if not task:
        raise NotFound("Task not found")
    return task


async def _get_project(db: AsyncSession, project_id: str) -> Project:
    result = await db.execute(select(Project).where(Project.id == project_id))
    project = result.scalar_one_or_none()
    if not project:
        raise NotFound("Project not found")
    return project


async def _require_tenant_member(db: AsyncSession, user_id: str, tenant_id: str) -> User:
    """Assignees must belong to the task's tenant"""
    result = await db.execute(select(User).where(User.id == user_id, User.tenant_id == tenant_id))
    assignee = result.scalar_one_or_none()
    if not assignee:
        raise ValidationError("Assigned user not found in this tenant")
    return assignee


# --- Endpoints ---

@router.post("/projects/{project_id}/tasks", status_code=201)
async def create_task(
    project_id: str,
    data: TaskCreate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    audit: AuditTrail = Depends(get_audit_trail),
):
    project = await _get_project(db, project_id)
    authorize(principal, Action.TASK_CREATE, project.tenant_id)

    assignee = None
    if data.assigned_to:
        assignee = await _require_tenant_member(db, data.assigned_to, project.tenant_id)

    task = Task(
        id=new_uuid(),
        project_id=project.id,
        tenant_id=project.tenant_id,
        title=data.title,
        description=data.description,
        status=TaskStatus.TODO,
        priority=data.priority,
        assigned_to=assignee.id if assignee else None,
        due_date=data.due_date,
    )
    db.add(task)
    await db.commit()

    audit.record(AuditEntry(
        tenant_id=project.tenant_id,
        user_id=principal.user_id,
        action=AuditAction.CREATE_TASK,
        entity_type="task",
        entity_id=task.id,
        ip_address=client_ip(request),
    ))
    return _task_to_out(task, assignee)


@router.get("/projects/{project_id}/tasks")
async def list_project_tasks(
    project_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    status: Optional[TaskStatus] = None,
    assigned_to: Optional[str] = None,
    priority: Optional[TaskPriority] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
):
    """List a project's tasks, most urgent first, then by due date"""
    project = await _get_project(db, project_id)
    authorize(principal, Action.TASK_READ, project.tenant_id)

    filters = [Task.project_id == project.id]
    if status:
        filters.append(Task.status == status)
    if assigned_to:
        filters.append(Task.assigned_to == assigned_to)
    if priority:
        filters.append(Task.priority == priority)
    if search:
        filters.append(Task.title.ilike(f"%{search}%"))

    total_result = await db.execute(select(func.count(Task.id)).where(*filters))
    total = total_result.scalar() or 0

    stmt = (
        select(Task)
        .options(selectinload(Task.assignee))
        .where(*filters)
        .order_by(
            PRIORITY_ORDER.desc(),
            Task.due_date.is_(None),
            Task.due_date.asc(),
            Task.created_at.asc(),
        )
        .offset(page_window(page, limit))
        .limit(limit)
    )
    result = await db.execute(stmt)

    return {
        "tasks": [_task_to_out(t, t.assignee) for t in result.scalars().all()],
        "total": total,
        "pagination": pagination(total, page, limit),
    }


@router.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    authorize(principal, Action.TASK_READ, task.tenant_id)
    return _task_to_out(task, task.assignee)


@router.patch("/tasks/{task_id}/status")
async def update_task_status(
    task_id: str,
    data: TaskStatusUpdate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    audit: AuditTrail = Depends(get_audit_trail),
):
    task = await _get_task(db, task_id)
    authorize(principal, Action.TASK_UPDATE_STATUS, task.tenant_id)

    task.status = data.status
    await db.commit()

    audit.record(AuditEntry(
        tenant_id=task.tenant_id,
        user_id=principal.user_id,
        action=AuditAction.UPDATE_TASK_STATUS,
        entity_type="task",
        entity_id=task.id,
        ip_address=client_ip(request),
    ))
    return {"id": task.id, "status": TaskStatus(task.status).value}


@router.put("/tasks/{task_id}")
async def update_task(
    task_id: str,
    data: TaskUpdate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Update any task field. Explicit null clears assignee, description or due date."""
    task = await _get_task(db, task_id)
    authorize(principal, Action.TASK_UPDATE, task.tenant_id)

    fields = data.model_fields_set
    if "assigned_to" in fields and data.assigned_to:
        await _require_tenant_member(db, data.assigned_to, task.tenant_id)

    if data.title is not None:
        task.title = data.title
    if "description" in fields:
        task.description = data.description
    if data.status is not None:
        task.status = data.status
    if data.priority is not None:
        task.priority = data.priority
    if "assigned_to" in fields:
        task.assigned_to = data.assigned_to or None
    if "due_date" in fields:
        task.due_date = data.due_date

    await db.commit()
    task = await _get_task(db, task_id)

    audit.record(AuditEntry(
        tenant_id=task.tenant_id,
        user_id=principal.user_id,
        action=AuditAction.UPDATE_TASK,
        entity_type="task",
        entity_id=task.id,
        ip_address=client_ip(request),
    ))
    return _task_to_out(task, task.assignee)


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
    audit: AuditTrail = Depends(get_audit_trail),
):
    """Delete a task (tenant_admin or the project's creator)"""
    task = await _get_task(db, task_id)
    authorize(principal, Action.TASK_DELETE, task.tenant_id, task.project.created_by)
    tenant_id = task.tenant_id

    await db.delete(task)
    await db.commit()

    audit.record(AuditEntry(
        tenant_id=tenant_id,
        user_id=principal.user_id,
        action=AuditAction.DELETE_TASK,
        entity_type="task",
        entity_id=task_id,
        ip_address=client_ip(request),
    ))
    return {"message": "Task deleted successfully"}
