# models.py — Database models for Workspace Hub
# - UUID string primary keys everywhere
# - 3-tier role system (super_admin, tenant_admin, user)
# - Tenant-scoped users, projects and tasks
# - Append-only audit trail and live quota counters

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Date, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
    PrimaryKeyConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def _values(enum_cls):
    return [member.value for member in enum_cls]


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    SUPER_ADMIN = "super_admin"
    TENANT_ADMIN = "tenant_admin"
    USER = "user"


class TenantStatus(str, PyEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class SubscriptionPlan(str, PyEnum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class ProjectStatus(str, PyEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    COMPLETED = "completed"


class TaskStatus(str, PyEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK = {
    TaskPriority.LOW: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.HIGH: 3,
    TaskPriority.URGENT: 4,
}


class AuditAction(str, PyEnum):
    # Tenant events
    REGISTER_TENANT = "REGISTER_TENANT"
    UPDATE_TENANT = "UPDATE_TENANT"
    # Session events
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    # User events
    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    DELETE_USER = "DELETE_USER"
    # Project events
    CREATE_PROJECT = "CREATE_PROJECT"
    UPDATE_PROJECT = "UPDATE_PROJECT"
    DELETE_PROJECT = "DELETE_PROJECT"
    # Task events
    CREATE_TASK = "CREATE_TASK"
    UPDATE_TASK = "UPDATE_TASK"
    UPDATE_TASK_STATUS = "UPDATE_TASK_STATUS"
    DELETE_TASK = "DELETE_TASK"


# (max_users, max_projects) per subscription plan
PLAN_LIMITS = {
    SubscriptionPlan.FREE: {"max_users": 5, "max_projects": 3},
    SubscriptionPlan.PRO: {"max_users": 25, "max_projects": 15},
    SubscriptionPlan.ENTERPRISE: {"max_users": 100, "max_projects": 50},
}


# ============================================================
# TENANTS
# ============================================================

class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    subdomain = Column(String, unique=True, nullable=False, index=True)
    status = Column(
        SQLEnum(TenantStatus, values_callable=_values, name="tenantstatus"),
        default=TenantStatus.ACTIVE, nullable=False, index=True,
    )
    subscription_plan = Column(
        SQLEnum(SubscriptionPlan, values_callable=_values, name="subscriptionplan"),
        default=SubscriptionPlan.FREE, nullable=False,
    )
    max_users = Column(Integer, nullable=False, default=5)
    max_projects = Column(Integer, nullable=False, default=3)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    users = relationship("User", back_populates="tenant")
    projects = relationship("Project", back_populates="tenant")


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    # NULL only for super_admin
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=True, index=True)
    email = Column(String, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    full_name = Column(String, nullable=False, default="")
    role = Column(
        SQLEnum(UserRole, values_callable=_values, name="userrole"),
        default=UserRole.USER, nullable=False, index=True,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="users")

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        Index("idx_user_tenant_role", "tenant_id", "role"),
    )


# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        SQLEnum(ProjectStatus, values_callable=_values, name="projectstatus"),
        default=ProjectStatus.ACTIVE, nullable=False, index=True,
    )
    created_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="projects")
    creator = relationship("User", foreign_keys=[created_by])
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")


# ============================================================
# TASKS
# ============================================================

class Task(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    # Copied from the owning project at creation, never from input
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        SQLEnum(TaskStatus, values_callable=_values, name="taskstatus"),
        default=TaskStatus.TODO, nullable=False, index=True,
    )
    priority = Column(
        SQLEnum(TaskPriority, values_callable=_values, name="taskpriority"),
        default=TaskPriority.MEDIUM, nullable=False,
    )
    assigned_to = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    due_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="tasks")
    assignee = relationship("User", foreign_keys=[assigned_to])

    __table_args__ = (
        Index("idx_task_tenant_status", "tenant_id", "status"),
    )


# ============================================================
# AUDIT LOG (append-only)
# ============================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    # No foreign keys: deleting an actor or entity never touches the trail
    tenant_id = Column(String, nullable=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    action = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_audit_tenant_created", "tenant_id", "created_at"),
    )


# ============================================================
# QUOTA COUNTERS
# ============================================================

class TenantUsage(Base):
    __tablename__ = "tenant_usage"

    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False)
    resource = Column(String, nullable=False)
    used = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        PrimaryKeyConstraint("tenant_id", "resource", name="pk_tenant_usage"),
    )


# ============================================================
# TOKEN REVOCATION
# ============================================================

class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    jti = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), default=utcnow)
