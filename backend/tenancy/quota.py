# tenancy/quota.py — Quota Governor (per-tenant admission control)
"""
Admission against a tenant's ceilings, safe under concurrent requests.

Each (tenant, resource kind) has one row in ``tenant_usage``. Admission is a
single conditional increment::

    UPDATE tenant_usage SET used = used + 1
    WHERE tenant_id = :t AND resource = :k
      AND used < (SELECT max_<k> FROM tenants WHERE id = :t AND status = 'active')

The row lock taken by that statement serializes concurrent admissions for the
same tenant and kind, and nothing else. The increment runs inside the caller's
transaction: it commits together with the insert it guards, or rolls back with
it, so a failed creation never keeps a slot.
"""

import logging
from enum import Enum
from typing import Dict

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Tenant, TenantStatus, TenantUsage, User, Project, utcnow
from tenancy.errors import LimitReached, NotFound, TenantInactive, TransientStoreError

logger = logging.getLogger("workspace-hub.quota")


class ResourceKind(str, Enum):
    USERS = "users"
    PROJECTS = "projects"


class Admission(str, Enum):
    ADMITTED = "admitted"
    LIMIT_REACHED = "limit_reached"
    TENANT_NOT_FOUND = "tenant_not_found"
    TENANT_INACTIVE = "tenant_inactive"

    @property
    def admitted(self) -> bool:
        return self is Admission.ADMITTED


CEILING_COLUMNS = {
    ResourceKind.USERS: Tenant.max_users,
    ResourceKind.PROJECTS: Tenant.max_projects,
}

COUNTED_MODELS = {
    ResourceKind.USERS: User,
    ResourceKind.PROJECTS: Project,
}


class QuotaGovernor:
    """Reserves and releases capacity against tenant ceilings.

    Stateless: all state lives in ``tenant_usage`` and every call works on
    the session of the unit of work it guards.
    """

    async def try_admit(self, db: AsyncSession, tenant_id: str, kind: ResourceKind) -> Admission:
        try:
            if await self._increment(db, tenant_id, kind):
                return Admission.ADMITTED

            result = await db.execute(select(Tenant.status).where(Tenant.id == tenant_id))
            status = result.scalar_one_or_none()
            if status is None:
                return Admission.TENANT_NOT_FOUND
            if status != TenantStatus.ACTIVE:
                return Admission.TENANT_INACTIVE

            if not await self._has_counter(db, tenant_id, kind):
                logger.warning(f"Missing {kind.value} counter for tenant {tenant_id}, seeding from live rows")
                await self._seed_missing(db, tenant_id, kind)
                if await self._increment(db, tenant_id, kind):
                    return Admission.ADMITTED

            logger.info(f"Admission rejected: tenant {tenant_id} at {kind.value} ceiling")
            return Admission.LIMIT_REACHED
        except (OperationalError, InterfaceError) as exc:
            raise TransientStoreError() from exc

    async def admit(self, db: AsyncSession, tenant_id: str, kind: ResourceKind) -> None:
        """Like try_admit, but raises for every outcome other than ADMITTED."""
        outcome = await self.try_admit(db, tenant_id, kind)
        if outcome is Admission.ADMITTED:
            return
        if outcome is Admission.TENANT_NOT_FOUND:
            raise NotFound("Tenant not found")
        if outcome is Admission.TENANT_INACTIVE:
            raise TenantInactive()
        raise LimitReached(kind)

    async def release(self, db: AsyncSession, tenant_id: str, kind: ResourceKind) -> bool:
        """Give back one slot. Never goes below zero; returns False if nothing was released."""
        stmt = (
            update(TenantUsage)
            .where(
                TenantUsage.tenant_id == tenant_id,
                TenantUsage.resource == kind.value,
                TenantUsage.used > 0,
            )
            .values(used=TenantUsage.used - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await db.execute(stmt)
        except (OperationalError, InterfaceError) as exc:
            raise TransientStoreError() from exc
        if result.rowcount == 0:
            logger.warning(f"Release of {kind.value} for tenant {tenant_id} found nothing to release")
            return False
        return True

    async def seed(self, db: AsyncSession, tenant_id: str) -> None:
        """Create or rewrite all counters of a tenant from the rows that exist."""
        for kind in ResourceKind:
            await self._write_counter(db, tenant_id, kind)

    async def usage(self, db: AsyncSession, tenant_id: str) -> Dict[str, Dict[str, int]]:
        tenant = (await db.execute(select(Tenant).where(Tenant.id == tenant_id))).scalar_one_or_none()
        if tenant is None:
            raise NotFound("Tenant not found")
        rows = await db.execute(
            select(TenantUsage.resource, TenantUsage.used).where(TenantUsage.tenant_id == tenant_id)
        )
        used = dict(rows.all())
        return {
            kind.value: {
                "used": used.get(kind.value, 0),
                "limit": getattr(tenant, CEILING_COLUMNS[kind].key),
            }
            for kind in ResourceKind
        }

    # --- Internals ---

    async def _increment(self, db: AsyncSession, tenant_id: str, kind: ResourceKind) -> bool:
        ceiling = (
            select(CEILING_COLUMNS[kind])
            .where(Tenant.id == tenant_id, Tenant.status == TenantStatus.ACTIVE)
            .scalar_subquery()
        )
        stmt = (
            update(TenantUsage)
            .where(
                TenantUsage.tenant_id == tenant_id,
                TenantUsage.resource == kind.value,
                TenantUsage.used < ceiling,
            )
            .values(used=TenantUsage.used + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    async def _has_counter(self, db: AsyncSession, tenant_id: str, kind: ResourceKind) -> bool:
        result = await db.execute(
            select(TenantUsage.used).where(
                TenantUsage.tenant_id == tenant_id,
                TenantUsage.resource == kind.value,
            )
        )
        return result.first() is not None

    async def _seed_missing(self, db: AsyncSession, tenant_id: str, kind: ResourceKind) -> None:
        # A racing admission may insert the same counter row first
        try:
            async with db.begin_nested():
                await self._write_counter(db, tenant_id, kind)
        except IntegrityError:
            logger.info(f"{kind.value} counter for tenant {tenant_id} was seeded concurrently")

    async def _write_counter(self, db: AsyncSession, tenant_id: str, kind: ResourceKind) -> None:
        model = COUNTED_MODELS[kind]
        count_result = await db.execute(select(func.count(model.id)).where(model.tenant_id == tenant_id))
        live = count_result.scalar() or 0

        result = await db.execute(
            select(TenantUsage).where(
                TenantUsage.tenant_id == tenant_id,
                TenantUsage.resource == kind.value,
            )
        )
        counter = result.scalar_one_or_none()
        if counter is None:
            db.add(TenantUsage(tenant_id=tenant_id, resource=kind.value, used=live))
        else:
            counter.used = live
        await db.flush()
