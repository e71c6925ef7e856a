# tests/test_auth.py — Registration, login and session tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

from main import app
from models import AuditLog, AuditAction, Tenant, User, TenantStatus, TenantUsage
from tests.conftest import PASSWORD, get_auth_headers, make_tenant, make_user


REGISTRATION = {
    "tenant_name": "Initech",
    "subdomain": "Initech",
    "admin_email": "founder@initech.io",
    "admin_password": "SecurePass123!",
    "admin_full_name": "Bill Lumbergh",
}


@pytest.mark.asyncio
async def test_register_tenant(client: AsyncClient, database):
    resp = await client.post("/api/auth/register-tenant", json=REGISTRATION)
    assert resp.status_code == 201
    data = resp.json()
    assert data["subdomain"] == "initech"
    assert data["admin_user"]["role"] == "tenant_admin"
    assert data["admin_user"]["tenant_id"] == data["tenant_id"]

    async with database.session() as session:
        rows = await session.execute(
            select(TenantUsage.resource, TenantUsage.used).where(TenantUsage.tenant_id == data["tenant_id"])
        )
        assert dict(rows.all()) == {"users": 1, "projects": 0}


@pytest.mark.asyncio
async def test_register_duplicate_subdomain(client: AsyncClient, test_tenant):
    resp = await client.post(
        "/api/auth/register-tenant", json={**REGISTRATION, "subdomain": test_tenant.subdomain}
    )
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Subdomain already exists"
    assert "request_id" in resp.json()


@pytest.mark.asyncio
async def test_register_rejects_bad_input(client: AsyncClient):
    resp = await client.post(
        "/api/auth/register-tenant",
        json={**REGISTRATION, "subdomain": "-bad-", "admin_password": "short"},
    )
    assert resp.status_code == 400
    locs = {tuple(err["loc"]) for err in resp.json()["detail"]}
    assert ("body", "subdomain") in locs
    assert ("body", "admin_password") in locs


@pytest.mark.asyncio
async def test_login_with_subdomain(client: AsyncClient, test_tenant, test_user):
    resp = await client.post("/api/auth/login", json={
        "email": test_user.email,
        "password": PASSWORD,
        "tenant_subdomain": test_tenant.subdomain,
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 1440 * 60
    assert data["user"]["id"] == test_user.id


@pytest.mark.asyncio
async def test_login_same_email_resolves_per_tenant(client: AsyncClient, db_session, test_tenant, other_tenant):
    """Emails are unique per tenant, not globally"""
    mine = await make_user(db_session, test_tenant, "shared@example.io")
    theirs = await make_user(db_session, other_tenant, "shared@example.io")

    resp = await client.post("/api/auth/login", json={
        "email": "shared@example.io", "password": PASSWORD, "tenant_id": other_tenant.id,
    })
    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == theirs.id
    assert theirs.id != mine.id


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, test_tenant, test_user):
    resp = await client.post("/api/auth/login", json={
        "email": test_user.email, "password": "WrongPassword!", "tenant_id": test_tenant.id,
    })
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_login_suspended_tenant(client: AsyncClient, db_session):
    tenant = await make_tenant(db_session, "dormant", status=TenantStatus.SUSPENDED)
    user = await make_user(db_session, tenant, "sleepy@dormant.io")
    resp = await client.post("/api/auth/login", json={
        "email": user.email, "password": PASSWORD, "tenant_subdomain": "dormant",
    })
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_super_admin_logs_in_without_tenant(client: AsyncClient, super_admin, test_user):
    resp = await client.post("/api/auth/login", json={"email": super_admin.email, "password": PASSWORD})
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "super_admin"

    # Tenant users cannot skip the tenant
    resp = await client.post("/api/auth/login", json={"email": test_user.email, "password": PASSWORD})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_me(client: AsyncClient, test_tenant, test_user):
    resp = await client.get("/api/auth/me", headers=get_auth_headers(test_user))
    assert resp.status_code == 200
    data = resp.json()
    assert data["email"] == test_user.email
    assert data["tenant"]["subdomain"] == test_tenant.subdomain


@pytest.mark.asyncio
async def test_me_without_token(client: AsyncClient):
    resp = await client.get("/api/auth/me")
    assert resp.status_code in (401, 403)


@pytest.mark.asyncio
async def test_me_with_garbage_token(client: AsyncClient):
    resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_logout_revokes_token(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    resp = await client.post("/api/auth/logout", headers=headers)
    assert resp.status_code == 200

    resp = await client.get("/api/auth/me", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token has been revoked"


@pytest.mark.asyncio
async def test_suspended_tenant_token_is_rejected(client: AsyncClient, database, test_tenant, test_user):
    headers = get_auth_headers(test_user)
    async with database.session() as session:
        tenant = await session.get(Tenant, test_tenant.id)
        tenant.status = TenantStatus.SUSPENDED
        await session.commit()

    resp = await client.get("/api/auth/me", headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_login_is_audited(client: AsyncClient, database, test_tenant, test_user):
    await client.post("/api/auth/login", json={
        "email": test_user.email, "password": PASSWORD, "tenant_id": test_tenant.id,
    })
    await app.state.audit_trail.flush()

    async with database.session() as session:
        count = await session.execute(
            select(func.count(AuditLog.id)).where(AuditLog.action == AuditAction.LOGIN.value, AuditLog.user_id == test_user.id)
        )
        assert count.scalar() == 1


@pytest.mark.asyncio
async def test_users_table_untouched_by_failed_registration(client: AsyncClient, database, test_tenant):
    await client.post("/api/auth/register-tenant", json={**REGISTRATION, "subdomain": test_tenant.subdomain})
    async with database.session() as session:
        count = await session.execute(select(func.count(User.id)).where(User.email == REGISTRATION["admin_email"]))
        assert count.scalar() == 0


@pytest.mark.asyncio
async def test_health_echoes_request_id(client: AsyncClient):
    resp = await client.get("/api/health", headers={"X-Request-ID": "req-123"})
    assert resp.status_code == 200
    assert resp.json()["database"] == "connected"
    assert resp.json()["audit"]["running"] is True
    assert resp.headers["X-Request-ID"] == "req-123"
