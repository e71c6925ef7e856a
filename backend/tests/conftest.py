# tests/conftest.py — Shared test fixtures
import os
import uuid

import pytest_asyncio
from httpx import AsyncClient, ASGITransport

os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ENVIRONMENT"] = "test"

from models import (  # noqa: E402
    Tenant, User, Project, TenantStatus, SubscriptionPlan, UserRole, PLAN_LIMITS,
)
from auth import AuthService  # noqa: E402
from database import Database  # noqa: E402
from main import app, start_services, stop_services  # noqa: E402
from tenancy import QuotaGovernor  # noqa: E402

PASSWORD = "TestPassword123!"


@pytest_asyncio.fixture(scope="function")
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    await db.create_all()
    yield db
    await db.drop_all()
    await db.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(database):
    async with database.session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(database):
    """HTTP test client bound to the per-test database"""
    await start_services(app, database)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await stop_services(app)


async def make_tenant(
    db_session,
    subdomain: str,
    plan: SubscriptionPlan = SubscriptionPlan.FREE,
    status: TenantStatus = TenantStatus.ACTIVE,
    **limits,
) -> Tenant:
    ceilings = dict(PLAN_LIMITS[plan])
    ceilings.update(limits)
    tenant = Tenant(
        id=str(uuid.uuid4()),
        name=subdomain.title(),
        subdomain=subdomain,
        status=status,
        subscription_plan=plan,
        **ceilings,
    )
    db_session.add(tenant)
    await db_session.flush()
    await QuotaGovernor().seed(db_session, tenant.id)
    await db_session.commit()
    return tenant


async def make_user(db_session, tenant, email: str, role: UserRole = UserRole.USER) -> User:
    user = User(
        id=str(uuid.uuid4()),
        tenant_id=tenant.id if tenant is not None else None,
        email=email,
        full_name=email.split("@")[0].title(),
        password_hash=AuthService.hash_password(PASSWORD),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    await db_session.flush()
    if tenant is not None:
        await QuotaGovernor().seed(db_session, tenant.id)
    await db_session.commit()
    return user


async def make_project(db_session, tenant, creator=None, name: str = "Roadmap") -> Project:
    project = Project(
        id=str(uuid.uuid4()),
        tenant_id=tenant.id,
        name=name,
        created_by=creator.id if creator is not None else None,
    )
    db_session.add(project)
    await db_session.flush()
    await QuotaGovernor().seed(db_session, tenant.id)
    await db_session.commit()
    return project


@pytest_asyncio.fixture
async def test_tenant(db_session):
    """Active free-plan tenant"""
    return await make_tenant(db_session, "acme")


@pytest_asyncio.fixture
async def other_tenant(db_session):
    return await make_tenant(db_session, "globex")


@pytest_asyncio.fixture
async def tenant_admin(db_session, test_tenant):
    return await make_user(db_session, test_tenant, "admin@acme.io", UserRole.TENANT_ADMIN)


@pytest_asyncio.fixture
async def test_user(db_session, test_tenant):
    return await make_user(db_session, test_tenant, "member@acme.io")


@pytest_asyncio.fixture
async def second_user(db_session, test_tenant):
    return await make_user(db_session, test_tenant, "colleague@acme.io")


@pytest_asyncio.fixture
async def other_admin(db_session, other_tenant):
    return await make_user(db_session, other_tenant, "admin@globex.io", UserRole.TENANT_ADMIN)


@pytest_asyncio.fixture
async def other_user(db_session, other_tenant):
    return await make_user(db_session, other_tenant, "member@globex.io")


@pytest_asyncio.fixture
async def super_admin(db_session):
    """Platform admin, bound to no tenant"""
    return await make_user(db_session, None, "root@platform.io", UserRole.SUPER_ADMIN)


@pytest_asyncio.fixture
async def test_project(db_session, test_tenant, test_user):
    return await make_project(db_session, test_tenant, creator=test_user)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token(user)
    return {"Authorization": f"Bearer {token}"}
