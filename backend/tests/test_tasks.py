# tests/test_tasks.py — Task router tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

from models import Task
from tests.conftest import get_auth_headers


async def _task_count(database) -> int:
    async with database.session() as session:
        result = await session.execute(select(func.count(Task.id)))
        return result.scalar()


async def _create(client, project, user, **body):
    payload = {"title": "Write docs", **body}
    return await client.post(f"/api/projects/{project.id}/tasks", json=payload, headers=get_auth_headers(user))


@pytest.mark.asyncio
async def test_create_task(client: AsyncClient, test_project, test_user, second_user):
    resp = await _create(client, test_project, test_user, assigned_to=second_user.id, due_date="2030-01-31")
    assert resp.status_code == 201
    data = resp.json()
    assert data["tenant_id"] == test_project.tenant_id
    assert data["status"] == "todo"
    assert data["priority"] == "medium"
    assert data["assigned_to"]["id"] == second_user.id
    assert data["due_date"] == "2030-01-31"


@pytest.mark.asyncio
async def test_assign_to_other_tenant_rejected_without_mutation(
    client: AsyncClient, database, test_project, test_user, other_user
):
    resp = await _create(client, test_project, test_user, assigned_to=other_user.id)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Assigned user not found in this tenant"
    assert await _task_count(database) == 0


@pytest.mark.asyncio
async def test_create_task_in_other_tenant_project(client: AsyncClient, test_project, other_user):
    resp = await _create(client, test_project, other_user)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_task_missing_project(client: AsyncClient, test_user):
    resp = await client.post("/api/projects/nope/tasks", json={"title": "x"}, headers=get_auth_headers(test_user))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_orders_by_priority_then_due_date(client: AsyncClient, test_project, test_user):
    await _create(client, test_project, test_user, title="low", priority="low")
    await _create(client, test_project, test_user, title="urgent-late", priority="urgent", due_date="2030-06-01")
    await _create(client, test_project, test_user, title="urgent-undated", priority="urgent")
    await _create(client, test_project, test_user, title="urgent-soon", priority="urgent", due_date="2030-01-01")
    await _create(client, test_project, test_user, title="high", priority="high")

    resp = await client.get(f"/api/projects/{test_project.id}/tasks", headers=get_auth_headers(test_user))
    assert resp.status_code == 200
    titles = [t["title"] for t in resp.json()["tasks"]]
    assert titles == ["urgent-soon", "urgent-late", "urgent-undated", "high", "low"]


@pytest.mark.asyncio
async def test_list_filters(client: AsyncClient, test_project, test_user, second_user):
    await _create(client, test_project, test_user, title="mine", assigned_to=test_user.id)
    await _create(client, test_project, test_user, title="theirs", assigned_to=second_user.id, priority="high")
    headers = get_auth_headers(test_user)
    base = f"/api/projects/{test_project.id}/tasks"

    resp = await client.get(f"{base}?assigned_to={second_user.id}", headers=headers)
    assert [t["title"] for t in resp.json()["tasks"]] == ["theirs"]

    resp = await client.get(f"{base}?priority=medium", headers=headers)
    assert [t["title"] for t in resp.json()["tasks"]] == ["mine"]

    resp = await client.get(f"{base}?search=the", headers=headers)
    assert resp.json()["total"] == 1


@pytest.mark.asyncio
async def test_update_status(client: AsyncClient, test_project, test_user, second_user):
    created = (await _create(client, test_project, test_user)).json()
    resp = await client.patch(
        f"/api/tasks/{created['id']}/status", json={"status": "in_progress"}, headers=get_auth_headers(second_user)
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "in_progress"


@pytest.mark.asyncio
async def test_update_status_other_tenant(client: AsyncClient, test_project, test_user, other_admin):
    created = (await _create(client, test_project, test_user)).json()
    resp = await client.patch(
        f"/api/tasks/{created['id']}/status", json={"status": "completed"}, headers=get_auth_headers(other_admin)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_update_task_clears_assignee_and_due_date(client: AsyncClient, test_project, test_user, second_user):
    created = (await _create(client, test_project, test_user, assigned_to=second_user.id, due_date="2030-01-01")).json()
    resp = await client.put(
        f"/api/tasks/{created['id']}",
        json={"assigned_to": None, "due_date": None, "priority": "high"},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["assigned_to"] is None
    assert data["due_date"] is None
    assert data["priority"] == "high"
    assert data["title"] == "Write docs"


@pytest.mark.asyncio
async def test_update_task_reassign_cross_tenant(client: AsyncClient, test_project, test_user, other_user):
    created = (await _create(client, test_project, test_user)).json()
    resp = await client.put(
        f"/api/tasks/{created['id']}", json={"assigned_to": other_user.id}, headers=get_auth_headers(test_user)
    )
    assert resp.status_code == 400

    resp = await client.get(f"/api/tasks/{created['id']}", headers=get_auth_headers(test_user))
    assert resp.json()["assigned_to"] is None


@pytest.mark.asyncio
async def test_delete_task_requires_project_owner_or_admin(
    client: AsyncClient, database, test_project, test_user, second_user, tenant_admin
):
    first = (await _create(client, test_project, second_user)).json()
    second = (await _create(client, test_project, second_user)).json()

    # second_user created the tasks but does not own the project
    resp = await client.delete(f"/api/tasks/{first['id']}", headers=get_auth_headers(second_user))
    assert resp.status_code == 403

    resp = await client.delete(f"/api/tasks/{first['id']}", headers=get_auth_headers(test_user))
    assert resp.status_code == 200
    resp = await client.delete(f"/api/tasks/{second['id']}", headers=get_auth_headers(tenant_admin))
    assert resp.status_code == 200
    assert await _task_count(database) == 0


@pytest.mark.asyncio
async def test_get_missing_task(client: AsyncClient, test_user):
    resp = await client.get("/api/tasks/missing", headers=get_auth_headers(test_user))
    assert resp.status_code == 404
