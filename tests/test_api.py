from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import pytest
from fakeredis import FakeRedis
from fastapi import FastAPI, status
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlmodel.ext.asyncio.session import AsyncSession

from taskflow.core.config import get_settings
from taskflow.core.security import create_access_token
from taskflow.deps import get_db_session, get_notification_dispatcher
from taskflow.main import create_app
from taskflow.models import User
from taskflow.services import NotificationDispatcher

if TYPE_CHECKING:
    from conftest import RecordingEnqueue

pytestmark = pytest.mark.asyncio


@pytest.fixture()
def app(session: AsyncSession, dispatcher: NotificationDispatcher) -> FastAPI:
    application = create_app()

    async def _override_db_session() -> AsyncIterator[AsyncSession]:
        yield session

    application.dependency_overrides[get_db_session] = _override_db_session
    application.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


def auth(user: User, **token_kwargs: Any) -> dict[str, str]:
    token = create_access_token(subject=user.id, settings=get_settings(), **token_kwargs)
    return {"Authorization": f"Bearer {token}"}


async def test_health_and_metadata(client: AsyncClient) -> None:
    health = await client.get("/healthz")
    metadata = await client.get("/api/metadata")

    assert health.status_code == status.HTTP_200_OK
    assert health.json() == {"status": "ok"}
    assert metadata.json()["api_prefix"] == "/api"
    assert metadata.json()["environment"] == "test"


async def test_missing_token_is_unauthenticated(client: AsyncClient) -> None:
    response = await client.get("/api/tasks")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["code"] == "unauthenticated"
    assert response.headers["WWW-Authenticate"] == "Bearer"


async def test_expired_or_foreign_tokens_are_rejected(client: AsyncClient, member: User) -> None:
    expired = await client.get("/api/tasks", headers=auth(member, expires_delta=timedelta(minutes=-1)))
    garbage = await client.get("/api/tasks", headers={"Authorization": "Bearer not-a-jwt"})
    ghost = User(id=404, email="ghost@example.com", first_name="G", last_name="Host")
    unknown = await client.get("/api/tasks", headers=auth(ghost))

    assert [expired.status_code, garbage.status_code, unknown.status_code] == [401, 401, 401]


async def test_request_id_is_echoed(client: AsyncClient) -> None:
    response = await client.get("/healthz", headers={"X-Request-ID": "req-from-client"})

    assert response.headers["X-Request-ID"] == "req-from-client"


async def test_assignment_and_completion_flow(
    client: AsyncClient,
    manager: User,
    member: User,
    other_member: User,
    recorded_events: RecordingEnqueue,
) -> None:
    created = await client.post(
        "/api/tasks",
        json={"title": "Prepare release notes", "priority": "high", "due_date": "2030-01-01T09:00:00Z"},
        headers=auth(manager),
    )
    assert created.status_code == status.HTTP_201_CREATED
    task = created.json()
    assert task["status"] == "pending"
    assert task["priority"] == "high"
    assert task["creator_id"] == manager.id
    assert task["overdue"] is False

    assigned = await client.post(
        f"/api/tasks/{task['id']}/assign",
        json={"assignee_id": member.id},
        headers=auth(manager),
    )
    assert assigned.status_code == status.HTTP_200_OK
    assert assigned.json()["assignee_id"] == member.id

    visible = await client.get(f"/api/tasks/{task['id']}", headers=auth(member))
    hidden = await client.get(f"/api/tasks/{task['id']}", headers=auth(other_member))
    assert visible.status_code == status.HTTP_200_OK
    assert hidden.status_code == status.HTTP_403_FORBIDDEN
    assert hidden.json()["code"] == "unauthorized"

    completed = await client.post(f"/api/tasks/{task['id']}/complete", headers=auth(member))
    assert completed.status_code == status.HTTP_200_OK
    assert completed.json()["status"] == "completed"
    assert completed.json()["completed_at"] is not None

    again = await client.post(f"/api/tasks/{task['id']}/complete", headers=auth(member))
    assert again.status_code == status.HTTP_409_CONFLICT
    assert again.json()["code"] == "already_completed"

    assert recorded_events.calls == [(task["id"], "assigned"), (task["id"], "completed")]


async def test_member_cannot_assign(client: AsyncClient, member: User, other_member: User) -> None:
    created = await client.post("/api/tasks", json={"title": "Mine"}, headers=auth(member))

    response = await client.post(
        f"/api/tasks/{created.json()['id']}/assign",
        json={"assignee_id": other_member.id},
        headers=auth(member),
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["details"]["action"] == "taskaction.assign"


async def test_assigning_unknown_user_is_not_found(client: AsyncClient, admin: User) -> None:
    created = await client.post("/api/tasks", json={"title": "Orphan"}, headers=auth(admin))

    response = await client.post(
        f"/api/tasks/{created.json()['id']}/assign",
        json={"assignee_id": 9999},
        headers=auth(admin),
    )

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["code"] == "assignee_not_found"


async def test_invalid_task_input_reports_field_errors(client: AsyncClient, member: User) -> None:
    blank = await client.post("/api/tasks", json={"title": "  ", "priority": "critical"}, headers=auth(member))
    unknown_field = await client.post("/api/tasks", json={"title": "x", "colour": "red"}, headers=auth(member))

    assert blank.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert blank.json()["code"] == "invalid_input"
    assert set(blank.json()["details"]["errors"]) == {"title", "priority"}
    assert unknown_field.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert unknown_field.json()["code"] == "validation_error"


async def test_update_by_non_creator_member_is_forbidden(
    client: AsyncClient,
    admin: User,
    member: User,
) -> None:
    created = await client.post(
        "/api/tasks",
        json={"title": "Admin task", "assignee_id": member.id},
        headers=auth(admin),
    )

    response = await client.patch(
        f"/api/tasks/{created.json()['id']}",
        json={"title": "Renamed"},
        headers=auth(member),
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN


async def test_list_filters_and_pagination(client: AsyncClient, member: User) -> None:
    for index in range(3):
        await client.post("/api/tasks", json={"title": f"Task {index}", "status": "pending"}, headers=auth(member))
    await client.post("/api/tasks", json={"title": "Started", "status": "in_progress"}, headers=auth(member))

    page = await client.get("/api/tasks", params={"status": "pending", "limit": 2}, headers=auth(member))
    bad_filter = await client.get("/api/tasks", params={"priority": "critical"}, headers=auth(member))

    body = page.json()
    assert body["total"] == 3
    assert body["limit"] == 2
    assert len(body["items"]) == 2
    assert bad_filter.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert bad_filter.json()["details"]["errors"] == {"priority": ["is not included in the list"]}


async def test_dashboard_and_overdue(client: AsyncClient, member: User) -> None:
    await client.post(
        "/api/tasks",
        json={"title": "Late", "due_date": "2020-01-01T00:00:00Z", "assignee_id": member.id},
        headers=auth(member),
    )

    overdue = await client.get("/api/tasks/overdue", headers=auth(member))
    dashboard = await client.get("/api/tasks/dashboard", headers=auth(member))

    assert [task["title"] for task in overdue.json()] == ["Late"]
    assert overdue.json()[0]["overdue"] is True
    body = dashboard.json()
    assert body["total"] == 1
    assert body["overdue_count"] == 1
    assert body["total_by_status"]["pending"] == 1
    assert [task["title"] for task in body["assigned_incomplete"]] == ["Late"]


async def test_only_admin_deletes_tasks(client: AsyncClient, admin: User, manager: User) -> None:
    created = await client.post("/api/tasks", json={"title": "Temporary"}, headers=auth(manager))
    task_id = created.json()["id"]

    denied = await client.delete(f"/api/tasks/{task_id}", headers=auth(manager))
    deleted = await client.delete(f"/api/tasks/{task_id}", headers=auth(admin))
    missing = await client.get(f"/api/tasks/{task_id}", headers=auth(admin))

    assert denied.status_code == status.HTTP_403_FORBIDDEN
    assert deleted.status_code == status.HTTP_204_NO_CONTENT
    assert missing.status_code == status.HTTP_404_NOT_FOUND
    assert missing.json()["code"] == "not_found"


async def test_comment_routes(client: AsyncClient, admin: User, member: User) -> None:
    created = await client.post("/api/tasks", json={"title": "Discuss", "assignee_id": member.id}, headers=auth(admin))
    task_id = created.json()["id"]

    posted = await client.post(f"/api/tasks/{task_id}/comments", json={"content": "On it"}, headers=auth(member))
    listed = await client.get(f"/api/tasks/{task_id}/comments", headers=auth(admin))
    deleted = await client.delete(f"/api/tasks/{task_id}/comments/{posted.json()['id']}", headers=auth(member))
    after = await client.get(f"/api/tasks/{task_id}/comments", headers=auth(admin))

    assert posted.status_code == status.HTTP_201_CREATED
    assert posted.json()["user_id"] == member.id
    assert [comment["content"] for comment in listed.json()] == ["On it"]
    assert deleted.status_code == status.HTTP_204_NO_CONTENT
    assert after.json() == []


async def test_user_routes(client: AsyncClient, admin: User, member: User) -> None:
    me = await client.get("/api/users/me", headers=auth(member))
    listing_as_member = await client.get("/api/users", headers=auth(member))
    created = await client.post(
        "/api/users",
        json={"email": "new@example.com", "first_name": "New", "last_name": "Hire"},
        headers=auth(admin),
    )
    promoted = await client.patch(
        f"/api/users/{created.json()['id']}",
        json={"role": "manager"},
        headers=auth(admin),
    )

    assert me.json()["email"] == member.email
    assert me.json()["full_name"] == "Mia Member"
    assert listing_as_member.status_code == status.HTTP_403_FORBIDDEN
    assert created.status_code == status.HTTP_201_CREATED
    assert created.json()["role"] == "member"
    assert promoted.json()["role"] == "manager"


async def test_export_is_queued(client: AsyncClient, member: User, fake_redis: FakeRedis) -> None:
    response = await client.post("/api/tasks/export", headers=auth(member))

    assert response.status_code == status.HTTP_202_ACCEPTED
    body = response.json()
    assert body["status"] == "queued"
    assert body["job_id"].startswith(f"data-export:{member.id}:")


async def test_export_reports_queue_outage(
    client: AsyncClient,
    member: User,
    fake_redis: FakeRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_enqueue(*args: Any, **kwargs: Any) -> None:
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr("rq.Queue.enqueue", broken_enqueue)

    response = await client.post("/api/tasks/export", headers=auth(member))

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["code"] == "service_unavailable"


async def test_metrics_endpoint_exposes_job_counters(client: AsyncClient, admin: User) -> None:
    await client.post("/api/tasks", json={"title": "Counted"}, headers=auth(admin))

    response = await client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"].startswith("text/plain")
    assert "taskflow_jobs_enqueued_total 0.0" in response.text
    assert "taskflow_notifications_sent_total" in response.text


async def test_responses_report_timing_and_query_count(client: AsyncClient, member: User) -> None:
    health = await client.get("/healthz")
    listing = await client.get("/api/tasks", headers=auth(member))

    assert health.headers["X-Query-Count"] == "0"
    assert health.headers["X-Response-Time"].endswith("ms")
    assert float(listing.headers["X-Response-Time"].removesuffix("ms")) >= 0
    assert int(listing.headers["X-Query-Count"]) >= 2
