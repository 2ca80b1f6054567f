import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from supportrelay.main import create_app
from supportrelay.models import AdminUser
from supportrelay.security import create_admin_token, create_chat_token, decode_admin_token

ADMIN_EMAIL = "ops@example.com"
ADMIN_PASSWORD = "correct-horse-battery"


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(client):
    response = client.post(
        "/api/v1/admin/register",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD, "name": "Ops"},
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_register_then_login(client, admin_headers, session_factory):
    second = client.post(
        "/api/v1/admin/register",
        json={"email": "other@example.com", "password": ADMIN_PASSWORD},
    )
    assert second.status_code == 403

    login = client.post(
        "/api/v1/admin/login",
        json={"email": ADMIN_EMAIL.upper(), "password": ADMIN_PASSWORD},
    )
    assert login.status_code == 200
    body = login.json()
    assert body["token_type"] == "bearer"
    assert body["admin"]["email"] == ADMIN_EMAIL
    claims = decode_admin_token(body["access_token"])
    assert claims["email"] == ADMIN_EMAIL
    assert claims["role"] == "admin"

    with session_factory() as session:
        admin = session.execute(select(AdminUser)).scalar_one()
        assert admin.last_login_at is not None
        assert admin.password_hash != ADMIN_PASSWORD


def test_login_rejects_bad_password(client, admin_headers):
    response = client.post(
        "/api/v1/admin/login", json={"email": ADMIN_EMAIL, "password": "wrong-password"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


def test_register_rejects_short_password(client):
    response = client.post(
        "/api/v1/admin/register", json={"email": ADMIN_EMAIL, "password": "short"}
    )
    assert response.status_code == 400


def test_register_without_database(settings, store, bot):
    app = create_app(settings, store=store, bot=bot)
    with TestClient(app) as client:
        response = client.post(
            "/api/v1/admin/register",
            json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        )
    assert response.status_code == 503


def test_agent_routes_require_admin_token(client, admin_headers):
    assert client.get("/api/v1/agents").status_code == 401
    chat_token = create_chat_token("cust-1", "thread-1", "alice")
    forbidden = client.get(
        "/api/v1/agents", headers={"Authorization": f"Bearer {chat_token}"}
    )
    assert forbidden.status_code == 401
    assert client.get("/api/v1/agents", headers=admin_headers).status_code == 200


def test_create_list_and_toggle_agents(client, admin_headers):
    created = client.post(
        "/api/v1/agents",
        json={"channel_user_id": "4242", "name": "Ann", "email": "ann@example.com"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    agent = created.json()["agent"]
    assert agent["is_online"] is False
    assert agent["handled_threads"] == 0

    duplicate = client.post(
        "/api/v1/agents",
        json={"channel_user_id": "4242", "name": "Ann again"},
        headers=admin_headers,
    )
    assert duplicate.status_code == 400

    toggled = client.post(f"/api/v1/agents/{agent['id']}/toggle", headers=admin_headers)
    assert toggled.json()["agent"]["is_online"] is True

    listed = client.get("/api/v1/agents", headers=admin_headers).json()["agents"]
    assert [a["channel_user_id"] for a in listed] == ["4242"]

    missing = client.post("/api/v1/agents/nope/toggle", headers=admin_headers)
    assert missing.status_code == 404


def test_workload_and_reassign(client, store, bot, admin_headers):
    category = store.add_category("Billing")
    ann = store.add_agent("Ann", "tg-ann")
    ben = store.add_agent("Ben", "tg-ben", handled_threads=4)
    thread_id = client.post(
        "/api/v1/chat/start", json={"category_id": category.id, "username": "alice"}
    ).json()["thread_id"]

    workload = client.get("/api/v1/agents/workload", headers=admin_headers).json()["agents"]
    by_name = {row["name"]: row for row in workload}
    assert by_name["Ann"]["active_threads"] == 1
    assert by_name["Ann"]["total_handled"] == 1
    assert by_name["Ben"]["active_threads"] == 0

    response = client.post(
        f"/api/v1/agents/threads/{thread_id}/reassign", headers=admin_headers
    )
    assert response.status_code == 200
    body = response.json()
    assert body["agent_status"] == "assigned"
    assert body["agent"]["id"] == ben.id
    assert store._agents[ann.id].handled_threads == 0
    assert bot.sent[-1]["channel_id"] == "tg-ben"

    again = client.post(
        f"/api/v1/agents/threads/{thread_id}/reassign", headers=admin_headers
    ).json()
    assert again["agent"]["id"] == ann.id

    client.post(f"/api/v1/chat/{thread_id}/close")
    closed = client.post(f"/api/v1/agents/threads/{thread_id}/reassign", headers=admin_headers)
    assert closed.status_code == 409


def test_admin_categories(client, admin_headers):
    assert client.get("/api/v1/admin/categories").status_code == 401

    created = client.post(
        "/api/v1/admin/categories",
        json={"title": "Returns", "description": "Refunds and exchanges", "sort_order": 2},
        headers=admin_headers,
    )
    assert created.status_code == 201
    client.post(
        "/api/v1/admin/categories",
        json={"title": "Archived", "is_active": False},
        headers=admin_headers,
    )

    everything = client.get("/api/v1/admin/categories", headers=admin_headers).json()
    assert {c["title"] for c in everything["categories"]} == {"Returns", "Archived"}
    public = client.get("/api/v1/categories").json()["categories"]
    assert [c["title"] for c in public] == ["Returns"]


def test_admin_token_for_unknown_admin_still_authorizes_agents(client):
    token, _ = create_admin_token("admin-x", "x@example.com")
    response = client.get("/api/v1/agents", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
