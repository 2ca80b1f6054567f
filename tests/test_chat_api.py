import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from supportrelay.config import DEFAULT_WAITING_NOTICE
from supportrelay.security import create_admin_token, create_chat_token, decode_chat_token


@pytest.fixture
def billing(store):
    return store.add_category("Billing")


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def _start(client, category_id, username="alice"):
    response = client.post(
        "/api/v1/chat/start",
        json={
            "category_id": category_id,
            "username": username,
            "site_origin": "https://shop.example",
            "device_hash": "dev-1",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_health_and_version(client, bot):
    assert client.get("/api/health").json() == {"status": "ok", "relay": True}
    assert "version" in client.get("/api/version").json()
    assert bot.started is True


def test_categories_lists_active_only(client, store, billing):
    store.add_category("Sales")
    hidden = store.add_category("Legacy")
    store._categories[hidden.id] = hidden.model_copy(update={"is_active": False})

    titles = [c["title"] for c in client.get("/api/v1/categories").json()["categories"]]

    assert titles == ["Billing", "Sales"]


def test_start_chat_assigns_agent_and_issues_token(client, store, billing):
    agent = store.add_agent("Ann", "tg-ann")

    body = _start(client, billing.id)

    assert body["agent_status"] == "assigned"
    assert body["message"] == "Agent assigned"
    claims = decode_chat_token(body["ws_token"])
    assert claims["thread_id"] == body["thread_id"]
    assert claims["username"] == "alice"
    thread = client.get(f"/api/v1/chat/{body['thread_id']}").json()["thread"]
    assert thread["assigned_agent_id"] == agent.id


def test_start_chat_without_agents(client, billing):
    body = _start(client, billing.id)
    assert body["agent_status"] == "no_agents"

    token = body["ws_token"]
    messages = client.get(
        f"/api/v1/chat/{body['thread_id']}/messages", headers=_auth(token)
    ).json()["messages"]
    assert [m["content"] for m in messages] == [DEFAULT_WAITING_NOTICE]


def test_start_chat_validation_errors(client, billing):
    missing = client.post("/api/v1/chat/start", json={"username": "alice"})
    assert missing.status_code == 400

    unknown = client.post(
        "/api/v1/chat/start", json={"category_id": "nope", "username": "alice"}
    )
    assert unknown.status_code == 404

    guest = client.post("/api/v1/chat/start", json={"category_id": billing.id})
    assert guest.status_code == 400


def test_start_chat_with_host_profile(client, billing):
    response = client.post(
        "/api/v1/chat/start",
        json={
            "category_id": billing.id,
            "site_origin": "https://shop.example",
            "user": {"id": "u-42", "name": "Bob Buyer", "email": "bob@example.com"},
        },
    )
    assert response.status_code == 201
    assert decode_chat_token(response.json()["ws_token"])["username"] == "Bob Buyer"


def test_send_message_relays_to_agent(client, store, bot, billing):
    agent = store.add_agent("Ann", "tg-ann")
    body = _start(client, billing.id)

    response = client.post(
        f"/api/v1/chat/{body['thread_id']}/message", json={"content": "Invoice missing"}
    )

    assert response.status_code == 201
    message = response.json()["message"]
    assert message["sender_type"] == "customer"
    assert message["content"] == "Invoice missing"
    assert bot.sent[-1]["channel_id"] == agent.channel_user_id
    assert bot.sent[-1]["text"].endswith("\n\nInvoice missing")


def test_send_message_errors(client, billing):
    body = _start(client, billing.id)
    thread_url = f"/api/v1/chat/{body['thread_id']}"

    assert client.post(f"{thread_url}/message", json={}).status_code == 400
    assert client.post("/api/v1/chat/missing/message", json={"content": "x"}).status_code == 404
    assert (
        client.post(f"{thread_url}/message", json={"content": "x", "media_type": "gif"}).status_code
        == 422
    )

    closed = client.post(f"{thread_url}/close")
    assert closed.status_code == 200
    assert closed.json()["success"] is True
    assert closed.json()["thread"]["status"] == "closed"

    late = client.post(f"{thread_url}/message", json={"content": "hello?"})
    assert late.status_code == 409


def test_close_twice_is_harmless(client, store, billing):
    agent = store.add_agent("Ann", "tg-ann", handled_threads=1)
    body = _start(client, billing.id)
    url = f"/api/v1/chat/{body['thread_id']}/close"

    assert client.post(url).status_code == 200
    assert client.post(url).status_code == 200
    assert store._agents[agent.id].handled_threads == 1
    assert client.post("/api/v1/chat/missing/close").status_code == 404


def test_messages_require_thread_token(client, billing):
    first = _start(client, billing.id, username="alice")
    second = _start(client, billing.id, username="bob")
    url = f"/api/v1/chat/{first['thread_id']}/messages"

    assert client.get(url).status_code == 401
    assert client.get(url, headers=_auth("garbage")).status_code == 401
    assert client.get(url, headers=_auth(second["ws_token"])).status_code == 403

    ok = client.get(url, headers=_auth(first["ws_token"]), params={"limit": 1})
    assert ok.status_code == 200
    assert len(ok.json()["messages"]) == 1

    bad_limit = client.get(url, headers=_auth(first["ws_token"]), params={"limit": 0})
    assert bad_limit.status_code == 422


def test_websocket_requires_token(client):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws?token=invalid"):
            pass
    assert excinfo.value.code == 1008


def test_websocket_receives_thread_events(client, billing):
    body = _start(client, billing.id)
    thread_id = body["thread_id"]

    with client.websocket_connect(f"/ws?token={body['ws_token']}") as ws:
        ws.send_json({"event": "join:thread", "data": thread_id})
        assert ws.receive_json() == {"event": "joined", "data": {"threadId": thread_id}}

        client.post(f"/api/v1/chat/{thread_id}/message", json={"content": "ping"})
        frame = ws.receive_json()
        assert frame["event"] == "message:new"
        assert frame["data"]["message"]["content"] == "ping"

        client.post(f"/api/v1/chat/{thread_id}/close")
        assert ws.receive_json() == {
            "event": "chat:closed",
            "data": {"message": "Chat closed"},
        }


def test_websocket_chat_token_is_bound_to_its_thread(client, billing):
    mine = _start(client, billing.id, username="alice")
    other = _start(client, billing.id, username="bob")

    with client.websocket_connect(f"/ws?token={mine['ws_token']}") as ws:
        ws.send_json({"event": "join:thread", "data": {"threadId": other["thread_id"]}})
        assert ws.receive_json() == {
            "event": "error",
            "data": {"detail": "Access denied to this thread"},
        }


def test_websocket_typing_is_relayed_to_other_members(client, billing):
    body = _start(client, billing.id)
    thread_id = body["thread_id"]
    admin_token, _ = create_admin_token("admin-1", "ops@example.com")

    with client.websocket_connect(f"/ws?token={body['ws_token']}") as customer:
        with client.websocket_connect(f"/ws?token={admin_token}") as watcher:
            for ws in (customer, watcher):
                ws.send_json({"event": "join:thread", "data": thread_id})
                assert ws.receive_json()["event"] == "joined"

            customer.send_json({"event": "typing:start", "data": {"threadId": thread_id}})
            frame = watcher.receive_json()

    assert frame == {
        "event": "typing:start",
        "data": {"threadId": thread_id, "userId": decode_chat_token(body["ws_token"])["sub"]},
    }


def test_token_for_unknown_thread_still_connects(client):
    token = create_chat_token("cust-1", "thread-1", "alice")
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_json({"event": "unknown", "data": "thread-1"})
        assert ws.receive_json()["data"]["detail"] == "Unknown event: unknown"
