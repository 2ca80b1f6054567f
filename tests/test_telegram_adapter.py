import asyncio
import json

import httpx
import pytest

from supportrelay.channels import TelegramBotAdapter, build_bot_adapter
from supportrelay.channels import telegram as telegram_module
from supportrelay.channels.base import DisabledBotAdapter
from supportrelay.channels.telegram import ALLOWED_UPDATES, SECRET_HEADER
from supportrelay.config import Settings
from supportrelay.routing.models import BotCallback, InboundBotMessage

API = "https://tg.test"


class FakeBotApi:
    """Records Bot API calls and answers them from a per-method table."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.results: dict[str, object] = {}
        self.failing: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        payload = json.loads(request.content or b"{}")
        self.calls.append((method, payload))
        if method in self.failing:
            return httpx.Response(400, json={"ok": False, "description": "Bad Request"})
        return httpx.Response(200, json={"ok": True, "result": self.results.get(method, True)})

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]


@pytest.fixture
def api() -> FakeBotApi:
    return FakeBotApi()


def _adapter(api: FakeBotApi, **kwargs) -> TelegramBotAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api.handler))
    return TelegramBotAdapter("123:abc", api_base=API, client=client, **kwargs)


def test_send_text_attaches_reply_button(api):
    adapter = _adapter(api)
    assert asyncio.run(adapter.send_text("42", "hello", reply_thread_id="thread-1")) is True

    method, payload = api.calls[-1]
    assert method == "sendMessage"
    assert payload["chat_id"] == "42"
    assert payload["reply_markup"] == {
        "inline_keyboard": [[{"text": "↩️ Reply", "callback_data": "reply:thread-1"}]]
    }


def test_send_text_without_thread_has_no_markup(api):
    adapter = _adapter(api)
    asyncio.run(adapter.send_text("42", "plain"))
    assert "reply_markup" not in api.calls[-1][1]


def test_send_text_reports_rejection(api):
    api.failing.add("sendMessage")
    adapter = _adapter(api)
    assert asyncio.run(adapter.send_text("42", "hello")) is False


@pytest.mark.parametrize(
    "media_type,method,field",
    [
        ("image", "sendPhoto", "photo"),
        ("video", "sendVideo", "video"),
        ("voice", "sendDocument", "document"),
        ("document", "sendDocument", "document"),
    ],
)
def test_send_media_picks_method(api, media_type, method, field):
    adapter = _adapter(api)
    asyncio.run(adapter.send_media("42", "https://cdn.example/f", media_type, caption="cap"))

    called, payload = api.calls[-1]
    assert called == method
    assert payload[field] == "https://cdn.example/f"
    assert payload["caption"] == "cap"


def test_resolve_media_url_uses_file_path(api):
    api.results["getFile"] = {"file_id": "f1", "file_path": "photos/file_1.jpg"}
    adapter = _adapter(api)
    url = asyncio.run(adapter.resolve_media_url("f1"))
    assert url == f"{API}/file/bot123:abc/photos/file_1.jpg"
    assert api.calls[-1] == ("getFile", {"file_id": "f1"})


def test_resolve_media_url_failure_returns_none(api):
    api.failing.add("getFile")
    assert asyncio.run(_adapter(api).resolve_media_url("f1")) is None


def test_parse_update_message_with_photo_and_reply(api):
    adapter = _adapter(api)
    event = adapter.parse_update(
        {
            "update_id": 1,
            "message": {
                "message_id": 10,
                "date": 1700000000,
                "from": {"id": 555, "first_name": "Ann", "last_name": "Agent"},
                "chat": {"id": 555},
                "caption": "see attached",
                "photo": [{"file_id": "small"}, {"file_id": "large"}],
                "reply_to_message": {"text": "🔗 Thread: #a1b2c3d4"},
            },
        }
    )
    assert isinstance(event, InboundBotMessage)
    assert event.sender_channel_id == "555"
    assert event.text == "see attached"
    assert [(m.file_id, m.media_type) for m in event.media] == [("large", "image")]
    assert event.reply_context_text == "🔗 Thread: #a1b2c3d4"
    assert event.sender_name == "Ann Agent"
    assert event.metadata == {"message_id": 10, "chat_id": 555}


def test_parse_update_callback_and_unknown(api):
    adapter = _adapter(api)
    event = adapter.parse_update(
        {
            "callback_query": {
                "id": "cb-1",
                "from": {"id": 777},
                "data": "reply:abc",
                "message": {"chat": {"id": -100}},
            }
        }
    )
    assert event == BotCallback(
        sender_channel_id="777", callback_id="cb-1", data="reply:abc", chat_id="-100"
    )
    assert adapter.parse_update({"update_id": 3, "channel_post": {}}) is None
    assert adapter.parse_update({"message": {"text": "no sender"}}) is None


def test_verify_secret(api):
    assert _adapter(api).verify_secret({}) is True
    adapter = _adapter(api, webhook_secret="s3cret")
    assert adapter.verify_secret({SECRET_HEADER: "s3cret"}) is True
    assert adapter.verify_secret({SECRET_HEADER: "wrong"}) is False
    assert adapter.verify_secret({}) is False


def test_poll_once_advances_offset_and_dispatches(api):
    api.results["getUpdates"] = [
        {"update_id": 7, "message": {"from": {"id": 1}, "text": "hi"}},
        {"update_id": 8, "channel_post": {"text": "ignored"}},
    ]
    adapter = _adapter(api)
    seen = []

    async def handler(event):
        seen.append(event)
        raise RuntimeError("handler failure is logged, not raised")

    assert asyncio.run(adapter.poll_once(handler)) == 2
    assert [e.text for e in seen] == ["hi"]

    api.results["getUpdates"] = []
    asyncio.run(adapter.poll_once(handler))
    assert api.calls[-1][1]["offset"] == 9


def test_poll_once_raises_when_api_fails(api):
    api.failing.add("getUpdates")
    with pytest.raises(ConnectionError):
        asyncio.run(_adapter(api).poll_once(lambda event: None))


def test_start_in_webhook_mode_registers_secret(api):
    adapter = _adapter(
        api, mode="webhook", webhook_url="https://relay.example/hook", webhook_secret="s3cret"
    )

    async def noop(event):
        return None

    asyncio.run(adapter.start(noop))
    method, payload = api.calls[-1]
    assert method == "setWebhook"
    assert payload["url"] == "https://relay.example/hook"
    assert payload["secret_token"] == "s3cret"


def test_build_bot_adapter_respects_settings():
    disabled = build_bot_adapter(Settings(database_url=None, jwt_secret="x"))
    assert isinstance(disabled, DisabledBotAdapter)
    assert asyncio.run(disabled.send_text("1", "hi")) is False

    enabled = build_bot_adapter(
        Settings(
            database_url=None,
            jwt_secret="x",
            telegram_bot_token="123:abc",
            telegram_mode="webhook",
        )
    )
    assert isinstance(enabled, TelegramBotAdapter)
    assert enabled.channel_name == "telegram"


def test_edited_messages_are_not_events(api):
    adapter = _adapter(api)
    edited = {
        "update_id": 4,
        "edited_message": {
            "message_id": 10,
            "from": {"id": 555},
            "chat": {"id": 555},
            "text": "/close",
            "edit_date": 1700000060,
        },
    }
    assert adapter.parse_update(edited) is None

    api.results["getUpdates"] = []
    asyncio.run(adapter.poll_once(lambda event: None))
    assert api.calls[-1][1]["allowed_updates"] == ALLOWED_UPDATES
    assert "edited_message" not in ALLOWED_UPDATES


def test_poll_once_keeps_going_after_malformed_update(api):
    api.results["getUpdates"] = [
        {"update_id": 11, "message": {"from": {"id": 1}, "photo": [{"width": 90}]}},
        {"update_id": 12, "message": {"from": {"id": 1}, "text": "still here"}},
    ]
    adapter = _adapter(api)
    seen = []

    async def handler(event):
        seen.append(event)

    assert asyncio.run(adapter.poll_once(handler)) == 2
    assert [e.text for e in seen] == ["still here"]

    api.results["getUpdates"] = []
    asyncio.run(adapter.poll_once(handler))
    assert api.calls[-1][1]["offset"] == 13


def test_non_object_response_is_a_failed_call():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["unexpected"])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    adapter = TelegramBotAdapter("123:abc", api_base=API, client=client)

    assert asyncio.run(adapter.send_text("42", "hello")) is False
    with pytest.raises(ConnectionError):
        asyncio.run(adapter.poll_once(lambda event: None))


def test_polling_loop_survives_unexpected_errors(monkeypatch):
    monkeypatch.setattr(telegram_module, "POLL_ERROR_BACKOFF", 0)
    batches = [[{"message": {"from": {"id": 1}, "text": "no update id"}}]]
    good = [{"update_id": 5, "message": {"from": {"id": 1}, "text": "hi"}}]

    def handler(request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        result = True
        if method == "getUpdates":
            result = batches.pop(0) if batches else good
        return httpx.Response(200, json={"ok": True, "result": result})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    adapter = TelegramBotAdapter("123:abc", api_base=API, client=client)
    seen = []

    async def on_event(event):
        seen.append(event.text)
        await asyncio.sleep(0)

    async def scenario():
        await adapter.start(on_event)
        while not seen:
            await asyncio.sleep(0.01)
        await adapter.stop()

    asyncio.run(asyncio.wait_for(scenario(), timeout=5))
    assert seen[0] == "hi"
    assert batches == []
