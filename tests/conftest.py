import pathlib
import sys
import uuid
from dataclasses import dataclass, field
from typing import Any

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from supportrelay.channels import BotAdapter, RealtimeHub
from supportrelay.config import Settings, reset_settings_cache
from supportrelay.models import Base
from supportrelay.rate_limit import limiter
from supportrelay.routing.coordinator import RelayCoordinator
from supportrelay.security import reset_jwt_settings_cache
from supportrelay.store import InMemoryStateStore

TEST_SECRET = "test-secret-key"


@dataclass
class RecordingBot(BotAdapter):
    """Bot adapter double that records every outbound call."""

    channel_name = "recording"

    sent: list[dict[str, Any]] = field(default_factory=list)
    callbacks: list[str] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)
    deliver: bool = True
    started: bool = False
    stopped: bool = False

    async def send_text(self, channel_id, text, *, reply_thread_id=None):
        self.sent.append(
            {"channel_id": channel_id, "text": text, "reply_thread_id": reply_thread_id}
        )
        return self.deliver

    async def send_media(self, channel_id, media_url, media_type, caption=None):
        self.sent.append(
            {
                "channel_id": channel_id,
                "media_url": media_url,
                "media_type": media_type,
                "caption": caption,
            }
        )
        return self.deliver

    async def answer_callback(self, callback_id, text=None):
        self.callbacks.append(callback_id)
        return True

    async def resolve_media_url(self, file_id):
        return self.files.get(file_id)

    async def start(self, handler):
        self.started = True

    async def stop(self):
        self.stopped = True

    def texts_to(self, channel_id: str) -> list[str]:
        return [m.get("text") or m.get("caption") for m in self.sent if m["channel_id"] == channel_id]


class RecordingHub(RealtimeHub):
    """Realtime hub that also keeps a log of published events."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[tuple[str, str, Any]] = []

    async def publish(self, thread_id, event, payload, exclude=None):
        self.events.append((thread_id, event, payload))
        return await super().publish(thread_id, event, payload, exclude=exclude)

    def names(self, thread_id: str | None = None) -> list[str]:
        return [e for t, e, _ in self.events if thread_id is None or t == thread_id]


@pytest.fixture(autouse=True)
def relay_env(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path):
    monkeypatch.setenv("JWT_SECRET", TEST_SECRET)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    reset_settings_cache()
    reset_jwt_settings_cache()
    limiter.reset()
    yield
    reset_settings_cache()
    reset_jwt_settings_cache()


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url=None, jwt_secret=TEST_SECRET)


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def bot() -> RecordingBot:
    return RecordingBot()


@pytest.fixture
def hub() -> RecordingHub:
    return RecordingHub()


@pytest.fixture
def coordinator(store, hub, bot, settings) -> RelayCoordinator:
    return RelayCoordinator(store, hub, bot, settings=settings)


@pytest.fixture
def session_factory(tmp_path_factory: pytest.TempPathFactory) -> sessionmaker[Session]:
    db_path = tmp_path_factory.mktemp("relay-admin") / "admin.db"
    engine = create_engine(f"sqlite+pysqlite:///{db_path}", future=True)

    @event.listens_for(engine, "connect")
    def _register_uuid(conn, _record) -> None:  # pragma: no cover - SQLite test helper
        conn.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))

    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def app(settings, store, bot, session_factory):
    from supportrelay.main import create_app

    return create_app(settings, store=store, bot=bot, session_factory=session_factory)
