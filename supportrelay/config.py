"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

DEFAULT_WAITING_NOTICE = "We will respond soon. Please wait."
DEFAULT_GUIDANCE_TEXT = (
    "👋 Welcome! Please use our website chat for support, "
    "or ask your administrator to register you as an agent."
)

_BOT_MODES = {"polling", "webhook", "disabled"}


@dataclasses.dataclass(frozen=True)
class Settings:
    """Settings shared by the relay engine, the adapters and the routers."""

    database_url: str | None
    jwt_secret: str
    chat_token_ttl_seconds: int = 60 * 60 * 24
    admin_token_ttl_seconds: int = 60 * 60 * 24 * 7
    telegram_bot_token: str | None = None
    telegram_mode: str = "disabled"
    telegram_webhook_url: str | None = None
    telegram_webhook_secret: str | None = None
    telegram_api_base: str = "https://api.telegram.org"
    telegram_poll_timeout: int = 30
    telegram_http_timeout: float = 40.0
    allowed_origins: tuple[str, ...] = ()
    waiting_notice: str = DEFAULT_WAITING_NOTICE
    guidance_text: str = DEFAULT_GUIDANCE_TEXT
    chat_rate_limit: str = "30/minute"

    @property
    def bot_enabled(self) -> bool:
        return bool(self.telegram_bot_token) and self.telegram_mode != "disabled"


def _split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment with development defaults."""

    token = os.getenv("TELEGRAM_BOT_TOKEN") or None
    mode = os.getenv("TELEGRAM_MODE", "polling" if token else "disabled").lower()
    if mode not in _BOT_MODES:
        raise RuntimeError(
            f"TELEGRAM_MODE must be one of {sorted(_BOT_MODES)}, got '{mode}'."
        )
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        jwt_secret=os.getenv("JWT_SECRET", "default-secret-change-me"),
        chat_token_ttl_seconds=int(os.getenv("CHAT_TOKEN_TTL_SECONDS", str(60 * 60 * 24))),
        admin_token_ttl_seconds=int(
            os.getenv("ADMIN_TOKEN_TTL_SECONDS", str(60 * 60 * 24 * 7))
        ),
        telegram_bot_token=token,
        telegram_mode=mode,
        telegram_webhook_url=os.getenv("TELEGRAM_WEBHOOK_URL") or None,
        telegram_webhook_secret=os.getenv("TELEGRAM_WEBHOOK_SECRET") or None,
        telegram_api_base=os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org"),
        telegram_poll_timeout=int(os.getenv("TELEGRAM_POLL_TIMEOUT", "30")),
        telegram_http_timeout=float(os.getenv("TELEGRAM_HTTP_TIMEOUT", "40")),
        allowed_origins=_split_csv(os.getenv("ALLOWED_ORIGINS")),
        waiting_notice=os.getenv("WAITING_NOTICE", DEFAULT_WAITING_NOTICE),
        guidance_text=os.getenv("GUIDANCE_TEXT", DEFAULT_GUIDANCE_TEXT),
        chat_rate_limit=os.getenv("CHAT_RATE_LIMIT", "30/minute"),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
