"""Transport adapters for the widget and agent channels."""

from __future__ import annotations

from ..config import Settings
from .base import REPLY_CALLBACK_PREFIX, BotAdapter, DisabledBotAdapter
from .realtime import RealtimeHub
from .telegram import TelegramBotAdapter


def build_bot_adapter(settings: Settings) -> BotAdapter:
    """Return the configured bot adapter, or a no-op one when disabled."""
    if not settings.bot_enabled:
        return DisabledBotAdapter()
    return TelegramBotAdapter.from_settings(settings)


__all__ = [
    "BotAdapter",
    "DisabledBotAdapter",
    "REPLY_CALLBACK_PREFIX",
    "RealtimeHub",
    "TelegramBotAdapter",
    "build_bot_adapter",
]
