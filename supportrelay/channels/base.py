"""Base abstractions for the agent-facing bot channel."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from ..routing.models import BotEvent

logger = logging.getLogger(__name__)

#: Callback data prefix of the inline "Reply" button attached to relayed messages.
REPLY_CALLBACK_PREFIX = "reply:"

BotEventHandler = Callable[[BotEvent], Awaitable[Any]]


class BotAdapter(ABC):
    """Abstract base class encapsulating bot-platform behaviour.

    Send methods report delivery with a boolean and never raise, so a failing
    bot platform cannot block the web channel fan-out.
    """

    #: Lowercase channel identifier used in routes and configuration.
    channel_name: str

    @abstractmethod
    async def send_text(
        self, channel_id: str, text: str, *, reply_thread_id: str | None = None
    ) -> bool:
        """Send ``text`` to ``channel_id``.

        When ``reply_thread_id`` is given the message carries a reply button
        referencing that thread.
        """

    @abstractmethod
    async def send_media(
        self,
        channel_id: str,
        media_url: str,
        media_type: str,
        caption: str | None = None,
    ) -> bool:
        """Send a media reference with an optional caption."""

    async def answer_callback(self, callback_id: str, text: str | None = None) -> bool:
        return True

    async def resolve_media_url(self, file_id: str) -> str | None:
        """Turn a platform file reference into a downloadable URL."""

        return None

    def parse_update(self, payload: Mapping[str, Any]) -> BotEvent | None:
        """Convert a raw platform update into a bot event, if it is one."""

        return None

    def verify_secret(self, headers: Mapping[str, str]) -> bool:
        """Validate authenticity of a webhook delivery.

        Adapters can override this to implement secret checks. The default
        implementation returns ``True``.
        """

        return True

    async def start(self, handler: BotEventHandler) -> None:
        """Begin receiving updates; webhook deliveries bypass this."""

    async def stop(self) -> None:
        """Release network resources."""


class DisabledBotAdapter(BotAdapter):
    """Adapter used when no bot token is configured; every send is a no-op."""

    channel_name = "disabled"

    async def send_text(
        self, channel_id: str, text: str, *, reply_thread_id: str | None = None
    ) -> bool:
        logger.debug("Bot channel disabled; dropping message to %s", channel_id)
        return False

    async def send_media(
        self,
        channel_id: str,
        media_url: str,
        media_type: str,
        caption: str | None = None,
    ) -> bool:
        logger.debug("Bot channel disabled; dropping media to %s", channel_id)
        return False


__all__ = [
    "BotAdapter",
    "BotEventHandler",
    "DisabledBotAdapter",
    "REPLY_CALLBACK_PREFIX",
]
