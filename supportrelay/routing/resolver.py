"""Recover the target thread of a free-text reply on the bot channel."""

from __future__ import annotations

import logging
import re

from ..errors import UnresolvedThreadError
from ..store.base import StateStore

logger = logging.getLogger(__name__)

HINT_PATTERN = re.compile(r"#([a-f0-9-]+)", re.IGNORECASE)
FULL_ID_LENGTH = 36
HINT_LENGTH = 8


def thread_hint(thread_id: str) -> str:
    """Short reference embedded in outbound bot text, e.g. ``#a1b2c3d4``."""

    return f"#{thread_id[:HINT_LENGTH]}"


def extract_hint(text: str | None) -> str | None:
    if not text:
        return None
    match = HINT_PATTERN.search(text)
    return match.group(1).lower() if match else None


class ThreadResolver:
    """Maps a bot reply to a thread id using ordered fallbacks.

    1. ``#<token>`` in the reply text.
    2. ``#<token>`` in the message being replied to.
    3. Full-length tokens are taken as-is. Tokens of at least hint length must
       prefix exactly one open thread; shorter ones are ignored.
    4. The sender's most recently updated open thread.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    async def resolve(
        self,
        inbound_text: str | None,
        reply_context_text: str | None,
        sender_agent_id: str,
    ) -> str:
        token = extract_hint(inbound_text) or extract_hint(reply_context_text)
        if token:
            if len(token) >= FULL_ID_LENGTH:
                return token
            if len(token) >= HINT_LENGTH:
                matches = await self._store.find_open_threads_by_prefix(token, limit=2)
                if len(matches) == 1:
                    return matches[0].id
                logger.info(
                    "Hint #%s matched %d open threads; falling back", token, len(matches)
                )
        thread = await self._store.latest_open_thread_for_agent(sender_agent_id)
        if thread is not None:
            return thread.id
        raise UnresolvedThreadError(
            f"No thread could be resolved for agent {sender_agent_id}"
        )


__all__ = [
    "FULL_ID_LENGTH",
    "HINT_LENGTH",
    "HINT_PATTERN",
    "ThreadResolver",
    "extract_hint",
    "thread_hint",
]
