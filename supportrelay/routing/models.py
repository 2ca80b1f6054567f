"""Domain models exchanged between the relay coordinator and its adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from ..schemas import Agent, Customer, Message, Thread


@dataclass
class CustomerIdentity:
    """Who is starting a chat, as reported by the widget."""

    username: str | None = None
    site_origin: str = ""
    device_hash: str = ""
    external_id: str | None = None
    full_name: str | None = None
    email: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class MediaRef:
    """Media attached to a bot message, not yet resolved to a URL."""

    file_id: str
    media_type: str


@dataclass
class InboundBotMessage:
    """Uniform representation of an agent message received on the bot channel."""

    sender_channel_id: str
    text: str | None = None
    media: list[MediaRef] = field(default_factory=list)
    reply_context_text: str | None = None
    sender_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class BotCallback:
    """Inline keyboard button press on the bot channel."""

    sender_channel_id: str
    callback_id: str
    data: str
    chat_id: str | None = None


BotEvent = InboundBotMessage | BotCallback

StartStatus = Literal["assigned", "no_agents"]
RelayStatus = Literal[
    "relayed",
    "closed",
    "no_thread",
    "thread_closed",
    "unresolved",
    "unrecognized_sender",
    "ignored",
]


@dataclass
class StartThreadResult:
    thread: Thread
    status: StartStatus
    message: str
    customer: Customer | None = None
    agent: Agent | None = None


@dataclass
class AgentRelayResult:
    status: RelayStatus
    thread_id: str | None = None
    message: Message | None = None


__all__ = [
    "AgentRelayResult",
    "BotCallback",
    "BotEvent",
    "CustomerIdentity",
    "InboundBotMessage",
    "MediaRef",
    "RelayStatus",
    "StartStatus",
    "StartThreadResult",
]
