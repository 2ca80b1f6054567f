"""Cross-channel relay orchestration."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from .. import schemas
from ..channels.base import REPLY_CALLBACK_PREFIX, BotAdapter
from ..channels.realtime import RealtimeHub
from ..config import Settings, get_settings
from ..errors import NotFoundError, ThreadClosedError, UnresolvedThreadError, ValidationError
from ..store.base import StateStore
from .models import (
    AgentRelayResult,
    BotCallback,
    BotEvent,
    CustomerIdentity,
    InboundBotMessage,
    MediaRef,
    StartThreadResult,
)
from .resolver import ThreadResolver, thread_hint
from .selector import reassign, select_agent

logger = logging.getLogger(__name__)

CLOSE_COMMAND = "/close"
ENVELOPE_RULE = "━━━━━━━━━━━━━━━"
ASSIGNED_MESSAGE = "Agent assigned"
NO_AGENTS_MESSAGE = "No agents currently online. We will respond soon."


def format_envelope(
    customer: schemas.Customer | None,
    category: schemas.Category | None,
    thread_id: str,
    body: str | None,
) -> str:
    """Wrap ``body`` in the header agents see on the bot channel."""

    sender = customer.display_name if customer else "Unknown"
    title = category.title if category else "Unknown"
    header = "\n".join(
        [
            "📩 New Message",
            ENVELOPE_RULE,
            f"👤 From: {sender}",
            f"📂 Category: {title}",
            f"🔗 Thread: {thread_hint(thread_id)}",
            ENVELOPE_RULE,
        ]
    )
    if body:
        return f"{header}\n\n{body}"
    return header


def is_close_command(text: str | None) -> bool:
    """``/close`` and the group-chat form ``/close@botname``."""

    if not text:
        return False
    normalized = text.strip().lower()
    if normalized == CLOSE_COMMAND:
        return True
    return normalized.startswith(CLOSE_COMMAND + "@") and " " not in normalized


class RelayCoordinator:
    """Routes threads to agents and mirrors messages across both channels.

    Every collaborator is injected. Store failures propagate as
    :class:`~supportrelay.errors.DependencyError`; adapter failures are
    reported by the adapters and never interrupt the other channel.
    """

    def __init__(
        self,
        store: StateStore,
        realtime: RealtimeHub,
        bot: BotAdapter,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._realtime = realtime
        self._bot = bot
        self._settings = settings or get_settings()
        self._resolver = ThreadResolver(store)

    @property
    def store(self) -> StateStore:
        return self._store

    # ------------------------------------------------------------------
    # Widget side

    async def start_thread(
        self, identity: CustomerIdentity, category_id: str | None
    ) -> StartThreadResult:
        """Find or open the customer's thread in ``category_id`` and route it."""

        if not category_id:
            raise ValidationError("category_id is required")
        if identity.external_id is None and not identity.username:
            raise ValidationError("username is required for guest users")
        category = await self._store.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")

        customer = await self._resolve_customer(identity)
        thread = await self._store.find_open_thread(customer.id, category_id)
        if thread is None:
            thread = await self._store.create_thread(customer.id, category_id)
            logger.info("Opened thread %s for customer %s", thread.id, customer.id)
        await self._store.record_contact(customer.id, category_id)

        if thread.assigned_agent_id:
            agent = await self._store.get_agent(thread.assigned_agent_id)
            return StartThreadResult(
                thread=thread,
                status="assigned",
                message=ASSIGNED_MESSAGE,
                customer=customer,
                agent=agent,
            )
        return await self._route(thread, customer)

    async def _resolve_customer(self, identity: CustomerIdentity) -> schemas.Customer:
        if identity.external_id is not None:
            existing = await self._store.find_customer(
                site_origin=identity.site_origin, external_id=identity.external_id
            )
            if existing is not None:
                return await self._store.refresh_customer(existing.id, identity)
            if not identity.username:
                identity = dataclasses.replace(
                    identity, username=identity.full_name or "Customer"
                )
            return await self._store.create_customer(identity)
        existing = await self._store.find_customer(
            site_origin=identity.site_origin, username=identity.username
        )
        if existing is not None:
            return existing
        return await self._store.create_customer(identity)

    async def _route(
        self, thread: schemas.Thread, customer: schemas.Customer | None
    ) -> StartThreadResult:
        agent = select_agent(await self._store.list_online_agents())
        if agent is None:
            notice = await self._store.insert_message(
                thread.id, "system", content=self._settings.waiting_notice
            )
            await self._realtime.publish(thread.id, "message:new", {"message": notice})
            logger.info("No agents online; thread %s is waiting", thread.id)
            return StartThreadResult(
                thread=thread,
                status="no_agents",
                message=NO_AGENTS_MESSAGE,
                customer=customer,
            )
        thread = await self._store.assign_thread(thread.id, agent.id)
        agent = await self._store.adjust_agent_load(agent.id, 1) or agent
        await self._store.log_activity(agent.id, "assigned", {"thread_id": thread.id})
        await self._announce_agent(thread.id, agent)
        logger.info(
            "Assigned thread %s to agent %s (load %d)",
            thread.id,
            agent.id,
            agent.handled_threads,
        )
        return StartThreadResult(
            thread=thread,
            status="assigned",
            message=ASSIGNED_MESSAGE,
            customer=customer,
            agent=agent,
        )

    async def relay_customer_message(
        self,
        thread_id: str,
        *,
        content: str | None = None,
        media_url: str | None = None,
        media_type: str | None = None,
        sender_id: str | None = None,
    ) -> schemas.Message:
        """Persist a widget message and mirror it to the assigned agent."""

        if not content and not media_url:
            raise ValidationError("content or media_url is required")
        thread = await self.get_thread(thread_id)
        if thread.status != "open":
            raise ThreadClosedError(f"Thread {thread_id} is closed")

        message = await self._store.insert_message(
            thread.id,
            "customer",
            sender_id=sender_id or thread.customer_id,
            content=content,
            media_url=media_url,
            media_type=media_type,
        )
        await self._store.touch_thread(thread.id)
        await self._realtime.publish(thread.id, "message:new", {"message": message})
        if thread.assigned_agent_id:
            await self._forward_to_agent(thread, message)
        return message

    async def _forward_to_agent(
        self, thread: schemas.Thread, message: schemas.Message
    ) -> bool:
        agent = await self._store.get_agent(thread.assigned_agent_id or "")
        if agent is None:
            logger.warning(
                "Thread %s is assigned to missing agent %s",
                thread.id,
                thread.assigned_agent_id,
            )
            return False
        customer = await self._store.get_customer(thread.customer_id)
        category = await self._store.get_category(thread.category_id)
        text = format_envelope(customer, category, thread.id, message.content)
        if message.media_url:
            delivered = await self._bot.send_media(
                agent.channel_user_id,
                message.media_url,
                message.media_type or "document",
                caption=text,
            )
        else:
            delivered = await self._bot.send_text(
                agent.channel_user_id, text, reply_thread_id=thread.id
            )
        if not delivered:
            logger.warning("Message %s was not delivered to agent %s", message.id, agent.id)
        return delivered

    # ------------------------------------------------------------------
    # Bot side

    async def handle_bot_event(self, event: BotEvent) -> Any:
        """Entry point shared by webhook and polling deliveries."""

        if isinstance(event, BotCallback):
            return await self.handle_reply_button(event)
        return await self.relay_agent_message(event)

    async def relay_agent_message(self, inbound: InboundBotMessage) -> AgentRelayResult:
        agent = await self._store.get_agent_by_channel(inbound.sender_channel_id)
        if agent is None:
            logger.info("Unrecognized bot sender %s", inbound.sender_channel_id)
            await self._bot.send_text(inbound.sender_channel_id, self._settings.guidance_text)
            return AgentRelayResult(status="unrecognized_sender")

        if is_close_command(inbound.text):
            return await self._close_from_bot(agent)

        try:
            thread_id = await self._resolver.resolve(
                inbound.text, inbound.reply_context_text, agent.id
            )
        except UnresolvedThreadError as exc:
            logger.warning("Dropping agent message: %s", exc)
            await self._record_unresolved(agent, inbound)
            return AgentRelayResult(status="unresolved")

        thread = await self._store.get_thread(thread_id)
        if thread is None:
            logger.warning("Agent %s referenced unknown thread %s", agent.id, thread_id)
            await self._record_unresolved(agent, inbound)
            return AgentRelayResult(status="unresolved", thread_id=thread_id)
        if thread.status != "open":
            await self._bot.send_text(
                agent.channel_user_id,
                f"⚠️ Thread {thread_hint(thread.id)} is already closed.",
            )
            return AgentRelayResult(status="thread_closed", thread_id=thread.id)

        media_url, media_type = await self._resolve_media(inbound.media)
        if not inbound.text and not media_url:
            logger.info("Ignoring empty agent message for thread %s", thread.id)
            return AgentRelayResult(status="ignored", thread_id=thread.id)

        await self._track_response_time(agent, thread, inbound)
        message = await self._store.insert_message(
            thread.id,
            "agent",
            sender_id=agent.id,
            content=inbound.text,
            media_url=media_url,
            media_type=media_type,
        )
        await self._store.touch_thread(thread.id)
        await self._store.log_activity(
            agent.id, "message_handled", {"thread_id": thread.id}
        )
        await self._realtime.publish(thread.id, "message:new", {"message": message})
        await self._announce_agent(thread.id, agent)
        return AgentRelayResult(status="relayed", thread_id=thread.id, message=message)

    async def _close_from_bot(self, agent: schemas.Agent) -> AgentRelayResult:
        thread = await self._store.latest_open_thread_for_agent(agent.id)
        if thread is None:
            await self._bot.send_text(agent.channel_user_id, "⚠️ No active chat to close.")
            return AgentRelayResult(status="no_thread")
        await self._close(thread.id, "Agent closed the chat")
        await self._bot.send_text(agent.channel_user_id, "✅ Chat closed.")
        return AgentRelayResult(status="closed", thread_id=thread.id)

    async def _record_unresolved(
        self, agent: schemas.Agent, inbound: InboundBotMessage
    ) -> None:
        await self._store.log_activity(
            agent.id,
            "message_unresolved",
            {
                "text": (inbound.text or "")[:500],
                "reply_context": (inbound.reply_context_text or "")[:500],
                "media": [ref.media_type for ref in inbound.media],
            },
        )

    async def _resolve_media(
        self, refs: list[MediaRef]
    ) -> tuple[str | None, str | None]:
        if not refs:
            return None, None
        ref = refs[0]
        url = await self._bot.resolve_media_url(ref.file_id)
        if url is None:
            logger.warning("Could not resolve %s file %s", ref.media_type, ref.file_id)
            return None, None
        return url, ref.media_type

    async def _track_response_time(
        self,
        agent: schemas.Agent,
        thread: schemas.Thread,
        inbound: InboundBotMessage,
    ) -> None:
        last_customer = await self._store.last_message_at(thread.id, "customer")
        if last_customer is None:
            return
        last_agent = await self._store.last_message_at(thread.id, "agent")
        if last_agent is not None and last_agent >= last_customer:
            return
        elapsed = inbound.sent_at - last_customer
        await self._store.record_response_time(
            agent.id, max(int(elapsed.total_seconds() * 1000), 0)
        )

    async def handle_reply_button(self, callback: BotCallback) -> bool:
        """Explain how to answer a thread after its "Reply" button was pressed."""

        if not callback.data.startswith(REPLY_CALLBACK_PREFIX):
            await self._bot.answer_callback(callback.callback_id)
            return False
        thread_id = callback.data[len(REPLY_CALLBACK_PREFIX):]
        hint = thread_hint(thread_id)
        await self._bot.send_text(
            callback.chat_id or callback.sender_channel_id,
            f"💬 To reply to thread {hint}, simply send your message.\n\n"
            f"Include {hint} in your message to specify the thread.",
        )
        await self._bot.answer_callback(callback.callback_id)
        return True

    # ------------------------------------------------------------------
    # Thread lifecycle

    async def close_thread(
        self, thread_id: str, *, reason: str = "Chat closed"
    ) -> schemas.Thread:
        await self.get_thread(thread_id)
        closed = await self._close(thread_id, reason)
        if closed is not None:
            return closed
        return await self.get_thread(thread_id)

    async def _close(self, thread_id: str, reason: str) -> schemas.Thread | None:
        closed = await self._store.close_thread(thread_id)
        if closed is None:
            logger.info("Thread %s was already closed", thread_id)
            return None
        await self._realtime.publish(thread_id, "chat:closed", {"message": reason})
        if closed.assigned_agent_id:
            await self._store.adjust_agent_load(closed.assigned_agent_id, -1)
            await self._store.log_activity(
                closed.assigned_agent_id, "thread_closed", {"thread_id": thread_id}
            )
        logger.info("Closed thread %s", thread_id)
        return closed

    async def reassign_thread(self, thread_id: str) -> StartThreadResult:
        """Move an open thread to a different online agent."""

        thread = await self.get_thread(thread_id)
        if thread.status != "open":
            raise ThreadClosedError(f"Thread {thread_id} is closed")
        previous_id = thread.assigned_agent_id
        agent = reassign(await self._store.list_online_agents(), previous_id)
        if agent is None:
            return StartThreadResult(
                thread=thread, status="no_agents", message="No other agents are online."
            )

        thread = await self._store.assign_thread(thread.id, agent.id)
        if previous_id:
            await self._store.adjust_agent_load(previous_id, -1)
            await self._store.log_activity(
                previous_id,
                "reassigned_away",
                {"thread_id": thread.id, "to_agent_id": agent.id},
            )
        agent = await self._store.adjust_agent_load(agent.id, 1) or agent
        await self._store.log_activity(agent.id, "assigned", {"thread_id": thread.id})
        await self._announce_agent(thread.id, agent)

        customer = await self._store.get_customer(thread.customer_id)
        category = await self._store.get_category(thread.category_id)
        await self._bot.send_text(
            agent.channel_user_id,
            format_envelope(
                customer, category, thread.id, "This chat was reassigned to you."
            ),
            reply_thread_id=thread.id,
        )
        logger.info("Reassigned thread %s from %s to %s", thread.id, previous_id, agent.id)
        return StartThreadResult(
            thread=thread,
            status="assigned",
            message="Agent reassigned",
            customer=customer,
            agent=agent,
        )

    async def _announce_agent(self, thread_id: str, agent: schemas.Agent) -> None:
        await self._realtime.publish(
            thread_id, "agent:assigned", {"agent": {"id": agent.id, "name": agent.name}}
        )

    # ------------------------------------------------------------------
    # Queries and administration

    async def get_thread(self, thread_id: str) -> schemas.Thread:
        thread = await self._store.get_thread(thread_id)
        if thread is None:
            raise NotFoundError(f"Thread {thread_id} not found")
        return thread

    async def list_messages(
        self, thread_id: str, limit: int = 50, offset: int = 0
    ) -> list[schemas.Message]:
        await self.get_thread(thread_id)
        return await self._store.list_messages(thread_id, limit=limit, offset=offset)

    async def register_agent(self, payload: schemas.AgentCreate) -> schemas.Agent:
        if await self._store.get_agent_by_channel(payload.channel_user_id) is not None:
            raise ValidationError(
                f"An agent with channel id {payload.channel_user_id} already exists"
            )
        agent = await self._store.create_agent(payload)
        logger.info("Registered agent %s (%s)", agent.id, agent.name)
        return agent

    async def toggle_agent(self, agent_id: str) -> schemas.Agent:
        agent = await self._store.get_agent(agent_id)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found")
        return await self.set_agent_online(agent_id, not agent.is_online)

    async def set_agent_online(self, agent_id: str, is_online: bool) -> schemas.Agent:
        agent = await self._store.set_agent_online(agent_id, is_online)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found")
        await self._store.log_activity(agent.id, "online" if is_online else "offline")
        logger.info("Agent %s is now %s", agent.id, "online" if is_online else "offline")
        return agent


__all__ = ["RelayCoordinator", "format_envelope", "is_close_command"]
