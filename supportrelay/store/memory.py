"""In-memory state store used by tests and local demos."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from .. import schemas
from ..routing.models import CustomerIdentity
from .base import StateStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStateStore(StateStore):
    """Dictionary-backed :class:`StateStore`.

    Every method completes without awaiting, so each call is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._customers: Dict[str, schemas.Customer] = {}
        self._categories: Dict[str, schemas.Category] = {}
        self._agents: Dict[str, schemas.Agent] = {}
        self._threads: Dict[str, schemas.Thread] = {}
        self._messages: Dict[str, List[schemas.Message]] = {}
        self.analytics: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.activity: List[Dict[str, Any]] = []

    # Seeding helpers ---------------------------------------------------------
    def add_category(self, title: str, category_id: Optional[str] = None) -> schemas.Category:
        category = schemas.Category(id=category_id or str(uuid4()), title=title)
        self._categories[category.id] = category
        return category

    def add_agent(
        self,
        name: str,
        channel_user_id: str,
        *,
        is_online: bool = True,
        handled_threads: int = 0,
        agent_id: Optional[str] = None,
    ) -> schemas.Agent:
        agent = schemas.Agent(
            id=agent_id or str(uuid4()),
            channel_user_id=channel_user_id,
            name=name,
            is_online=is_online,
            handled_threads=handled_threads,
            created_at=_utcnow(),
        )
        self._agents[agent.id] = agent
        return agent

    def add_thread(self, thread: schemas.Thread) -> schemas.Thread:
        self._threads[thread.id] = thread
        self._messages.setdefault(thread.id, [])
        return thread

    # Customers and categories ------------------------------------------------
    async def find_customer(
        self,
        *,
        site_origin: str,
        external_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Optional[schemas.Customer]:
        for customer in self._customers.values():
            if customer.site_origin != site_origin:
                continue
            if external_id is not None:
                if customer.external_id == external_id:
                    return customer.model_copy()
            elif customer.external_id is None and customer.username == username:
                return customer.model_copy()
        return None

    async def create_customer(self, identity: CustomerIdentity) -> schemas.Customer:
        now = _utcnow()
        customer = schemas.Customer(
            id=str(uuid4()),
            username=identity.username,
            full_name=identity.full_name,
            email=identity.email,
            site_origin=identity.site_origin,
            device_hash=identity.device_hash,
            external_id=identity.external_id,
            metadata=identity.metadata or {},
            created_at=now,
            last_seen_at=now,
        )
        self._customers[customer.id] = customer
        return customer.model_copy()

    async def refresh_customer(
        self, customer_id: str, identity: CustomerIdentity
    ) -> schemas.Customer:
        current = self._customers[customer_id]
        updated = current.model_copy(
            update={
                "username": identity.username or current.username,
                "full_name": identity.full_name,
                "email": identity.email,
                "metadata": identity.metadata or {},
                "device_hash": identity.device_hash,
                "last_seen_at": _utcnow(),
            }
        )
        self._customers[customer_id] = updated
        return updated.model_copy()

    async def get_customer(self, customer_id: str) -> Optional[schemas.Customer]:
        customer = self._customers.get(customer_id)
        return customer.model_copy() if customer else None

    async def get_category(self, category_id: str) -> Optional[schemas.Category]:
        category = self._categories.get(category_id)
        return category.model_copy() if category else None

    async def list_categories(self, active_only: bool = True) -> List[schemas.Category]:
        categories = [c for c in self._categories.values() if c.is_active or not active_only]
        categories.sort(key=lambda c: (c.sort_order, c.title))
        return [c.model_copy() for c in categories]

    async def create_category(self, payload: schemas.CategoryCreate) -> schemas.Category:
        category = schemas.Category(id=str(uuid4()), **payload.model_dump())
        self._categories[category.id] = category
        return category.model_copy()

    async def record_contact(self, customer_id: str, category_id: str) -> None:
        entry = self.analytics.setdefault(
            (customer_id, category_id), {"contact_count": 0, "last_contacted_at": None}
        )
        entry["contact_count"] += 1
        entry["last_contacted_at"] = _utcnow()

    # Threads -----------------------------------------------------------------
    async def get_thread(self, thread_id: str) -> Optional[schemas.Thread]:
        thread = self._threads.get(thread_id)
        return thread.model_copy() if thread else None

    async def find_open_thread(
        self, customer_id: str, category_id: str
    ) -> Optional[schemas.Thread]:
        matches = [
            t
            for t in self._threads.values()
            if t.customer_id == customer_id
            and t.category_id == category_id
            and t.status == "open"
        ]
        if not matches:
            return None
        return max(matches, key=lambda t: t.created_at).model_copy()

    async def create_thread(
        self, customer_id: str, category_id: str, channel: str = "website"
    ) -> schemas.Thread:
        now = _utcnow()
        thread = schemas.Thread(
            id=str(uuid4()),
            customer_id=customer_id,
            category_id=category_id,
            channel=channel,
            created_at=now,
            updated_at=now,
        )
        self.add_thread(thread)
        return thread.model_copy()

    async def assign_thread(self, thread_id: str, agent_id: str) -> schemas.Thread:
        thread = self._threads[thread_id]
        updated = thread.model_copy(
            update={"assigned_agent_id": agent_id, "updated_at": _utcnow()}
        )
        self._threads[thread_id] = updated
        return updated.model_copy()

    async def touch_thread(self, thread_id: str) -> None:
        thread = self._threads.get(thread_id)
        if thread is not None:
            self._threads[thread_id] = thread.model_copy(update={"updated_at": _utcnow()})

    async def close_thread(self, thread_id: str) -> Optional[schemas.Thread]:
        thread = self._threads.get(thread_id)
        if thread is None or thread.status != "open":
            return None
        updated = thread.model_copy(update={"status": "closed", "updated_at": _utcnow()})
        self._threads[thread_id] = updated
        return updated.model_copy()

    async def find_open_threads_by_prefix(
        self, prefix: str, limit: int = 2
    ) -> List[schemas.Thread]:
        prefix = prefix.lower()
        matches = [
            t.model_copy()
            for t in self._threads.values()
            if t.status == "open" and t.id.lower().startswith(prefix)
        ]
        return matches[:limit]

    async def latest_open_thread_for_agent(
        self, agent_id: str
    ) -> Optional[schemas.Thread]:
        matches = [
            t
            for t in self._threads.values()
            if t.assigned_agent_id == agent_id and t.status == "open"
        ]
        if not matches:
            return None
        return max(matches, key=lambda t: t.updated_at).model_copy()

    # Agents ------------------------------------------------------------------
    async def list_agents(self) -> List[schemas.Agent]:
        agents = sorted(self._agents.values(), key=lambda a: a.created_at, reverse=True)
        return [a.model_copy() for a in agents]

    async def list_online_agents(self) -> List[schemas.Agent]:
        online = [a for a in self._agents.values() if a.is_online]
        online.sort(key=lambda a: (a.handled_threads, a.created_at))
        return [a.model_copy() for a in online]

    async def get_agent(self, agent_id: str) -> Optional[schemas.Agent]:
        agent = self._agents.get(agent_id)
        return agent.model_copy() if agent else None

    async def get_agent_by_channel(
        self, channel_user_id: str
    ) -> Optional[schemas.Agent]:
        for agent in self._agents.values():
            if agent.channel_user_id == channel_user_id:
                return agent.model_copy()
        return None

    async def create_agent(self, payload: schemas.AgentCreate) -> schemas.Agent:
        agent = self.add_agent(payload.name, payload.channel_user_id, is_online=False)
        if payload.email:
            agent = agent.model_copy(update={"email": payload.email})
            self._agents[agent.id] = agent
        return agent.model_copy()

    async def set_agent_online(
        self, agent_id: str, is_online: bool
    ) -> Optional[schemas.Agent]:
        agent = self._agents.get(agent_id)
        if agent is None:
            return None
        updated = agent.model_copy(update={"is_online": is_online})
        self._agents[agent_id] = updated
        return updated.model_copy()

    async def adjust_agent_load(
        self, agent_id: str, delta: int
    ) -> Optional[schemas.Agent]:
        agent = self._agents.get(agent_id)
        if agent is None:
            return None
        updated = agent.model_copy(
            update={"handled_threads": max(agent.handled_threads + delta, 0)}
        )
        self._agents[agent_id] = updated
        return updated.model_copy()

    async def record_response_time(self, agent_id: str, elapsed_ms: int) -> None:
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        current = agent.avg_response_time_ms
        average = elapsed_ms if current is None else round(current * 0.8 + elapsed_ms * 0.2)
        self._agents[agent_id] = agent.model_copy(update={"avg_response_time_ms": average})

    async def agent_workload(self) -> List[schemas.AgentWorkload]:
        rows = []
        for agent in sorted(self._agents.values(), key=lambda a: a.name):
            active = sum(
                1
                for t in self._threads.values()
                if t.assigned_agent_id == agent.id and t.status == "open"
            )
            rows.append(
                schemas.AgentWorkload(
                    id=agent.id,
                    name=agent.name,
                    is_online=agent.is_online,
                    total_handled=agent.handled_threads,
                    active_threads=active,
                )
            )
        return rows

    async def log_activity(
        self, agent_id: str, event_type: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        self.activity.append(
            {
                "agent_id": agent_id,
                "event_type": event_type,
                "details": details or {},
                "created_at": _utcnow(),
            }
        )

    # Messages ----------------------------------------------------------------
    async def insert_message(
        self,
        thread_id: str,
        sender_type: str,
        *,
        sender_id: Optional[str] = None,
        content: Optional[str] = None,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> schemas.Message:
        message = schemas.Message(
            id=str(uuid4()),
            thread_id=thread_id,
            sender_type=sender_type,
            sender_id=sender_id,
            content=content,
            media_url=media_url,
            media_type=media_type,
            created_at=_utcnow(),
        )
        self._messages.setdefault(thread_id, []).append(message)
        return message.model_copy()

    async def list_messages(
        self, thread_id: str, limit: int = 50, offset: int = 0
    ) -> List[schemas.Message]:
        messages = self._messages.get(thread_id, [])
        return [m.model_copy() for m in messages[offset : offset + limit]]

    async def last_message_at(
        self, thread_id: str, sender_type: str
    ) -> Optional[datetime]:
        for message in reversed(self._messages.get(thread_id, [])):
            if message.sender_type == sender_type:
                return message.created_at
        return None

    async def close(self) -> None:
        return None


__all__ = ["InMemoryStateStore"]
