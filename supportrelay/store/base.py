"""State store contract consumed by the relay engine."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Protocol

from .. import schemas
from ..routing.models import CustomerIdentity


class StateStore(Protocol):
    """Async persistence abstraction used by :class:`RelayCoordinator`.

    Implementations raise :class:`~supportrelay.errors.DependencyError` when the
    backing store fails. Absence is reported with ``None`` or an empty list.
    Workload counters only change through :meth:`adjust_agent_load`, which must
    be a single atomic operation floored at zero.
    """

    # Customers and categories ------------------------------------------------
    async def find_customer(
        self,
        *,
        site_origin: str,
        external_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Optional[schemas.Customer]: ...

    async def create_customer(self, identity: CustomerIdentity) -> schemas.Customer: ...

    async def refresh_customer(
        self, customer_id: str, identity: CustomerIdentity
    ) -> schemas.Customer: ...

    async def get_customer(self, customer_id: str) -> Optional[schemas.Customer]: ...

    async def get_category(self, category_id: str) -> Optional[schemas.Category]: ...

    async def list_categories(self, active_only: bool = True) -> List[schemas.Category]: ...

    async def create_category(self, payload: schemas.CategoryCreate) -> schemas.Category: ...

    async def record_contact(self, customer_id: str, category_id: str) -> None: ...

    # Threads -----------------------------------------------------------------
    async def get_thread(self, thread_id: str) -> Optional[schemas.Thread]: ...

    async def find_open_thread(
        self, customer_id: str, category_id: str
    ) -> Optional[schemas.Thread]: ...

    async def create_thread(
        self, customer_id: str, category_id: str, channel: str = "website"
    ) -> schemas.Thread: ...

    async def assign_thread(self, thread_id: str, agent_id: str) -> schemas.Thread: ...

    async def touch_thread(self, thread_id: str) -> None: ...

    async def close_thread(self, thread_id: str) -> Optional[schemas.Thread]:
        """Close ``thread_id`` if it is open; ``None`` when nothing changed."""
        ...

    async def find_open_threads_by_prefix(
        self, prefix: str, limit: int = 2
    ) -> List[schemas.Thread]: ...

    async def latest_open_thread_for_agent(
        self, agent_id: str
    ) -> Optional[schemas.Thread]: ...

    # Agents ------------------------------------------------------------------
    async def list_agents(self) -> List[schemas.Agent]: ...

    async def list_online_agents(self) -> List[schemas.Agent]:
        """Online agents ordered by workload, then by creation time."""
        ...

    async def get_agent(self, agent_id: str) -> Optional[schemas.Agent]: ...

    async def get_agent_by_channel(
        self, channel_user_id: str
    ) -> Optional[schemas.Agent]: ...

    async def create_agent(self, payload: schemas.AgentCreate) -> schemas.Agent: ...

    async def set_agent_online(
        self, agent_id: str, is_online: bool
    ) -> Optional[schemas.Agent]: ...

    async def adjust_agent_load(
        self, agent_id: str, delta: int
    ) -> Optional[schemas.Agent]: ...

    async def record_response_time(self, agent_id: str, elapsed_ms: int) -> None: ...

    async def agent_workload(self) -> List[schemas.AgentWorkload]: ...

    async def log_activity(
        self, agent_id: str, event_type: str, details: Optional[dict[str, Any]] = None
    ) -> None: ...

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
    ) -> schemas.Message: ...

    async def list_messages(
        self, thread_id: str, limit: int = 50, offset: int = 0
    ) -> List[schemas.Message]: ...

    async def last_message_at(
        self, thread_id: str, sender_type: str
    ) -> Optional[datetime]: ...

    async def close(self) -> None: ...
