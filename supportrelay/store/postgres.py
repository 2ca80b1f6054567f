"""PostgreSQL implementation of the relay state store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from .. import schemas
from ..errors import DependencyError
from ..models.session import as_psycopg_url
from ..routing.models import CustomerIdentity
from .base import StateStore

logger = logging.getLogger(__name__)

Params = Sequence[Any] | Dict[str, Any]


def _normalise(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (str(v) if isinstance(v, UUID) else v) for k, v in row.items()}


class PostgresStateStore(StateStore):
    """:class:`StateStore` backed by a single autocommit async connection.

    Each method is one SQL statement, so counter and status changes are atomic
    at the database. Multi-step relay sequences are not wrapped in a
    transaction.
    """

    def __init__(self, conn: psycopg.AsyncConnection) -> None:
        self._conn = conn

    @classmethod
    async def connect(cls, database_url: str) -> "PostgresStateStore":
        try:
            conn = await psycopg.AsyncConnection.connect(
                as_psycopg_url(database_url), autocommit=True
            )
        except psycopg.Error as exc:
            raise DependencyError(f"Could not connect to the state store: {exc}") from exc
        return cls(conn)

    # Utility -----------------------------------------------------------------
    async def _fetchone(self, query: str, params: Params = ()) -> Optional[Dict[str, Any]]:
        try:
            async with self._conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
        except psycopg.Error as exc:
            logger.exception("State store query failed")
            raise DependencyError(f"State store query failed: {exc}") from exc
        return _normalise(row) if row else None

    async def _fetchall(self, query: str, params: Params = ()) -> List[Dict[str, Any]]:
        try:
            async with self._conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                rows = await cur.fetchall()
        except psycopg.Error as exc:
            logger.exception("State store query failed")
            raise DependencyError(f"State store query failed: {exc}") from exc
        return [_normalise(row) for row in rows]

    async def _execute(self, query: str, params: Params = ()) -> None:
        try:
            async with self._conn.cursor() as cur:
                await cur.execute(query, params)
        except psycopg.Error as exc:
            logger.exception("State store statement failed")
            raise DependencyError(f"State store statement failed: {exc}") from exc

    # Customers and categories ------------------------------------------------
    async def find_customer(
        self,
        *,
        site_origin: str,
        external_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Optional[schemas.Customer]:
        if external_id is not None:
            row = await self._fetchone(
                "SELECT * FROM customers WHERE external_id = %s AND site_origin = %s",
                (external_id, site_origin),
            )
        else:
            row = await self._fetchone(
                """
                SELECT * FROM customers
                WHERE username = %s AND site_origin = %s AND external_id IS NULL
                ORDER BY created_at ASC
                LIMIT 1
                """,
                (username, site_origin),
            )
        return schemas.Customer(**row) if row else None

    async def create_customer(self, identity: CustomerIdentity) -> schemas.Customer:
        row = await self._fetchone(
            """
            INSERT INTO customers
                (username, full_name, email, site_origin, device_hash, external_id, metadata)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                identity.username,
                identity.full_name,
                identity.email,
                identity.site_origin,
                identity.device_hash,
                identity.external_id,
                Jsonb(identity.metadata or {}),
            ),
        )
        if not row:
            raise DependencyError("Failed to create customer")
        return schemas.Customer(**row)

    async def refresh_customer(
        self, customer_id: str, identity: CustomerIdentity
    ) -> schemas.Customer:
        row = await self._fetchone(
            """
            UPDATE customers
            SET username = coalesce(%s, username), full_name = %s, email = %s,
                metadata = %s, device_hash = %s, last_seen_at = now()
            WHERE id = %s
            RETURNING *
            """,
            (
                identity.username,
                identity.full_name,
                identity.email,
                Jsonb(identity.metadata or {}),
                identity.device_hash,
                customer_id,
            ),
        )
        if not row:
            raise DependencyError(f"Customer {customer_id} disappeared during refresh")
        return schemas.Customer(**row)

    async def get_customer(self, customer_id: str) -> Optional[schemas.Customer]:
        row = await self._fetchone("SELECT * FROM customers WHERE id = %s", (customer_id,))
        return schemas.Customer(**row) if row else None

    async def get_category(self, category_id: str) -> Optional[schemas.Category]:
        row = await self._fetchone(
            "SELECT id, title, description, is_active, sort_order FROM categories WHERE id = %s",
            (category_id,),
        )
        return schemas.Category(**row) if row else None

    async def list_categories(self, active_only: bool = True) -> List[schemas.Category]:
        rows = await self._fetchall(
            """
            SELECT id, title, description, is_active, sort_order FROM categories
            WHERE is_active OR NOT %s
            ORDER BY sort_order ASC, title ASC
            """,
            (active_only,),
        )
        return [schemas.Category(**row) for row in rows]

    async def create_category(self, payload: schemas.CategoryCreate) -> schemas.Category:
        row = await self._fetchone(
            """
            INSERT INTO categories (title, description, is_active, sort_order)
            VALUES (%s, %s, %s, %s)
            RETURNING id, title, description, is_active, sort_order
            """,
            (payload.title, payload.description, payload.is_active, payload.sort_order),
        )
        if not row:
            raise DependencyError("Failed to create category")
        return schemas.Category(**row)

    async def record_contact(self, customer_id: str, category_id: str) -> None:
        await self._execute(
            """
            INSERT INTO analytics (customer_id, category_id, contact_count, last_contacted_at)
            VALUES (%s, %s, 1, now())
            ON CONFLICT (customer_id, category_id) DO UPDATE
            SET contact_count = analytics.contact_count + 1, last_contacted_at = now()
            """,
            (customer_id, category_id),
        )

    # Threads -----------------------------------------------------------------
    async def get_thread(self, thread_id: str) -> Optional[schemas.Thread]:
        row = await self._fetchone(
            "SELECT * FROM chat_threads WHERE id::text = %s", (thread_id,)
        )
        return schemas.Thread(**row) if row else None

    async def find_open_thread(
        self, customer_id: str, category_id: str
    ) -> Optional[schemas.Thread]:
        row = await self._fetchone(
            """
            SELECT * FROM chat_threads
            WHERE customer_id = %s AND category_id = %s AND status = 'open'
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (customer_id, category_id),
        )
        return schemas.Thread(**row) if row else None

    async def create_thread(
        self, customer_id: str, category_id: str, channel: str = "website"
    ) -> schemas.Thread:
        row = await self._fetchone(
            """
            INSERT INTO chat_threads (customer_id, category_id, channel, status)
            VALUES (%s, %s, %s, 'open')
            RETURNING *
            """,
            (customer_id, category_id, channel),
        )
        if not row:
            raise DependencyError("Failed to create chat thread")
        return schemas.Thread(**row)

    async def assign_thread(self, thread_id: str, agent_id: str) -> schemas.Thread:
        row = await self._fetchone(
            """
            UPDATE chat_threads SET assigned_agent_id = %s, updated_at = now()
            WHERE id = %s
            RETURNING *
            """,
            (agent_id, thread_id),
        )
        if not row:
            raise DependencyError(f"Thread {thread_id} disappeared during assignment")
        return schemas.Thread(**row)

    async def touch_thread(self, thread_id: str) -> None:
        await self._execute(
            "UPDATE chat_threads SET updated_at = now() WHERE id = %s", (thread_id,)
        )

    async def close_thread(self, thread_id: str) -> Optional[schemas.Thread]:
        row = await self._fetchone(
            """
            UPDATE chat_threads SET status = 'closed', updated_at = now()
            WHERE id = %s AND status = 'open'
            RETURNING *
            """,
            (thread_id,),
        )
        return schemas.Thread(**row) if row else None

    async def find_open_threads_by_prefix(
        self, prefix: str, limit: int = 2
    ) -> List[schemas.Thread]:
        rows = await self._fetchall(
            """
            SELECT * FROM chat_threads
            WHERE status = 'open' AND id::text LIKE %s
            ORDER BY updated_at DESC
            LIMIT %s
            """,
            (f"{prefix.lower()}%", limit),
        )
        return [schemas.Thread(**row) for row in rows]

    async def latest_open_thread_for_agent(
        self, agent_id: str
    ) -> Optional[schemas.Thread]:
        row = await self._fetchone(
            """
            SELECT * FROM chat_threads
            WHERE assigned_agent_id = %s AND status = 'open'
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (agent_id,),
        )
        return schemas.Thread(**row) if row else None

    # Agents ------------------------------------------------------------------
    async def list_agents(self) -> List[schemas.Agent]:
        rows = await self._fetchall("SELECT * FROM agents ORDER BY created_at DESC")
        return [schemas.Agent(**row) for row in rows]

    async def list_online_agents(self) -> List[schemas.Agent]:
        rows = await self._fetchall(
            """
            SELECT * FROM agents
            WHERE is_online
            ORDER BY handled_threads ASC, created_at ASC
            """
        )
        return [schemas.Agent(**row) for row in rows]

    async def get_agent(self, agent_id: str) -> Optional[schemas.Agent]:
        row = await self._fetchone("SELECT * FROM agents WHERE id::text = %s", (agent_id,))
        return schemas.Agent(**row) if row else None

    async def get_agent_by_channel(
        self, channel_user_id: str
    ) -> Optional[schemas.Agent]:
        row = await self._fetchone(
            "SELECT * FROM agents WHERE channel_user_id = %s", (channel_user_id,)
        )
        return schemas.Agent(**row) if row else None

    async def create_agent(self, payload: schemas.AgentCreate) -> schemas.Agent:
        row = await self._fetchone(
            """
            INSERT INTO agents (channel_user_id, name, email, is_online)
            VALUES (%s, %s, %s, false)
            RETURNING *
            """,
            (payload.channel_user_id, payload.name, payload.email),
        )
        if not row:
            raise DependencyError("Failed to create agent")
        return schemas.Agent(**row)

    async def set_agent_online(
        self, agent_id: str, is_online: bool
    ) -> Optional[schemas.Agent]:
        row = await self._fetchone(
            "UPDATE agents SET is_online = %s WHERE id::text = %s RETURNING *",
            (is_online, agent_id),
        )
        return schemas.Agent(**row) if row else None

    async def adjust_agent_load(
        self, agent_id: str, delta: int
    ) -> Optional[schemas.Agent]:
        row = await self._fetchone(
            """
            UPDATE agents SET handled_threads = GREATEST(handled_threads + %s, 0)
            WHERE id = %s
            RETURNING *
            """,
            (delta, agent_id),
        )
        return schemas.Agent(**row) if row else None

    async def record_response_time(self, agent_id: str, elapsed_ms: int) -> None:
        await self._execute(
            """
            UPDATE agents SET avg_response_time_ms = CASE
                WHEN avg_response_time_ms IS NULL THEN %(ms)s
                ELSE ROUND(avg_response_time_ms * 0.8 + %(ms)s * 0.2)
            END
            WHERE id = %(agent_id)s
            """,
            {"ms": elapsed_ms, "agent_id": agent_id},
        )

    async def agent_workload(self) -> List[schemas.AgentWorkload]:
        rows = await self._fetchall(
            """
            SELECT a.id, a.name, a.is_online,
                   a.handled_threads AS total_handled,
                   COUNT(t.id) FILTER (WHERE t.status = 'open') AS active_threads
            FROM agents a
            LEFT JOIN chat_threads t ON t.assigned_agent_id = a.id
            GROUP BY a.id
            ORDER BY a.name
            """
        )
        return [schemas.AgentWorkload(**row) for row in rows]

    async def log_activity(
        self, agent_id: str, event_type: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        await self._execute(
            """
            INSERT INTO agent_activity_log (agent_id, event_type, details)
            VALUES (%s, %s, %s)
            """,
            (agent_id, event_type, Jsonb(details or {})),
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
        row = await self._fetchone(
            """
            INSERT INTO messages
                (thread_id, sender_type, sender_id, content, media_url, media_type)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (thread_id, sender_type, sender_id, content, media_url, media_type),
        )
        if not row:
            raise DependencyError(f"Failed to add message to thread {thread_id}")
        return schemas.Message(**row)

    async def list_messages(
        self, thread_id: str, limit: int = 50, offset: int = 0
    ) -> List[schemas.Message]:
        rows = await self._fetchall(
            """
            SELECT * FROM messages
            WHERE thread_id = %s
            ORDER BY created_at ASC
            LIMIT %s OFFSET %s
            """,
            (thread_id, limit, offset),
        )
        return [schemas.Message(**row) for row in rows]

    async def last_message_at(
        self, thread_id: str, sender_type: str
    ) -> Optional[datetime]:
        row = await self._fetchone(
            """
            SELECT max(created_at) AS last_at FROM messages
            WHERE thread_id = %s AND sender_type = %s
            """,
            (thread_id, sender_type),
        )
        return row["last_at"] if row else None

    async def close(self) -> None:
        await self._conn.close()


__all__ = ["PostgresStateStore"]
