"""Table definitions for customers, agents, threads and messages.

Column names match the SQL issued by :class:`~supportrelay.store.PostgresStateStore`.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base

_JSON = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )


def _created_at() -> Mapped[dt.datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class CustomerRow(Base):
    """A widget visitor, either a signed-in site user or a named guest."""

    __tablename__ = "customers"
    __table_args__ = (
        Index(
            "ix_customers_external_origin",
            "external_id",
            "site_origin",
            unique=True,
        ),
        Index("ix_customers_username_origin", "username", "site_origin"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    username: Mapped[str | None] = mapped_column(String(length=255))
    full_name: Mapped[str | None] = mapped_column(String(length=255))
    email: Mapped[str | None] = mapped_column(String(length=320))
    site_origin: Mapped[str] = mapped_column(
        String(length=255), nullable=False, default="", server_default=text("''")
    )
    device_hash: Mapped[str] = mapped_column(
        String(length=255), nullable=False, default="", server_default=text("''")
    )
    external_id: Mapped[str | None] = mapped_column(String(length=255))
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", _JSON, nullable=False, default=dict, server_default=text("'{}'")
    )
    created_at: Mapped[dt.datetime] = _created_at()
    last_seen_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))


class CategoryRow(Base):
    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = _uuid_pk()
    title: Mapped[str] = mapped_column(String(length=255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    sort_order: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )


class AgentRow(Base):
    """A human agent reachable on the bot channel."""

    __tablename__ = "agents"
    __table_args__ = (
        CheckConstraint("handled_threads >= 0", name="ck_agents_handled_non_negative"),
        Index("ix_agents_channel_user_id", "channel_user_id", unique=True),
        Index("ix_agents_online_load", "is_online", "handled_threads"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    channel_user_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(length=320))
    is_online: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    handled_threads: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    avg_response_time_ms: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[dt.datetime] = _created_at()


class ChatThreadRow(Base):
    __tablename__ = "chat_threads"
    __table_args__ = (
        CheckConstraint("status IN ('open', 'closed')", name="ck_chat_threads_status"),
        Index("ix_chat_threads_customer_category", "customer_id", "category_id", "status"),
        Index("ix_chat_threads_agent_open", "assigned_agent_id", "status", "updated_at"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("categories.id", ondelete="RESTRICT"),
        nullable=False,
    )
    assigned_agent_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agents.id", ondelete="SET NULL"),
    )
    status: Mapped[str] = mapped_column(
        String(length=16), nullable=False, default="open", server_default=text("'open'")
    )
    channel: Mapped[str] = mapped_column(
        String(length=32), nullable=False, default="website", server_default=text("'website'")
    )
    created_at: Mapped[dt.datetime] = _created_at()
    updated_at: Mapped[dt.datetime] = _created_at()


class MessageRow(Base):
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(
            "sender_type IN ('customer', 'agent', 'system')",
            name="ck_messages_sender_type",
        ),
        Index("ix_messages_thread_created", "thread_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    thread_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat_threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_type: Mapped[str] = mapped_column(String(length=16), nullable=False)
    sender_id: Mapped[str | None] = mapped_column(String(length=64))
    content: Mapped[str | None] = mapped_column(Text)
    media_url: Mapped[str | None] = mapped_column(Text)
    media_type: Mapped[str | None] = mapped_column(String(length=16))
    created_at: Mapped[dt.datetime] = _created_at()


class AnalyticsRow(Base):
    """Contact counter per customer and category."""

    __tablename__ = "analytics"
    __table_args__ = (
        UniqueConstraint("customer_id", "category_id", name="uq_analytics_customer_category"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
    )
    contact_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default=text("1")
    )
    last_contacted_at: Mapped[dt.datetime] = _created_at()


class AgentActivityRow(Base):
    __tablename__ = "agent_activity_log"
    __table_args__ = (Index("ix_agent_activity_agent_created", "agent_id", "created_at"),)

    id: Mapped[uuid.UUID] = _uuid_pk()
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(length=32), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(
        _JSON, nullable=False, default=dict, server_default=text("'{}'")
    )
    created_at: Mapped[dt.datetime] = _created_at()


__all__ = [
    "AgentActivityRow",
    "AgentRow",
    "AnalyticsRow",
    "CategoryRow",
    "ChatThreadRow",
    "CustomerRow",
    "MessageRow",
]
