"""Administrator accounts for the agent management API."""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import DateTime, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class AdminUser(Base):
    """Represents an administrator allowed to manage agents.

    Attributes:
        id: Primary key generated via ``gen_random_uuid`` in Postgres.
        email: Unique login e-mail address.
        password_hash: Argon2 hash of the password.
        name: Display name.
    """

    __tablename__ = "admin_users"
    __table_args__ = (Index("ix_admin_users_email_unique", "email", unique=True),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(length=255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(length=255))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    last_login_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))


__all__ = ["AdminUser"]
