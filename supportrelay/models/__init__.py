"""SQLAlchemy declarative base and relay schema models.

The relay engine itself talks to PostgreSQL through raw ``psycopg`` queries
(see :mod:`supportrelay.store.postgres`); these models own the table
definitions used by ``tools/init_db.py`` and back the admin account routes.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


from .admin import AdminUser
from .relay import (
    AgentActivityRow,
    AgentRow,
    AnalyticsRow,
    CategoryRow,
    ChatThreadRow,
    CustomerRow,
    MessageRow,
)


__all__ = [
    "AdminUser",
    "AgentActivityRow",
    "AgentRow",
    "AnalyticsRow",
    "Base",
    "CategoryRow",
    "ChatThreadRow",
    "CustomerRow",
    "MessageRow",
]
