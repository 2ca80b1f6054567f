"""State store contract and its implementations."""

from .base import StateStore
from .memory import InMemoryStateStore
from .postgres import PostgresStateStore

__all__ = ["InMemoryStateStore", "PostgresStateStore", "StateStore"]
