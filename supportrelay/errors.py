"""Exceptions raised by the relay engine and its collaborators."""

from __future__ import annotations


class RelayError(RuntimeError):
    """Base class for relay failures."""


class ValidationError(RelayError):
    """Raised when a request is missing a required field."""


class ThreadClosedError(ValidationError):
    """Raised when a message targets a thread that is already closed."""


class NotFoundError(RelayError):
    """Raised when a referenced thread, agent or customer does not exist."""


class UnresolvedThreadError(RelayError):
    """Raised when a bot-channel message cannot be matched to any thread."""


class DependencyError(RelayError):
    """Raised when the state store or a transport call fails."""


__all__ = [
    "DependencyError",
    "NotFoundError",
    "RelayError",
    "ThreadClosedError",
    "UnresolvedThreadError",
    "ValidationError",
]
