"""Least-loaded agent selection."""

from __future__ import annotations

from collections.abc import Iterable

from ..schemas import Agent


def select_agent(candidates: Iterable[Agent]) -> Agent | None:
    """Return the online candidate with the fewest handled threads.

    Ties go to the candidate seen first. ``None`` means nobody is available.
    """

    best: Agent | None = None
    for agent in candidates:
        if not agent.is_online:
            continue
        if best is None or agent.handled_threads < best.handled_threads:
            best = agent
    return best


def reassign(candidates: Iterable[Agent], exclude_agent_id: str | None) -> Agent | None:
    """Like :func:`select_agent` but never returns ``exclude_agent_id``."""

    return select_agent(a for a in candidates if a.id != exclude_agent_id)


__all__ = ["reassign", "select_agent"]
