"""Request-scoped accessors and error translation shared by the routers."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, Request, WebSocket, status

from .channels import BotAdapter, RealtimeHub
from .errors import DependencyError, NotFoundError, ThreadClosedError, ValidationError
from .routing.coordinator import RelayCoordinator

logger = logging.getLogger(__name__)


def get_coordinator(request: Request) -> RelayCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay is not ready",
        )
    return coordinator


def get_bot(request: Request) -> BotAdapter:
    return request.app.state.bot


def get_hub(websocket: WebSocket) -> RealtimeHub:
    return websocket.app.state.hub


@contextmanager
def relay_errors() -> Iterator[None]:
    """Translate relay exceptions into HTTP errors."""

    try:
        yield
    except ThreadClosedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DependencyError as exc:
        logger.error("Relay dependency failure: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="A backing service failed; please retry.",
        ) from exc


__all__ = ["get_bot", "get_coordinator", "get_hub", "relay_errors"]
