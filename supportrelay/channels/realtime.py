"""Room bookkeeping for widget WebSocket connections."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


def room_name(thread_id: str) -> str:
    return f"thread:{thread_id}"


class RealtimeHub:
    """Groups connections into per-thread rooms and broadcasts events.

    Delivery is at most once: nothing is buffered for absent clients, and a
    socket whose send fails is removed from every room.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[WebSocket]] = defaultdict(set)

    def join(self, websocket: WebSocket, thread_id: str) -> None:
        self._rooms[room_name(thread_id)].add(websocket)
        logger.debug("Socket joined %s", room_name(thread_id))

    def leave(self, websocket: WebSocket, thread_id: str) -> None:
        room = room_name(thread_id)
        members = self._rooms.get(room)
        if not members:
            return
        members.discard(websocket)
        if not members:
            del self._rooms[room]

    def disconnect(self, websocket: WebSocket) -> None:
        for room in list(self._rooms):
            members = self._rooms[room]
            members.discard(websocket)
            if not members:
                del self._rooms[room]

    def members(self, thread_id: str) -> int:
        return len(self._rooms.get(room_name(thread_id), ()))

    async def publish(
        self,
        thread_id: str,
        event: str,
        payload: Any,
        exclude: WebSocket | None = None,
    ) -> int:
        """Send ``event`` to everyone in the thread's room; returns deliveries."""

        members = list(self._rooms.get(room_name(thread_id), ()))
        if not members:
            return 0
        frame = {"event": event, "data": jsonable_encoder(payload)}
        delivered = 0
        for websocket in members:
            if websocket is exclude:
                continue
            try:
                await websocket.send_json(frame)
            except Exception as exc:
                logger.info("Dropping socket after failed %s send: %s", event, exc)
                self.disconnect(websocket)
                continue
            delivered += 1
        return delivered


__all__ = ["RealtimeHub", "room_name"]
