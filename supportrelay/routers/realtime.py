"""WebSocket endpoint the chat widget uses for live updates."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from ..channels.realtime import RealtimeHub
from ..dependencies import get_hub
from ..security.tokens import TokenError, decode_admin_token, decode_chat_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

TYPING_EVENTS = {"typing:start", "typing:stop"}


def _authenticate(token: str) -> tuple[str, str | None]:
    """Return ``(user_id, thread_id)``; admins get ``None`` (any thread)."""

    try:
        claims = decode_chat_token(token)
        return claims["sub"], claims["thread_id"]
    except TokenError:
        admin = decode_admin_token(token)
        return admin["sub"], None


def _thread_id(data: Any) -> str | None:
    if isinstance(data, dict):
        data = data.get("threadId") or data.get("thread_id")
    if isinstance(data, str) and data.strip():
        return data.strip()
    return None


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await websocket.send_json({"event": "error", "data": {"detail": detail}})


@router.websocket("/ws")
async def widget_socket(websocket: WebSocket, token: str = Query(default="")) -> None:
    try:
        user_id, allowed_thread = _authenticate(token)
    except TokenError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    hub: RealtimeHub = get_hub(websocket)
    await websocket.accept()
    logger.debug("Socket connected for %s", user_id)
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await _send_error(websocket, "Frames must be JSON objects")
                continue
            if not isinstance(frame, dict):
                await _send_error(websocket, "Frames must be JSON objects")
                continue
            event = frame.get("event")
            thread_id = _thread_id(frame.get("data"))
            if thread_id is None:
                await _send_error(websocket, "A thread id is required")
                continue
            if allowed_thread is not None and thread_id != allowed_thread:
                await _send_error(websocket, "Access denied to this thread")
                continue
            if event == "join:thread":
                hub.join(websocket, thread_id)
                await websocket.send_json({"event": "joined", "data": {"threadId": thread_id}})
            elif event == "leave:thread":
                hub.leave(websocket, thread_id)
            elif event in TYPING_EVENTS:
                await hub.publish(
                    thread_id,
                    event,
                    {"threadId": thread_id, "userId": user_id},
                    exclude=websocket,
                )
            else:
                await _send_error(websocket, f"Unknown event: {event}")
    except WebSocketDisconnect:
        logger.debug("Socket disconnected for %s", user_id)
    finally:
        hub.disconnect(websocket)
