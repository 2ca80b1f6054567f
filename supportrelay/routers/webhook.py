"""Inbound webhook for the Telegram bot channel."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..channels import BotAdapter
from ..dependencies import get_bot, get_coordinator, relay_errors
from ..routing.coordinator import RelayCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhook", tags=["webhooks"])


@router.post("/telegram")
async def telegram_webhook(
    request: Request,
    bot: BotAdapter = Depends(get_bot),
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> dict[str, object]:
    """Receive a Bot API update and hand it to the relay."""
    body_bytes = await request.body()
    try:
        payload = json.loads(body_bytes.decode("utf-8")) if body_bytes else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid JSON payload: {exc}"
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Update must be a JSON object"
        )

    if not bot.verify_secret(request.headers):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid secret token"
        )

    event = bot.parse_update(payload)
    if event is None:
        logger.debug("Ignoring update %s", payload.get("update_id"))
        return {"ok": True}
    with relay_errors():
        result = await coordinator.handle_bot_event(event)
    status_value = getattr(result, "status", None)
    return {"ok": True, "status": status_value} if status_value else {"ok": True}


@router.get("/telegram")
async def telegram_webhook_ready(bot: BotAdapter = Depends(get_bot)) -> dict[str, str]:
    return {
        "status": "Telegram webhook endpoint ready",
        "channel": bot.channel_name,
    }
