"""Telegram Bot API adapter."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

import httpx

from ..config import Settings
from ..routing.models import BotCallback, BotEvent, InboundBotMessage, MediaRef
from .base import REPLY_CALLBACK_PREFIX, BotAdapter, BotEventHandler

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
POLL_ERROR_BACKOFF = 5.0
# Edits are not relayed; stored messages are append-only.
ALLOWED_UPDATES = ["message", "callback_query"]

_MEDIA_METHODS = {
    "image": ("sendPhoto", "photo"),
    "video": ("sendVideo", "video"),
}


class TelegramBotAdapter(BotAdapter):
    """Talks to the Bot API over ``httpx`` in webhook or long-polling mode."""

    channel_name = "telegram"

    def __init__(
        self,
        token: str,
        *,
        mode: str = "polling",
        webhook_url: str | None = None,
        webhook_secret: str | None = None,
        api_base: str = "https://api.telegram.org",
        poll_timeout: int = 30,
        http_timeout: float = 40.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self.mode = mode
        self._webhook_url = webhook_url
        self._webhook_secret = webhook_secret
        self._api_base = api_base.rstrip("/")
        self._poll_timeout = poll_timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=http_timeout)
        self._poll_task: asyncio.Task[None] | None = None
        self._offset: int | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> "TelegramBotAdapter":
        if not settings.telegram_bot_token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN is required for the Telegram adapter")
        return cls(
            settings.telegram_bot_token,
            mode=settings.telegram_mode,
            webhook_url=settings.telegram_webhook_url,
            webhook_secret=settings.telegram_webhook_secret,
            api_base=settings.telegram_api_base,
            poll_timeout=settings.telegram_poll_timeout,
            http_timeout=settings.telegram_http_timeout,
            client=client,
        )

    # ------------------------------------------------------------------
    # Bot API calls

    async def _call(self, method: str, payload: Dict[str, Any] | None = None) -> Any:
        """POST ``method`` and return its ``result``, or ``None`` on failure."""

        url = f"{self._api_base}/bot{self._token}/{method}"
        try:
            response = await self._client.post(url, json=payload or {})
            body = response.json()
        except httpx.HTTPError as exc:
            logger.warning("Telegram %s failed: %s", method, exc)
            return None
        except ValueError:
            logger.warning(
                "Telegram %s returned a non-JSON body (status %d)",
                method,
                response.status_code,
            )
            return None
        if not isinstance(body, dict) or not body.get("ok"):
            logger.warning(
                "Telegram %s rejected with status %d: %s",
                method,
                response.status_code,
                body.get("description") if isinstance(body, dict) else body,
            )
            return None
        return body.get("result")

    async def send_text(
        self, channel_id: str, text: str, *, reply_thread_id: str | None = None
    ) -> bool:
        payload: Dict[str, Any] = {"chat_id": channel_id, "text": text}
        if reply_thread_id:
            payload["reply_markup"] = {
                "inline_keyboard": [
                    [
                        {
                            "text": "↩️ Reply",
                            "callback_data": f"{REPLY_CALLBACK_PREFIX}{reply_thread_id}",
                        }
                    ]
                ]
            }
        return await self._call("sendMessage", payload) is not None

    async def send_media(
        self,
        channel_id: str,
        media_url: str,
        media_type: str,
        caption: str | None = None,
    ) -> bool:
        method, field = _MEDIA_METHODS.get(media_type, ("sendDocument", "document"))
        payload: Dict[str, Any] = {"chat_id": channel_id, field: media_url}
        if caption:
            payload["caption"] = caption
        return await self._call(method, payload) is not None

    async def answer_callback(self, callback_id: str, text: str | None = None) -> bool:
        payload: Dict[str, Any] = {"callback_query_id": callback_id}
        if text:
            payload["text"] = text
        return await self._call("answerCallbackQuery", payload) is not None

    async def resolve_media_url(self, file_id: str) -> str | None:
        result = await self._call("getFile", {"file_id": file_id})
        file_path = (result or {}).get("file_path")
        if not file_path:
            return None
        return f"{self._api_base}/file/bot{self._token}/{file_path}"

    # ------------------------------------------------------------------
    # Inbound updates

    def verify_secret(self, headers: Mapping[str, str]) -> bool:
        if not self._webhook_secret:
            return True
        received = headers.get(SECRET_HEADER)
        return bool(received and received == self._webhook_secret)

    def parse_update(self, payload: Mapping[str, Any]) -> BotEvent | None:
        message = payload.get("message")
        if message:
            return self._from_message(message)
        callback = payload.get("callback_query")
        if callback:
            user = callback.get("from") or {}
            if user.get("id") is None:
                return None
            chat = (callback.get("message") or {}).get("chat") or {}
            return BotCallback(
                sender_channel_id=str(user["id"]),
                callback_id=str(callback.get("id", "")),
                data=callback.get("data") or "",
                chat_id=str(chat["id"]) if chat.get("id") is not None else None,
            )
        return None

    def _from_message(self, message: Mapping[str, Any]) -> InboundBotMessage | None:
        user = message.get("from") or {}
        if user.get("id") is None:
            return None
        media: list[MediaRef] = []
        if message.get("photo"):
            # Telegram lists photo sizes smallest first.
            media.append(MediaRef(message["photo"][-1]["file_id"], "image"))
        elif message.get("video"):
            media.append(MediaRef(message["video"]["file_id"], "video"))
        elif message.get("voice"):
            media.append(MediaRef(message["voice"]["file_id"], "voice"))
        elif message.get("document"):
            media.append(MediaRef(message["document"]["file_id"], "document"))
        reply = message.get("reply_to_message") or {}
        timestamp = message.get("date")
        if timestamp:
            sent_at = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        else:
            sent_at = datetime.now(timezone.utc)
        return InboundBotMessage(
            sender_channel_id=str(user["id"]),
            text=message.get("text") or message.get("caption"),
            media=media,
            reply_context_text=reply.get("text") or reply.get("caption"),
            sender_name=self._display_name(user),
            metadata={
                "message_id": message.get("message_id"),
                "chat_id": (message.get("chat") or {}).get("id"),
            },
            sent_at=sent_at,
        )

    def _display_name(self, user: Mapping[str, Any]) -> str:
        return user.get("username") or " ".join(
            filter(None, [user.get("first_name"), user.get("last_name")])
        ).strip()

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self, handler: BotEventHandler) -> None:
        if self.mode == "webhook":
            if not self._webhook_url:
                logger.warning("TELEGRAM_MODE=webhook but TELEGRAM_WEBHOOK_URL is unset")
                return
            payload: Dict[str, Any] = {
                "url": self._webhook_url,
                "allowed_updates": ALLOWED_UPDATES,
            }
            if self._webhook_secret:
                payload["secret_token"] = self._webhook_secret
            if await self._call("setWebhook", payload) is not None:
                logger.info("Telegram webhook set to %s", self._webhook_url)
        elif self.mode == "polling":
            await self._call("deleteWebhook")
            self._poll_task = asyncio.create_task(self._poll_loop(handler))
            logger.info("Telegram long polling started")

    async def poll_once(self, handler: BotEventHandler) -> int:
        """Fetch one batch of updates and dispatch them; returns the batch size."""

        payload: Dict[str, Any] = {
            "timeout": self._poll_timeout,
            "allowed_updates": ALLOWED_UPDATES,
        }
        if self._offset is not None:
            payload["offset"] = self._offset
        updates = await self._call("getUpdates", payload)
        if updates is None:
            raise ConnectionError("getUpdates failed")
        for update in updates:
            self._offset = int(update["update_id"]) + 1
            try:
                event = self.parse_update(update)
                if event is not None:
                    await handler(event)
            except Exception:
                logger.exception("Failed to handle Telegram update %s", update["update_id"])
        return len(updates)

    async def _poll_loop(self, handler: BotEventHandler) -> None:
        while True:
            try:
                await self.poll_once(handler)
            except ConnectionError:
                await asyncio.sleep(POLL_ERROR_BACKOFF)
            except Exception:
                logger.exception("Telegram polling failed; retrying")
                await asyncio.sleep(POLL_ERROR_BACKOFF)

    async def stop(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._owns_client:
            await self._client.aclose()


__all__ = ["ALLOWED_UPDATES", "SECRET_HEADER", "TelegramBotAdapter"]
