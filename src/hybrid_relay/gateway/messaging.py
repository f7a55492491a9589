"""Outbound chat messaging: the gateway protocol and its Telegram implementation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_MESSAGE_LIMIT = 4096
_BOLD = re.compile(r"\*\*(.+?)\*\*", re.DOTALL)


@dataclass(frozen=True)
class Button:
    label: str
    callback_data: str


ButtonLayout = list[list[Button]]


class MessagingGateway(Protocol):
    async def send_text(self, chat_id: str, text: str, *, thread_id: int | None = None) -> bool: ...

    async def send_buttons(
        self,
        chat_id: str,
        text: str,
        layout: ButtonLayout,
        *,
        thread_id: int | None = None,
    ) -> bool: ...

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> bool: ...

    async def acknowledge_callback(self, callback_id: str) -> bool: ...


def to_telegram_markdown(text: str) -> str:
    return _BOLD.sub(r"*\1*", text)


def split_message(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> list[str]:
    """Split ``text`` into chunks of at most ``limit`` characters, preferring newlines."""
    if len(text) <= limit:
        return [text]
    chunks = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    return chunks


class TelegramGateway:
    """Telegram Bot API client; every send retries once without Markdown."""

    def __init__(
        self,
        bot_token: str,
        *,
        api_base: str = "https://api.telegram.org",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not bot_token:
            raise ValueError("HYBRID_RELAY_TELEGRAM_BOT_TOKEN is required")
        self._base_url = f"{api_base.rstrip('/')}/bot{bot_token}"
        self._timeout_s = timeout_s
        self._transport = transport

    async def send_text(self, chat_id: str, text: str, *, thread_id: int | None = None) -> bool:
        delivered = True
        for chunk in split_message(to_telegram_markdown(text)):
            payload = self._message_payload(chat_id, chunk, thread_id)
            delivered = await self._send_with_fallback("sendMessage", payload) and delivered
        return delivered

    async def send_buttons(
        self,
        chat_id: str,
        text: str,
        layout: ButtonLayout,
        *,
        thread_id: int | None = None,
    ) -> bool:
        payload = self._message_payload(chat_id, to_telegram_markdown(text), thread_id)
        payload["reply_markup"] = {
            "inline_keyboard": [
                [{"text": button.label, "callback_data": button.callback_data} for button in row]
                for row in layout
            ]
        }
        return await self._send_with_fallback("sendMessage", payload)

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> bool:
        payload = {"chat_id": chat_id, "message_id": message_id, "text": text}
        return await self._call("editMessageText", payload)

    async def acknowledge_callback(self, callback_id: str) -> bool:
        return await self._call("answerCallbackQuery", {"callback_query_id": callback_id})

    async def _send_with_fallback(self, method: str, payload: dict[str, Any]) -> bool:
        if await self._call(method, {**payload, "parse_mode": "Markdown"}):
            return True
        return await self._call(method, payload)

    async def _call(self, method: str, payload: dict[str, Any]) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s, transport=self._transport
            ) as client:
                response = await client.post(f"{self._base_url}/{method}", json=payload)
            ok = response.status_code == 200 and bool(response.json().get("ok"))
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("telegram event=request_failed method=%s error=%s", method, exc)
            return False
        if not ok:
            logger.warning(
                "telegram event=rejected method=%s status=%s", method, response.status_code
            )
        return ok

    @staticmethod
    def _message_payload(chat_id: str, text: str, thread_id: int | None) -> dict[str, Any]:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if thread_id is not None:
            payload["message_thread_id"] = thread_id
        return payload
