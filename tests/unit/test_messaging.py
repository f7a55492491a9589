from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from hybrid_relay.gateway.messaging import (
    Button,
    TelegramGateway,
    split_message,
    to_telegram_markdown,
)


class _TelegramRecorder:
    def __init__(self, *, reject_markdown: bool = False) -> None:
        self.reject_markdown = reject_markdown
        self.requests: list[tuple[str, dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        method = request.url.path.rsplit("/", 1)[-1]
        self.requests.append((method, payload))
        if self.reject_markdown and payload.get("parse_mode") == "Markdown":
            return httpx.Response(400, json={"ok": False, "description": "can't parse entities"})
        return httpx.Response(200, json={"ok": True, "result": {}})


def _gateway(recorder: _TelegramRecorder) -> TelegramGateway:
    return TelegramGateway(
        "123:abc", api_base="https://telegram.test", transport=httpx.MockTransport(recorder)
    )


def test_bold_is_converted_for_telegram() -> None:
    assert to_telegram_markdown("**Status** is **fine**") == "*Status* is *fine*"


def test_split_prefers_newlines_and_respects_limit() -> None:
    text = "a" * 30 + "\n" + "b" * 30

    chunks = split_message(text, limit=40)

    assert chunks == ["a" * 30, "b" * 30]
    assert split_message("c" * 90, limit=40) == ["c" * 40, "c" * 40, "c" * 10]
    assert split_message("short") == ["short"]


def test_send_text_uses_markdown_and_thread() -> None:
    recorder = _TelegramRecorder()

    ok = asyncio.run(_gateway(recorder).send_text("42", "**hi**", thread_id=9))

    assert ok is True
    assert recorder.requests == [
        (
            "sendMessage",
            {"chat_id": "42", "text": "*hi*", "message_thread_id": 9, "parse_mode": "Markdown"},
        )
    ]


def test_markdown_rejection_retries_as_plain_text() -> None:
    recorder = _TelegramRecorder(reject_markdown=True)

    ok = asyncio.run(_gateway(recorder).send_text("42", "under_score"))

    assert ok is True
    assert [payload.get("parse_mode") for _, payload in recorder.requests] == ["Markdown", None]


def test_buttons_become_inline_keyboard() -> None:
    recorder = _TelegramRecorder()
    layout = [
        [Button("Yes", "atask:t:yes"), Button("No", "atask:t:no")],
        [Button("Cancel", "atask:t:cancel")],
    ]

    asyncio.run(_gateway(recorder).send_buttons("42", "Go?", layout))

    keyboard = recorder.requests[0][1]["reply_markup"]["inline_keyboard"]
    assert keyboard == [
        [
            {"text": "Yes", "callback_data": "atask:t:yes"},
            {"text": "No", "callback_data": "atask:t:no"},
        ],
        [{"text": "Cancel", "callback_data": "atask:t:cancel"}],
    ]


def test_edit_and_acknowledge() -> None:
    recorder = _TelegramRecorder()
    gateway = _gateway(recorder)

    asyncio.run(gateway.edit_text("42", 11, "Task cancelled."))
    asyncio.run(gateway.acknowledge_callback("cb-1"))

    assert recorder.requests == [
        ("editMessageText", {"chat_id": "42", "message_id": 11, "text": "Task cancelled."}),
        ("answerCallbackQuery", {"callback_query_id": "cb-1"}),
    ]


def test_network_errors_report_failure() -> None:
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    gateway = TelegramGateway("123:abc", transport=httpx.MockTransport(boom))

    assert asyncio.run(gateway.send_text("42", "hi")) is False


def test_token_is_required() -> None:
    with pytest.raises(ValueError, match="TELEGRAM_BOT_TOKEN"):
        TelegramGateway("")
