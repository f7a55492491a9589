from __future__ import annotations

import asyncio

from hybrid_relay.gateway.calls import CallTracker


def test_claim_is_first_wins() -> None:
    tracker = CallTracker()

    assert tracker.claim("conv-1") is True
    assert tracker.claim("conv-1") is False
    assert tracker.is_processed("conv-1")


def test_polling_delivers_transcript_once() -> None:
    tracker = CallTracker(poll_interval_s=0.001, max_attempts=10)
    attempts = {"count": 0}
    delivered: list[tuple[str, str, str]] = []

    async def fetch(conversation_id: str) -> str | None:
        attempts["count"] += 1
        return "agent: hello" if attempts["count"] >= 3 else None

    async def on_transcript(conversation_id: str, chat_id: str, transcript: str) -> None:
        if tracker.claim(conversation_id):
            delivered.append((conversation_id, chat_id, transcript))

    async def scenario() -> None:
        await tracker.start_polling("conv-1", "chat-1", fetch, on_transcript)

    asyncio.run(scenario())

    assert attempts["count"] == 3
    assert delivered == [("conv-1", "chat-1", "agent: hello")]


def test_polling_stops_when_webhook_claimed_first() -> None:
    tracker = CallTracker(poll_interval_s=0.001, max_attempts=5)
    fetched: list[str] = []

    async def fetch(conversation_id: str) -> str | None:
        fetched.append(conversation_id)
        return "late transcript"

    async def on_transcript(conversation_id: str, chat_id: str, transcript: str) -> None:
        raise AssertionError("already processed by the webhook")

    async def scenario() -> None:
        tracker.claim("conv-2")
        await tracker.start_polling("conv-2", "chat-1", fetch, on_transcript)

    asyncio.run(scenario())

    assert fetched == []


def test_polling_gives_up_after_max_attempts() -> None:
    tracker = CallTracker(poll_interval_s=0.001, max_attempts=3)
    calls: list[str] = []

    async def fetch(conversation_id: str) -> str | None:
        calls.append(conversation_id)
        raise ConnectionError("provider down")

    async def on_transcript(conversation_id: str, chat_id: str, transcript: str) -> None:
        raise AssertionError("no transcript expected")

    async def scenario() -> None:
        await tracker.start_polling("conv-3", "chat-1", fetch, on_transcript)

    asyncio.run(scenario())

    assert len(calls) == 3


def test_finished_poller_does_not_evict_its_replacement() -> None:
    tracker = CallTracker(poll_interval_s=0.05, max_attempts=2)
    replacement: dict[str, asyncio.Task[None]] = {}

    async def fetch(conversation_id: str) -> str | None:
        return "agent: hello"

    async def ignore(conversation_id: str, chat_id: str, transcript: str) -> None:
        return None

    def restart() -> None:
        replacement["task"] = tracker.start_polling("conv-4", "chat-1", fetch, ignore)

    async def on_transcript(conversation_id: str, chat_id: str, transcript: str) -> None:
        # Runs before the first poller's done-callbacks are scheduled.
        asyncio.get_running_loop().call_soon(restart)

    async def scenario() -> bool:
        first = tracker.start_polling("conv-4", "chat-1", fetch, on_transcript)
        await first
        still_tracked = tracker.start_polling("conv-4", "chat-1", fetch, ignore)
        await tracker.stop()
        return still_tracked is replacement["task"] and replacement["task"] is not first

    assert asyncio.run(scenario()) is True
