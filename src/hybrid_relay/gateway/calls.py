"""Deduplicated processing of voice-call transcripts.

A transcript can arrive through the provider webhook or through polling.
Whichever path claims the conversation id first processes it; the other
one skips.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

TranscriptFetcher = Callable[[str], Awaitable[str | None]]
TranscriptHandler = Callable[[str, str, str], Awaitable[None]]


class CallTracker:
    def __init__(self, *, poll_interval_s: float = 10.0, max_attempts: int = 90) -> None:
        self.poll_interval_s = poll_interval_s
        self.max_attempts = max_attempts
        self._processed: set[str] = set()
        self._pollers: dict[str, asyncio.Task[None]] = {}

    def claim(self, correlation_id: str) -> bool:
        """Atomically mark ``correlation_id`` processed; ``False`` if already claimed."""
        if correlation_id in self._processed:
            return False
        self._processed.add(correlation_id)
        return True

    def is_processed(self, correlation_id: str) -> bool:
        return correlation_id in self._processed

    def start_polling(
        self,
        correlation_id: str,
        chat_id: str,
        fetch: TranscriptFetcher,
        on_transcript: TranscriptHandler,
    ) -> asyncio.Task[None]:
        existing = self._pollers.get(correlation_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(
            self._poll(correlation_id, chat_id, fetch, on_transcript),
            name=f"call-poll-{correlation_id}",
        )
        self._pollers[correlation_id] = task
        task.add_done_callback(lambda done: self._forget_poller(correlation_id, done))
        return task

    def _forget_poller(self, correlation_id: str, task: asyncio.Task[None]) -> None:
        if self._pollers.get(correlation_id) is task:
            del self._pollers[correlation_id]

    async def stop(self) -> None:
        pollers = list(self._pollers.values())
        for task in pollers:
            task.cancel()
        await asyncio.gather(*pollers, return_exceptions=True)
        self._pollers.clear()

    async def _poll(
        self,
        correlation_id: str,
        chat_id: str,
        fetch: TranscriptFetcher,
        on_transcript: TranscriptHandler,
    ) -> None:
        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.poll_interval_s)
            if self.is_processed(correlation_id):
                return
            try:
                transcript = await fetch(correlation_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "calls event=poll_error id=%s attempt=%s error=%s", correlation_id, attempt, exc
                )
                continue
            if transcript:
                await on_transcript(correlation_id, chat_id, transcript)
                return
        logger.info("calls event=poll_gave_up id=%s attempts=%s", correlation_id, self.max_attempts)
