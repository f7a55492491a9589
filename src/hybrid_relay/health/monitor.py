"""Local-node liveness tracking with failure hysteresis."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Awaitable, Callable

import httpx

from hybrid_relay.storage.base import RelayStore

logger = logging.getLogger(__name__)

LivenessCheck = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class HealthState:
    """Snapshot of what the monitor currently believes about the local node."""

    is_alive: bool = False
    last_check: datetime | None = None
    consecutive_failures: int = 0
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None


def advance(
    state: HealthState, alive: bool, now: datetime, failures_until_down: int
) -> HealthState:
    """One success marks the node alive; ``failures_until_down`` misses mark it down."""
    if alive:
        return replace(
            state,
            is_alive=True,
            last_check=now,
            consecutive_failures=0,
            last_success_at=now,
        )
    failures = state.consecutive_failures + 1
    return replace(
        state,
        is_alive=state.is_alive and failures < failures_until_down,
        last_check=now,
        consecutive_failures=failures,
        last_failure_at=now,
    )


class LivenessProbe:
    """HTTP health probe with a heartbeat-table fallback.

    A node is alive when its health endpoint answers ``{"status": "ok"}``
    or, failing that, when its last heartbeat is fresh.
    """

    def __init__(
        self,
        *,
        store: RelayStore,
        node_id: str,
        health_url: str = "",
        timeout_s: float = 5.0,
        heartbeat_max_age_s: float = 90.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store = store
        self.node_id = node_id
        self.health_url = health_url
        self.timeout_s = timeout_s
        self.heartbeat_max_age_s = heartbeat_max_age_s
        self._transport = transport

    async def __call__(self) -> bool:
        if self.health_url and await self._probe_http():
            return True
        status = await self.store.get_node_status(self.node_id, self.heartbeat_max_age_s)
        return status.online

    async def _probe_http(self) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s, transport=self._transport
            ) as client:
                response = await client.get(self.health_url)
            if response.status_code != 200:
                return False
            return response.json().get("status") == "ok"
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            logger.debug("health event=probe_error url=%s error=%s", self.health_url, exc)
            return False


class HealthMonitor:
    """Periodically evaluates a liveness check and exposes the debounced result."""

    def __init__(
        self,
        check: LivenessCheck,
        *,
        interval_s: float = 30.0,
        failures_until_down: int = 2,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._check = check
        self.interval_s = interval_s
        self.failures_until_down = failures_until_down
        self._clock = clock or (lambda: datetime.now(UTC))
        self._state = HealthState()
        self._task: asyncio.Task[None] | None = None

    def is_alive(self) -> bool:
        return self._state.is_alive

    def snapshot(self) -> HealthState:
        return self._state

    async def force_check(self) -> bool:
        try:
            alive = bool(await self._check())
        except Exception as exc:  # noqa: BLE001
            logger.warning("health event=check_error error=%s", exc)
            alive = False

        previous = self._state
        self._state = advance(previous, alive, self._clock(), self.failures_until_down)
        if self._state.is_alive and not previous.is_alive:
            logger.info("health event=up")
        elif previous.is_alive and not self._state.is_alive:
            logger.info("health event=down failures=%s", self._state.consecutive_failures)
        return self._state.is_alive

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="health-monitor")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await self.force_check()
            await asyncio.sleep(self.interval_s)
