"""Daily spend tracking for paid model usage."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CostEntry:
    timestamp: datetime
    cost_usd: float
    model: str
    turns: int


class DailyBudget:
    """Spend ledger that resets at local midnight in ``timezone``."""

    def __init__(
        self,
        daily_limit_usd: float,
        *,
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.daily_limit_usd = daily_limit_usd
        self._zone = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entries: list[CostEntry] = []
        self._day = self._today()
        self._lock = asyncio.Lock()

    def spent(self) -> float:
        self._roll_over()
        return sum(entry.cost_usd for entry in self._entries)

    def remaining(self) -> float:
        return self.daily_limit_usd - self.spent()

    def exhausted(self) -> bool:
        return self.remaining() <= 0

    async def record(self, cost_usd: float, model: str, turns: int = 1) -> None:
        if cost_usd <= 0:
            return
        async with self._lock:
            self._roll_over()
            self._entries.append(
                CostEntry(timestamp=self._clock(), cost_usd=cost_usd, model=model, turns=turns)
            )
        logger.info(
            "budget event=record cost=%.4f model=%s turns=%s remaining=%.4f",
            cost_usd,
            model,
            turns,
            self.remaining(),
        )

    def _today(self) -> date:
        return self._clock().astimezone(self._zone).date()

    def _roll_over(self) -> None:
        today = self._today()
        if today == self._day:
            return
        total = sum(entry.cost_usd for entry in self._entries)
        logger.info("budget event=reset day=%s spent=%.4f", self._day.isoformat(), total)
        self._entries = []
        self._day = today
