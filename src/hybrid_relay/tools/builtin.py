"""Tool implementations backed by the relay store and collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable
from zoneinfo import ZoneInfo

from hybrid_relay.storage.base import RelayStore
from hybrid_relay.tools.schemas import (
    GetCurrentTimeInput,
    GetCurrentTimeOutput,
    GoalEntry,
    ListGoalsInput,
    ListGoalsOutput,
    PhoneCallInput,
    PhoneCallOutput,
    RememberFactInput,
    RememberFactOutput,
)
from hybrid_relay.tools.voice import VoiceService


@dataclass(frozen=True)
class ToolContext:
    store: RelayStore
    timezone: str = "UTC"
    voice: VoiceService | None = None
    clock: Callable[[], datetime] = lambda: datetime.now(UTC)


async def get_current_time(
    payload: GetCurrentTimeInput, *, context: ToolContext
) -> GetCurrentTimeOutput:
    zone_name = payload.timezone or context.timezone
    now = context.clock().astimezone(ZoneInfo(zone_name))
    return GetCurrentTimeOutput(
        iso=now.isoformat(),
        display=now.strftime("%A, %B %d, %Y %I:%M %p %Z"),
        timezone=zone_name,
    )


async def list_goals(payload: ListGoalsInput, *, context: ToolContext) -> ListGoalsOutput:
    goals = await context.store.get_memory("goal")
    return ListGoalsOutput(
        goals=[
            GoalEntry(
                content=goal.content,
                deadline=goal.deadline.isoformat() if goal.deadline else None,
            )
            for goal in goals
        ]
    )


async def remember_fact(payload: RememberFactInput, *, context: ToolContext) -> RememberFactOutput:
    stored = await context.store.add_memory("fact", payload.fact.strip())
    return RememberFactOutput(stored=stored)


async def phone_call(payload: PhoneCallInput, *, context: ToolContext) -> PhoneCallOutput:
    if context.voice is None:
        return PhoneCallOutput(success=False, error="Voice calls are not configured")
    started = await context.voice.initiate_call(payload.context)
    return PhoneCallOutput(
        success=started.success,
        conversation_id=started.conversation_id,
        error=started.error,
    )
