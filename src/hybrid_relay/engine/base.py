"""Engine contract shared by the direct loop and the agent runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from hybrid_relay.engine.outcome import ExecutionOutcome
from hybrid_relay.routing.model_router import ModelSelection


@dataclass(frozen=True)
class ResumeState:
    task_id: str
    choice: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionRequest:
    prompt: str
    chat_id: str
    selection: ModelSelection
    thread_id: int | None = None
    resume: ResumeState | None = None


class ExecutionEngine(Protocol):
    name: str

    async def run(self, request: ExecutionRequest) -> ExecutionOutcome: ...
