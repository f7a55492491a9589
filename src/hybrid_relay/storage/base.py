"""Storage interface for conversation history, memory, tasks and heartbeats."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from hybrid_relay.storage.models import (
    AsyncTask,
    ChatMessage,
    MemoryItem,
    MemoryKind,
    MessageRole,
    NodeStatus,
    TaskStatus,
)


class RelayStore(Protocol):
    """Every method degrades to an empty/false/null value instead of raising."""

    enabled: bool

    async def migrate(self) -> None: ...

    async def save_message(
        self,
        chat_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool: ...

    async def get_recent_messages(self, chat_id: str, limit: int = 10) -> list[ChatMessage]: ...

    async def add_memory(
        self,
        kind: MemoryKind,
        content: str,
        deadline: datetime | None = None,
    ) -> bool: ...

    async def get_memory(self, kind: MemoryKind) -> list[MemoryItem]: ...

    async def complete_goal(self, search: str) -> bool: ...

    async def cancel_goal(self, search: str) -> bool: ...

    async def delete_fact(self, search: str) -> bool: ...

    async def create_task(
        self,
        chat_id: str,
        prompt: str,
        *,
        thread_id: int | None = None,
        processed_by: str | None = None,
        status: TaskStatus = "running",
    ) -> AsyncTask | None: ...

    async def update_task(
        self,
        task_id: str,
        changes: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> AsyncTask | None: ...

    async def get_task(self, task_id: str) -> AsyncTask | None: ...

    async def list_tasks(
        self,
        chat_id: str | None = None,
        statuses: tuple[TaskStatus, ...] | None = None,
    ) -> list[AsyncTask]: ...

    async def get_stale_tasks(self, threshold_s: float) -> list[AsyncTask]: ...

    async def upsert_heartbeat(
        self, node_id: str, metadata: dict[str, Any] | None = None
    ) -> bool: ...

    async def get_node_status(self, node_id: str, max_age_s: float) -> NodeStatus: ...
