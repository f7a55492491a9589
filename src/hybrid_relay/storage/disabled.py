"""Store used when no database is configured: nothing is persisted."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from hybrid_relay.storage.models import (
    AsyncTask,
    ChatMessage,
    MemoryItem,
    MemoryKind,
    MessageRole,
    NodeStatus,
    TaskStatus,
)


class DisabledRelayStore:
    enabled = False

    async def migrate(self) -> None:
        return None

    async def save_message(
        self,
        chat_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        return False

    async def get_recent_messages(self, chat_id: str, limit: int = 10) -> list[ChatMessage]:
        return []

    async def add_memory(
        self,
        kind: MemoryKind,
        content: str,
        deadline: datetime | None = None,
    ) -> bool:
        return False

    async def get_memory(self, kind: MemoryKind) -> list[MemoryItem]:
        return []

    async def complete_goal(self, search: str) -> bool:
        return False

    async def cancel_goal(self, search: str) -> bool:
        return False

    async def delete_fact(self, search: str) -> bool:
        return False

    async def create_task(
        self,
        chat_id: str,
        prompt: str,
        *,
        thread_id: int | None = None,
        processed_by: str | None = None,
        status: TaskStatus = "running",
    ) -> AsyncTask | None:
        return None

    async def update_task(
        self,
        task_id: str,
        changes: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> AsyncTask | None:
        return None

    async def get_task(self, task_id: str) -> AsyncTask | None:
        return None

    async def list_tasks(
        self,
        chat_id: str | None = None,
        statuses: tuple[TaskStatus, ...] | None = None,
    ) -> list[AsyncTask]:
        return []

    async def get_stale_tasks(self, threshold_s: float) -> list[AsyncTask]:
        return []

    async def upsert_heartbeat(self, node_id: str, metadata: dict[str, Any] | None = None) -> bool:
        return False

    async def get_node_status(self, node_id: str, max_age_s: float) -> NodeStatus:
        return NodeStatus(online=False)
