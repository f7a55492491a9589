"""In-memory storage backend for tests and single-process development."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any, Callable
from uuid import uuid4

from hybrid_relay.storage.models import (
    AsyncTask,
    ChatMessage,
    MemoryItem,
    MemoryKind,
    MessageRole,
    NodeStatus,
    TaskStatus,
)
from hybrid_relay.storage.transitions import apply_task_changes


def _utc_now() -> datetime:
    return datetime.now(UTC)


class InMemoryRelayStore:
    """Dict-backed store; task updates are serialized by one asyncio lock."""

    enabled = True

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utc_now
        self._lock = asyncio.Lock()
        self._messages: list[ChatMessage] = []
        self._memory: list[MemoryItem] = []
        self._tasks: dict[str, AsyncTask] = {}
        self._heartbeats: dict[str, tuple[datetime, dict[str, Any]]] = {}
        self._next_message_id = 1
        self._next_memory_id = 1

    async def migrate(self) -> None:
        return None

    async def save_message(
        self,
        chat_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        self._messages.append(
            ChatMessage(
                id=self._next_message_id,
                chat_id=chat_id,
                role=role,
                content=content,
                metadata=dict(metadata or {}),
                created_at=self._clock(),
            )
        )
        self._next_message_id += 1
        return True

    async def get_recent_messages(self, chat_id: str, limit: int = 10) -> list[ChatMessage]:
        if limit <= 0:
            return []
        matching = [item for item in self._messages if item.chat_id == chat_id]
        return matching[-limit:]

    async def add_memory(
        self,
        kind: MemoryKind,
        content: str,
        deadline: datetime | None = None,
    ) -> bool:
        self._memory.append(
            MemoryItem(
                id=self._next_memory_id,
                kind=kind,
                content=content,
                deadline=deadline,
                created_at=self._clock(),
            )
        )
        self._next_memory_id += 1
        return True

    async def get_memory(self, kind: MemoryKind) -> list[MemoryItem]:
        return [item for item in self._memory if item.kind == kind]

    async def complete_goal(self, search: str) -> bool:
        index = self._first_match("goal", search)
        if index is None:
            return False
        self._memory[index] = self._memory[index].model_copy(
            update={"kind": "completed_goal", "completed_at": self._clock()}
        )
        return True

    async def cancel_goal(self, search: str) -> bool:
        index = self._first_match("goal", search)
        if index is None:
            return False
        del self._memory[index]
        return True

    async def delete_fact(self, search: str) -> bool:
        index = self._first_match("fact", search)
        if index is None:
            return False
        del self._memory[index]
        return True

    async def create_task(
        self,
        chat_id: str,
        prompt: str,
        *,
        thread_id: int | None = None,
        processed_by: str | None = None,
        status: TaskStatus = "running",
    ) -> AsyncTask | None:
        now = self._clock()
        record = AsyncTask(
            task_id=str(uuid4()),
            chat_id=chat_id,
            original_prompt=prompt,
            status=status,
            thread_id=thread_id,
            processed_by=processed_by,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._tasks[record.task_id] = record
        return record

    async def update_task(
        self,
        task_id: str,
        changes: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> AsyncTask | None:
        async with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            updated = apply_task_changes(current, changes, expected=expected, now=self._clock())
            if updated is None:
                return None
            self._tasks[task_id] = updated
            return updated

    async def get_task(self, task_id: str) -> AsyncTask | None:
        return self._tasks.get(task_id)

    async def list_tasks(
        self,
        chat_id: str | None = None,
        statuses: tuple[TaskStatus, ...] | None = None,
    ) -> list[AsyncTask]:
        tasks = [
            task
            for task in self._tasks.values()
            if (chat_id is None or task.chat_id == chat_id)
            and (statuses is None or task.status in statuses)
        ]
        return sorted(tasks, key=lambda task: task.created_at, reverse=True)

    async def get_stale_tasks(self, threshold_s: float) -> list[AsyncTask]:
        cutoff = self._clock() - timedelta(seconds=threshold_s)
        return [
            task
            for task in self._tasks.values()
            if task.status == "needs_input" and not task.reminder_sent and task.updated_at < cutoff
        ]

    async def upsert_heartbeat(self, node_id: str, metadata: dict[str, Any] | None = None) -> bool:
        self._heartbeats[node_id] = (self._clock(), dict(metadata or {}))
        return True

    async def get_node_status(self, node_id: str, max_age_s: float) -> NodeStatus:
        entry = self._heartbeats.get(node_id)
        if entry is None:
            return NodeStatus(online=False)
        last_heartbeat, _ = entry
        age_s = (self._clock() - last_heartbeat).total_seconds()
        return NodeStatus(online=age_s < max_age_s, last_heartbeat=last_heartbeat)

    def _first_match(self, kind: MemoryKind, search: str) -> int | None:
        needle = search.lower()
        for index, item in enumerate(self._memory):
            if item.kind == kind and needle in item.content.lower():
                return index
        return None
