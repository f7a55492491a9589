"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime, timedelta
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
from hybrid_relay.storage.transitions import apply_task_changes

logger = logging.getLogger(__name__)

_MIGRATIONS = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        id BIGSERIAL PRIMARY KEY,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        chat_id TEXT NOT NULL,
        role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
        content TEXT NOT NULL,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_chat_id ON messages (chat_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages (created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS memory (
        id BIGSERIAL PRIMARY KEY,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        type TEXT NOT NULL CHECK (type IN ('fact', 'goal', 'completed_goal', 'preference')),
        content TEXT NOT NULL,
        deadline TIMESTAMPTZ,
        completed_at TIMESTAMPTZ,
        priority INTEGER NOT NULL DEFAULT 0,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_memory_type ON memory (type)",
    """
    CREATE TABLE IF NOT EXISTS async_tasks (
        id UUID PRIMARY KEY,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        chat_id TEXT NOT NULL,
        original_prompt TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        result TEXT,
        session_id TEXT,
        current_step TEXT,
        pending_question TEXT,
        pending_options JSONB,
        user_response TEXT,
        thread_id INTEGER,
        processed_by TEXT,
        reminder_sent BOOLEAN NOT NULL DEFAULT FALSE,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb
    )
    """,
    # Tables created before cancellation existed carry a narrower status check.
    "ALTER TABLE async_tasks DROP CONSTRAINT IF EXISTS async_tasks_status_check",
    """
    ALTER TABLE async_tasks ADD CONSTRAINT async_tasks_status_check
    CHECK (status IN ('pending', 'running', 'needs_input', 'completed', 'failed', 'cancelled'))
    """,
    "CREATE INDEX IF NOT EXISTS idx_async_tasks_chat_id ON async_tasks (chat_id)",
    "CREATE INDEX IF NOT EXISTS idx_async_tasks_status ON async_tasks (status)",
    "CREATE INDEX IF NOT EXISTS idx_async_tasks_updated_at ON async_tasks (updated_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS node_heartbeat (
        node_id TEXT PRIMARY KEY,
        last_heartbeat TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb
    )
    """,
)


class PostgresRelayStore:
    """Persist conversation, memory, tasks and heartbeats in PostgreSQL.

    Failures are logged and reported as empty/false/null results so a
    database outage degrades the relay instead of stopping it.
    """

    enabled = True

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("HYBRID_RELAY_DATABASE_URL is required")
        self.database_url = database_url
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    async def migrate(self) -> None:
        try:
            async with await self._connect() as conn:
                for statement in _MIGRATIONS:
                    await conn.execute(statement)
        except self._psycopg.Error as exc:
            logger.warning("store event=migrate_failed error=%s", exc)

    async def save_message(
        self,
        chat_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        try:
            async with await self._connect() as conn:
                await conn.execute(
                    """
                    INSERT INTO messages (chat_id, role, content, metadata, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (chat_id, role, content, self._json_wrapper(metadata or {}), _utc_now()),
                )
        except self._psycopg.Error as exc:
            logger.warning("store event=save_message_failed chat_id=%s error=%s", chat_id, exc)
            return False
        return True

    async def get_recent_messages(self, chat_id: str, limit: int = 10) -> list[ChatMessage]:
        if limit <= 0:
            return []
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(
                    """
                    SELECT * FROM messages
                    WHERE chat_id = %s
                    ORDER BY created_at DESC, id DESC
                    LIMIT %s
                    """,
                    (chat_id, limit),
                )
                rows = await cursor.fetchall()
        except self._psycopg.Error as exc:
            logger.warning("store event=recent_messages_failed chat_id=%s error=%s", chat_id, exc)
            return []
        return [self._row_to_message(row) for row in reversed(rows)]

    async def add_memory(
        self,
        kind: MemoryKind,
        content: str,
        deadline: datetime | None = None,
    ) -> bool:
        now = _utc_now()
        try:
            async with await self._connect() as conn:
                await conn.execute(
                    """
                    INSERT INTO memory (type, content, deadline, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (kind, content, deadline, now, now),
                )
        except self._psycopg.Error as exc:
            logger.warning("store event=add_memory_failed kind=%s error=%s", kind, exc)
            return False
        return True

    async def get_memory(self, kind: MemoryKind) -> list[MemoryItem]:
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM memory WHERE type = %s ORDER BY created_at, id",
                    (kind,),
                )
                rows = await cursor.fetchall()
        except self._psycopg.Error as exc:
            logger.warning("store event=get_memory_failed kind=%s error=%s", kind, exc)
            return []
        return [self._row_to_memory(row) for row in rows]

    async def complete_goal(self, search: str) -> bool:
        now = _utc_now()
        return await self._mutate_first_match(
            """
            UPDATE memory
            SET type = 'completed_goal', completed_at = %s, updated_at = %s
            WHERE id = (
                SELECT id FROM memory
                WHERE type = 'goal' AND content ILIKE %s
                ORDER BY created_at, id
                LIMIT 1
            )
            RETURNING id
            """,
            (now, now, _like_pattern(search)),
        )

    async def cancel_goal(self, search: str) -> bool:
        return await self._delete_first_match("goal", search)

    async def delete_fact(self, search: str) -> bool:
        return await self._delete_first_match("fact", search)

    async def create_task(
        self,
        chat_id: str,
        prompt: str,
        *,
        thread_id: int | None = None,
        processed_by: str | None = None,
        status: TaskStatus = "running",
    ) -> AsyncTask | None:
        now = _utc_now()
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(
                    """
                    INSERT INTO async_tasks (
                        id, chat_id, original_prompt, status, thread_id,
                        processed_by, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (uuid.uuid4(), chat_id, prompt, status, thread_id, processed_by, now, now),
                )
                row = await cursor.fetchone()
        except self._psycopg.Error as exc:
            logger.warning("store event=create_task_failed chat_id=%s error=%s", chat_id, exc)
            return None
        if row is None:
            return None
        return self._row_to_task(row)

    async def update_task(
        self,
        task_id: str,
        changes: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> AsyncTask | None:
        try:
            async with await self._connect() as conn:
                async with conn.transaction():
                    cursor = await conn.execute(
                        "SELECT * FROM async_tasks WHERE id::text = %s FOR UPDATE",
                        (task_id,),
                    )
                    row = await cursor.fetchone()
                    if row is None:
                        return None
                    current = self._row_to_task(row)
                    updated = apply_task_changes(
                        current, changes, expected=expected, now=_utc_now()
                    )
                    if updated is None:
                        return None
                    await conn.execute(
                        """
                        UPDATE async_tasks
                        SET status = %s,
                            result = %s,
                            session_id = %s,
                            current_step = %s,
                            pending_question = %s,
                            pending_options = %s,
                            user_response = %s,
                            processed_by = %s,
                            reminder_sent = %s,
                            metadata = %s,
                            updated_at = %s
                        WHERE id::text = %s
                        """,
                        (
                            updated.status,
                            updated.result,
                            updated.session_id,
                            updated.current_step,
                            updated.pending_question,
                            (
                                self._json_wrapper(
                                    [option.model_dump() for option in updated.pending_options]
                                )
                                if updated.pending_options is not None
                                else None
                            ),
                            updated.user_response,
                            updated.processed_by,
                            updated.reminder_sent,
                            self._json_wrapper(updated.metadata),
                            updated.updated_at,
                            task_id,
                        ),
                    )
        except self._psycopg.Error as exc:
            logger.warning("store event=update_task_failed task_id=%s error=%s", task_id, exc)
            return None
        return updated

    async def get_task(self, task_id: str) -> AsyncTask | None:
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM async_tasks WHERE id::text = %s",
                    (task_id,),
                )
                row = await cursor.fetchone()
        except self._psycopg.Error as exc:
            logger.warning("store event=get_task_failed task_id=%s error=%s", task_id, exc)
            return None
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        chat_id: str | None = None,
        statuses: tuple[TaskStatus, ...] | None = None,
    ) -> list[AsyncTask]:
        clauses: list[str] = []
        params: list[Any] = []
        if chat_id is not None:
            clauses.append("chat_id = %s")
            params.append(chat_id)
        if statuses is not None:
            clauses.append("status = ANY(%s)")
            params.append(list(statuses))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(
                    f"SELECT * FROM async_tasks {where} ORDER BY created_at DESC",
                    tuple(params),
                )
                rows = await cursor.fetchall()
        except self._psycopg.Error as exc:
            logger.warning("store event=list_tasks_failed chat_id=%s error=%s", chat_id, exc)
            return []
        return [self._row_to_task(row) for row in rows]

    async def get_stale_tasks(self, threshold_s: float) -> list[AsyncTask]:
        cutoff = _utc_now() - timedelta(seconds=threshold_s)
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(
                    """
                    SELECT * FROM async_tasks
                    WHERE status = 'needs_input'
                      AND reminder_sent = FALSE
                      AND updated_at < %s
                    ORDER BY updated_at
                    """,
                    (cutoff,),
                )
                rows = await cursor.fetchall()
        except self._psycopg.Error as exc:
            logger.warning("store event=stale_tasks_failed error=%s", exc)
            return []
        return [self._row_to_task(row) for row in rows]

    async def upsert_heartbeat(self, node_id: str, metadata: dict[str, Any] | None = None) -> bool:
        try:
            async with await self._connect() as conn:
                await conn.execute(
                    """
                    INSERT INTO node_heartbeat (node_id, last_heartbeat, metadata)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (node_id) DO UPDATE
                    SET last_heartbeat = EXCLUDED.last_heartbeat,
                        metadata = EXCLUDED.metadata
                    """,
                    (node_id, _utc_now(), self._json_wrapper(metadata or {})),
                )
        except self._psycopg.Error as exc:
            logger.warning("store event=heartbeat_failed node=%s error=%s", node_id, exc)
            return False
        return True

    async def get_node_status(self, node_id: str, max_age_s: float) -> NodeStatus:
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(
                    "SELECT last_heartbeat FROM node_heartbeat WHERE node_id = %s",
                    (node_id,),
                )
                row = await cursor.fetchone()
        except self._psycopg.Error as exc:
            logger.warning("store event=node_status_failed node=%s error=%s", node_id, exc)
            return NodeStatus(online=False)
        if row is None or row.get("last_heartbeat") is None:
            return NodeStatus(online=False)
        last_heartbeat = self._parse_datetime(row["last_heartbeat"])
        age_s = (_utc_now() - last_heartbeat).total_seconds()
        return NodeStatus(online=age_s < max_age_s, last_heartbeat=last_heartbeat)

    async def _delete_first_match(self, kind: MemoryKind, search: str) -> bool:
        return await self._mutate_first_match(
            """
            DELETE FROM memory
            WHERE id = (
                SELECT id FROM memory
                WHERE type = %s AND content ILIKE %s
                ORDER BY created_at, id
                LIMIT 1
            )
            RETURNING id
            """,
            (kind, _like_pattern(search)),
        )

    async def _mutate_first_match(self, query: str, params: tuple[Any, ...]) -> bool:
        try:
            async with await self._connect() as conn:
                cursor = await conn.execute(query, params)
                row = await cursor.fetchone()
        except self._psycopg.Error as exc:
            logger.warning("store event=memory_mutation_failed error=%s", exc)
            return False
        return row is not None

    async def _connect(self) -> Any:
        return await self._psycopg.AsyncConnection.connect(
            self.database_url, row_factory=self._dict_row
        )

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json(raw: Any) -> Any:
        if isinstance(raw, str):
            return json.loads(raw)
        return raw

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_message(cls, row: Any) -> ChatMessage:
        return ChatMessage(
            id=int(row["id"]),
            chat_id=row["chat_id"],
            role=row["role"],
            content=row["content"],
            metadata=cls._parse_json(row.get("metadata")) or {},
            created_at=cls._parse_datetime(row["created_at"]),
        )

    @classmethod
    def _row_to_memory(cls, row: Any) -> MemoryItem:
        return MemoryItem(
            id=int(row["id"]),
            kind=row["type"],
            content=row["content"],
            deadline=row.get("deadline"),
            completed_at=row.get("completed_at"),
            priority=row.get("priority") or 0,
            created_at=cls._parse_datetime(row["created_at"]),
        )

    @classmethod
    def _row_to_task(cls, row: Any) -> AsyncTask:
        return AsyncTask(
            task_id=str(row["id"]),
            chat_id=row["chat_id"],
            original_prompt=row["original_prompt"],
            status=row["status"],
            result=row.get("result"),
            session_id=row.get("session_id"),
            current_step=row.get("current_step"),
            pending_question=row.get("pending_question"),
            pending_options=cls._parse_json(row.get("pending_options")),
            user_response=row.get("user_response"),
            thread_id=row.get("thread_id"),
            processed_by=row.get("processed_by"),
            reminder_sent=bool(row.get("reminder_sent")),
            metadata=cls._parse_json(row.get("metadata")) or {},
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _like_pattern(search: str) -> str:
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
