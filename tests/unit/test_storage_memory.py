from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from fakes import T0, MutableClock
from hybrid_relay.storage.context import load_prompt_context, time_ago
from hybrid_relay.storage.disabled import DisabledRelayStore
from hybrid_relay.storage.memory import InMemoryRelayStore
from hybrid_relay.storage.models import DEFAULT_TASK_OPTIONS, AsyncTask
from hybrid_relay.storage.transitions import is_legal_transition

PENDING = {
    "status": "needs_input",
    "pending_question": "Send it?",
    "pending_options": list(DEFAULT_TASK_OPTIONS),
}


def _paused_task(store: InMemoryRelayStore) -> AsyncTask:
    async def scenario() -> AsyncTask:
        task = await store.create_task("chat-1", "draft the invoice")
        assert task is not None
        paused = await store.update_task(task.task_id, PENDING)
        assert paused is not None
        return paused

    return asyncio.run(scenario())


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        ("pending", "running", True),
        ("running", "needs_input", True),
        ("running", "completed", True),
        ("needs_input", "running", True),
        ("needs_input", "cancelled", True),
        ("needs_input", "completed", False),
        ("completed", "running", False),
        ("cancelled", "needs_input", False),
        ("failed", "failed", True),
    ],
)
def test_transition_table(current: str, target: str, allowed: bool) -> None:
    assert is_legal_transition(current, target) is allowed


def test_create_task_starts_running() -> None:
    store = InMemoryRelayStore()
    task = asyncio.run(store.create_task("chat-1", "hello", thread_id=7, processed_by="vps"))

    assert task is not None
    assert task.status == "running"
    assert task.thread_id == 7
    assert task.processed_by == "vps"
    assert task.pending_question is None


def test_illegal_transition_is_rejected() -> None:
    store = InMemoryRelayStore()
    task = _paused_task(store)

    async def scenario() -> tuple[AsyncTask | None, AsyncTask | None]:
        rejected = await store.update_task(task.task_id, {"status": "completed", "result": "x"})
        return rejected, await store.get_task(task.task_id)

    rejected, current = asyncio.run(scenario())
    assert rejected is None
    assert current is not None and current.status == "needs_input"


def test_question_and_options_travel_together() -> None:
    store = InMemoryRelayStore()

    async def scenario() -> AsyncTask | None:
        task = await store.create_task("chat-1", "hello")
        assert task is not None
        return await store.update_task(
            task.task_id, {"status": "needs_input", "pending_question": "Sure?"}
        )

    assert asyncio.run(scenario()) is None


def test_conditional_update_has_one_winner() -> None:
    store = InMemoryRelayStore()
    task = _paused_task(store)
    resume = {"status": "running", "pending_question": None, "pending_options": None}

    async def scenario() -> list[AsyncTask | None]:
        return await asyncio.gather(
            *(
                store.update_task(task.task_id, resume, expected={"status": "needs_input"})
                for _ in range(5)
            )
        )

    results = asyncio.run(scenario())
    assert sum(result is not None for result in results) == 1


def test_unknown_fields_are_rejected() -> None:
    store = InMemoryRelayStore()

    async def scenario() -> AsyncTask | None:
        task = await store.create_task("chat-1", "hello")
        assert task is not None
        return await store.update_task(task.task_id, {"chat_id": "other"})

    assert asyncio.run(scenario()) is None


def test_memory_mutations_hit_first_match() -> None:
    store = InMemoryRelayStore()

    async def scenario() -> tuple[list[str], list[str], bool]:
        await store.add_memory("goal", "Ship the gym plan")
        await store.add_memory("goal", "Ship the budget")
        await store.add_memory("fact", "Prefers tea")
        assert await store.complete_goal("ship")
        goals = [item.content for item in await store.get_memory("goal")]
        done = [item.content for item in await store.get_memory("completed_goal")]
        missing = await store.delete_fact("coffee")
        return goals, done, missing

    goals, done, missing = asyncio.run(scenario())
    assert goals == ["Ship the budget"]
    assert done == ["Ship the gym plan"]
    assert missing is False


def test_recent_messages_are_chronological_and_limited() -> None:
    store = InMemoryRelayStore()

    async def scenario() -> list[str]:
        for index in range(5):
            await store.save_message("chat-1", "user", f"m{index}")
        await store.save_message("chat-2", "user", "other")
        return [item.content for item in await store.get_recent_messages("chat-1", 3)]

    assert asyncio.run(scenario()) == ["m2", "m3", "m4"]


def test_stale_tasks_respect_threshold_and_reminder_flag(clock: MutableClock) -> None:
    store = InMemoryRelayStore(clock=clock)
    task = _paused_task(store)

    async def scenario() -> tuple[int, int, int]:
        clock.now = T0 + timedelta(hours=1)
        early = len(await store.get_stale_tasks(7200))
        clock.now = T0 + timedelta(hours=2, minutes=1)
        due = len(await store.get_stale_tasks(7200))
        await store.update_task(task.task_id, {"reminder_sent": True})
        after = len(await store.get_stale_tasks(7200))
        return early, due, after

    assert asyncio.run(scenario()) == (0, 1, 0)


def test_list_tasks_filters_and_sorts_newest_first(clock: MutableClock) -> None:
    store = InMemoryRelayStore(clock=clock)

    async def scenario() -> list[str]:
        first = await store.create_task("chat-1", "first")
        clock.now = T0 + timedelta(minutes=1)
        await store.create_task("chat-1", "second")
        await store.create_task("chat-2", "elsewhere")
        assert first is not None
        await store.update_task(first.task_id, {"status": "completed", "result": "ok"})
        tasks = await store.list_tasks("chat-1", statuses=("running",))
        return [task.original_prompt for task in tasks]

    assert asyncio.run(scenario()) == ["second"]


def test_prompt_context_includes_memory_and_history(clock: MutableClock) -> None:
    store = InMemoryRelayStore(clock=clock)

    async def scenario() -> str:
        await store.add_memory("fact", "Lives in Porto")
        await store.add_memory("goal", "Run a 10k", deadline=T0 + timedelta(days=30))
        await store.save_message("chat-1", "user", "hello")
        await store.save_message("chat-1", "assistant", "hi there")
        return await load_prompt_context(
            store, "chat-1", message_limit=10, now=T0 + timedelta(minutes=5)
        )

    context = asyncio.run(scenario())
    assert "**Known Facts:**\n- Lives in Porto" in context
    assert "1. Run a 10k (due: 2026-04-01)" in context
    assert "[5 minutes ago] User: hello" in context
    assert "[5 minutes ago] Bot: hi there" in context


def test_time_ago_buckets() -> None:
    assert time_ago(T0, T0 + timedelta(seconds=30)) == "just now"
    assert time_ago(T0, T0 + timedelta(minutes=1)) == "1 minute ago"
    assert time_ago(T0, T0 + timedelta(hours=3)) == "3 hours ago"
    assert time_ago(T0, T0 + timedelta(days=45)) == "2026-03-02"


def test_disabled_store_degrades_quietly() -> None:
    store = DisabledRelayStore()

    async def scenario() -> tuple[bool, AsyncTask | None, list[AsyncTask], bool]:
        saved = await store.save_message("chat-1", "user", "hello")
        task = await store.create_task("chat-1", "hello")
        stale = await store.get_stale_tasks(0)
        status = await store.get_node_status("local", 90)
        return saved, task, stale, status.online

    assert asyncio.run(scenario()) == (False, None, [], False)
