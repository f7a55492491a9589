from __future__ import annotations

import asyncio
from datetime import timedelta

from fakes import T0, MutableClock, RecordingMessaging
from hybrid_relay.storage.disabled import DisabledRelayStore
from hybrid_relay.storage.memory import InMemoryRelayStore
from hybrid_relay.storage.models import DEFAULT_TASK_OPTIONS, TaskOption
from hybrid_relay.tasks.queue import (
    MAX_CALLBACK_BYTES,
    REMINDER_TEMPLATE,
    TaskQueue,
    build_callback_token,
    parse_callback_token,
)

OPTIONS = [
    TaskOption(label="Morning", value="morning"),
    TaskOption(label="Afternoon", value="afternoon"),
    TaskOption(label="Evening", value="evening"),
]


def _queue(
    clock: MutableClock | None = None,
) -> tuple[TaskQueue, InMemoryRelayStore, RecordingMessaging]:
    store = InMemoryRelayStore(clock=clock)
    messaging = RecordingMessaging()
    return TaskQueue(store, messaging, stale_threshold_s=7200), store, messaging


def _pause(queue: TaskQueue, options: list[TaskOption] = OPTIONS) -> str:
    task_id = asyncio.run(
        queue.create_and_pause(
            "chat-1",
            "book the gym",
            "When should I book it?",
            options,
            {"engine": "direct", "model": "m"},
            processed_by="vps",
        )
    )
    assert task_id is not None
    return task_id


def test_tokens_fit_the_callback_limit() -> None:
    task_id = "0f8fad5b-d9cb-469f-a165-70867728950e"
    token = build_callback_token(task_id, "é" * 40)

    assert len(token.encode("utf-8")) <= MAX_CALLBACK_BYTES
    assert parse_callback_token(token)[0] == task_id
    assert parse_callback_token(build_callback_token(task_id, "a:b")) == (task_id, "a:b")


def test_foreign_tokens_are_not_parsed() -> None:
    assert parse_callback_token("other:abc:yes") is None
    assert parse_callback_token("atask::yes") is None
    assert parse_callback_token("atask:abc") is None


def test_create_and_pause_records_question_and_payload() -> None:
    queue, store, _ = _queue()
    task_id = _pause(queue)

    task = asyncio.run(store.get_task(task_id))

    assert task is not None
    assert task.status == "needs_input"
    assert task.pending_question == "When should I book it?"
    assert task.pending_options == OPTIONS
    assert task.metadata == {"engine": "direct", "model": "m"}
    assert task.processed_by == "vps"


def test_render_two_per_row_plus_cancel() -> None:
    queue, _, _ = _queue()

    layout = queue.render_choices("task-1", OPTIONS)

    assert [[button.label for button in row] for row in layout] == [
        ["Morning", "Afternoon"],
        ["Evening"],
        ["Cancel"],
    ]
    assert layout[0][1].callback_data == "atask:task-1:afternoon"
    assert layout[2][0].callback_data == "atask:task-1:cancel"


def test_callback_resolves_choice_and_claims_once() -> None:
    queue, store, _ = _queue()
    task_id = _pause(queue)

    async def scenario():
        result = await queue.handle_callback(build_callback_token(task_id, "evening"))
        first = await queue.claim_for_resume(task_id, result.choice)
        second = await queue.claim_for_resume(task_id, result.choice)
        return result, first, second

    result, first, second = asyncio.run(scenario())
    assert result.choice == "evening"
    assert result.cancelled is False
    assert first is not None and first.status == "running"
    assert first.user_response == "evening"
    assert first.pending_question is None and first.pending_options is None
    assert second is None


def test_concurrent_claims_have_one_winner() -> None:
    queue, _, _ = _queue()
    task_id = _pause(queue)

    async def scenario():
        return await asyncio.gather(*(queue.claim_for_resume(task_id, "morning") for _ in range(4)))

    claims = asyncio.run(scenario())
    assert sum(claim is not None for claim in claims) == 1


def test_cancel_is_conditional() -> None:
    queue, store, _ = _queue()
    task_id = _pause(queue)
    token = build_callback_token(task_id, "cancel")

    async def scenario():
        first = await queue.handle_callback(token)
        second = await queue.handle_callback(token)
        return first, second, await store.get_task(task_id)

    first, second, task = asyncio.run(scenario())
    assert first.cancelled is True
    assert second.cancelled is False
    assert task.status == "cancelled"
    assert task.user_response == "cancel"


def test_unknown_task_or_token_returns_none() -> None:
    queue, _, _ = _queue()

    assert asyncio.run(queue.handle_callback("atask:missing:yes")) is None
    assert asyncio.run(queue.handle_callback("garbage")) is None


def test_long_option_values_map_back_to_full_value() -> None:
    queue, _, _ = _queue()
    long_value = "reschedule-to-the-first-available-slot-next-week"
    options = [TaskOption(label="Reschedule", value=long_value), *DEFAULT_TASK_OPTIONS]
    task_id = _pause(queue, options)
    token = queue.render_choices(task_id, options)[0][0].callback_data

    result = asyncio.run(queue.handle_callback(token))

    assert len(token.encode("utf-8")) <= MAX_CALLBACK_BYTES
    assert result.choice == long_value


def test_complete_and_fail_only_apply_to_running_tasks() -> None:
    queue, store, _ = _queue()
    task_id = _pause(queue)

    async def scenario():
        early = await queue.complete(task_id, "done")
        await queue.claim_for_resume(task_id, "morning")
        done = await queue.complete(task_id, "r" * 1500)
        late = await queue.fail(task_id, "too late")
        return early, done, late, await store.get_task(task_id)

    early, done, late, task = asyncio.run(scenario())
    assert (early, done, late) == (False, True, False)
    assert task.status == "completed"
    assert len(task.result) == 1000


def test_reminder_sent_once_after_threshold(clock: MutableClock) -> None:
    queue, _, messaging = _queue(clock)
    _pause(queue)

    async def scenario() -> list[int]:
        counts = []
        clock.now = T0 + timedelta(hours=1)
        counts.append(await queue.check_stale_tasks())
        clock.now = T0 + timedelta(hours=2, minutes=1)
        counts.append(await queue.check_stale_tasks())
        clock.now = T0 + timedelta(hours=3)
        counts.append(await queue.check_stale_tasks())
        return counts

    assert asyncio.run(scenario()) == [0, 1, 0]
    assert len(messaging.buttons) == 1
    chat_id, text, layout = messaging.buttons[0]
    assert chat_id == "chat-1"
    assert text == REMINDER_TEMPLATE.format(question="When should I book it?")
    assert layout[-1][0].label == "Cancel"


def test_concurrent_stale_scans_remind_once(clock: MutableClock) -> None:
    queue, _, messaging = _queue(clock)
    _pause(queue)
    clock.now = T0 + timedelta(hours=2, minutes=1)

    async def scenario():
        return await asyncio.gather(queue.check_stale_tasks(), queue.check_stale_tasks())

    assert sum(asyncio.run(scenario())) == 1
    assert len(messaging.buttons) == 1



def test_zero_threshold_is_honoured(clock: MutableClock) -> None:
    queue, _, messaging = _queue(clock)
    _pause(queue)
    clock.now = T0 + timedelta(seconds=1)

    assert asyncio.run(queue.check_stale_tasks(threshold_s=0)) == 1
    assert len(messaging.buttons) == 1


def test_failed_reminder_is_not_retried(clock: MutableClock) -> None:
    queue, store, messaging = _queue(clock)
    task_id = _pause(queue)
    messaging.buttons_ok = False

    async def scenario() -> list[int]:
        clock.now = T0 + timedelta(hours=2, minutes=1)
        first = await queue.check_stale_tasks()
        messaging.buttons_ok = True
        clock.now = T0 + timedelta(hours=5)
        return [first, await queue.check_stale_tasks()]

    assert asyncio.run(scenario()) == [0, 0]
    assert len(messaging.buttons) == 1
    assert asyncio.run(store.get_task(task_id)).reminder_sent is True

def test_format_task_status_lists_active_tasks() -> None:
    queue, store, _ = _queue()
    _pause(queue)
    asyncio.run(store.create_task("chat-1", "summarize inbox"))

    status = asyncio.run(queue.format_task_status("chat-1"))

    assert status.startswith("*Active tasks:*")
    assert "- Waiting: book the gym\n  Question: When should I book it?" in status
    assert "- Running: summarize inbox" in status
    assert asyncio.run(queue.format_task_status("chat-2")) == "No active tasks."


def test_disabled_store_cannot_pause() -> None:
    queue = TaskQueue(DisabledRelayStore(), RecordingMessaging())

    task_id = asyncio.run(
        queue.create_and_pause("chat-1", "p", "q?", OPTIONS, {"engine": "direct"})
    )

    assert task_id is None
    assert asyncio.run(queue.check_stale_tasks()) == 0
