"""Gateway controller: routes each inbound message to the local node or a cloud engine."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Callable, Literal

from hybrid_relay.engine.base import ExecutionEngine, ExecutionRequest, ResumeState
from hybrid_relay.engine.budget import DailyBudget
from hybrid_relay.engine.outcome import (
    BUDGET_EXHAUSTED_MESSAGE,
    GENERIC_FAILURE_MESSAGE,
    NO_RESPONSE_MESSAGE,
    TIMEOUT_MESSAGE,
    Done,
    ExecutionOutcome,
    Failed,
    MaxIterations,
    Suspended,
)
from hybrid_relay.gateway.calls import CallTracker
from hybrid_relay.gateway.local_node import LocalNodeClient
from hybrid_relay.gateway.media import ImageDescriber, InboundMedia, Transcriber
from hybrid_relay.gateway.messaging import MessagingGateway
from hybrid_relay.health.monitor import HealthMonitor
from hybrid_relay.memory.intents import process_intents, strip_intent_tags
from hybrid_relay.routing.model_router import ModelRouter, ModelSelection, ModelTier
from hybrid_relay.storage.base import RelayStore
from hybrid_relay.storage.models import AsyncTask
from hybrid_relay.tasks.queue import TaskQueue
from hybrid_relay.tools.voice import VoiceService

logger = logging.getLogger(__name__)

InboundKind = Literal["text", "voice", "image"]

TASK_NOT_FOUND_MESSAGE = "Task not found."
TASK_CANCELLED_MESSAGE = "Task cancelled."
TASK_ALREADY_HANDLED_MESSAGE = "This question was already answered."
RESUMING_TEMPLATE = 'Got it: "{choice}". Resuming...'
FRESH_CONTINUE_TEMPLATE = (
    "Continue this task: {prompt}\n\nPrevious context: {step}\n\nUser chose: {choice}"
)
CALL_SUMMARY_CHARS = 3000
UNSUPPORTED_MEDIA_MESSAGE = "I can't handle that kind of message yet."
MEDIA_FAILED_TEMPLATE = "Could not process that {kind} message."


@dataclass(frozen=True)
class InboundMessage:
    chat_id: str
    text: str
    thread_id: int | None = None
    kind: InboundKind = "text"


@dataclass(frozen=True)
class ControllerConfig:
    node_id: str = "vps"
    local_node_id: str = "local"
    bot_name: str = "Relay"
    user_timezone: str = "UTC"
    engine_timeout_s: float = 300.0
    use_agent_runtime: bool = False
    heartbeat_interval_s: float = 30.0
    stale_task_scan_interval_s: float = 900.0


class GatewayController:
    """Single owner of the relay's long-lived state and background loops.

    Messages from one chat are handled strictly in arrival order; different
    chats proceed concurrently.
    """

    def __init__(
        self,
        *,
        config: ControllerConfig,
        store: RelayStore,
        messaging: MessagingGateway,
        monitor: HealthMonitor,
        router: ModelRouter,
        budget: DailyBudget,
        task_queue: TaskQueue,
        direct_engine: ExecutionEngine,
        local_node: LocalNodeClient,
        call_tracker: CallTracker,
        agent_engine: ExecutionEngine | None = None,
        voice: VoiceService | None = None,
        transcriber: Transcriber | None = None,
        image_describer: ImageDescriber | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.messaging = messaging
        self.monitor = monitor
        self.router = router
        self.budget = budget
        self.task_queue = task_queue
        self.direct_engine = direct_engine
        self.agent_engine = agent_engine
        self.local_node = local_node
        self.call_tracker = call_tracker
        self.voice = voice
        self.transcriber = transcriber
        self.image_describer = image_describer
        self._clock = clock or (lambda: datetime.now(UTC))
        self._chat_locks: dict[str, asyncio.Lock] = {}
        self._chat_users: Counter[str] = Counter()
        self._loops: list[asyncio.Task[None]] = []
        self.started_at = self._clock()

    async def start(self) -> None:
        await self.store.migrate()
        self.monitor.start()
        self._loops = [
            asyncio.create_task(self._heartbeat_loop(), name="heartbeat"),
            asyncio.create_task(self._stale_task_loop(), name="stale-tasks"),
        ]
        logger.info(
            "controller event=started node=%s store_enabled=%s agent_runtime=%s",
            self.config.node_id,
            self.store.enabled,
            self.agent_engine is not None and self.config.use_agent_runtime,
        )

    async def stop(self) -> None:
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []
        await self.monitor.stop()
        await self.call_tracker.stop()
        logger.info("controller event=stopped node=%s", self.config.node_id)

    @asynccontextmanager
    async def _chat_turn(self, chat_id: str) -> AsyncIterator[None]:
        # The lock is dropped once its last holder or waiter leaves.
        lock = self._chat_locks.setdefault(chat_id, asyncio.Lock())
        self._chat_users[chat_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._chat_users[chat_id] -= 1
            if self._chat_users[chat_id] <= 0:
                del self._chat_users[chat_id]
                self._chat_locks.pop(chat_id, None)

    async def handle_message(self, message: InboundMessage) -> None:
        async with self._chat_turn(message.chat_id):
            try:
                await self._handle_message_locked(message)
            except Exception:
                logger.exception("controller event=message_failed chat_id=%s", message.chat_id)
                await self.messaging.send_text(
                    message.chat_id, GENERIC_FAILURE_MESSAGE, thread_id=message.thread_id
                )

    async def handle_callback(self, token: str, chat_id: str, message_id: int) -> None:
        async with self._chat_turn(chat_id):
            try:
                await self._handle_callback_locked(token, chat_id, message_id)
            except Exception:
                logger.exception("controller event=callback_failed chat_id=%s", chat_id)
                await self.messaging.send_text(chat_id, GENERIC_FAILURE_MESSAGE)

    async def handle_media(self, media: InboundMedia) -> None:
        """Turn a voice note or photo into text, then route it like a message."""
        async with self._chat_turn(media.chat_id):
            try:
                message = await self._resolve_media(media)
                if message is not None:
                    await self._handle_message_locked(message)
            except Exception:
                logger.exception("controller event=media_failed chat_id=%s", media.chat_id)
                await self.messaging.send_text(
                    media.chat_id, GENERIC_FAILURE_MESSAGE, thread_id=media.thread_id
                )

    async def handle_call_transcript(
        self, conversation_id: str, chat_id: str, transcript: str
    ) -> bool:
        if not self.call_tracker.claim(conversation_id):
            logger.info("calls event=duplicate id=%s", conversation_id)
            return False
        await self.store.save_message(
            chat_id,
            "assistant",
            transcript,
            {"type": "call_transcript", "conversation_id": conversation_id},
        )
        summary = transcript[:CALL_SUMMARY_CHARS]
        await self.messaging.send_text(chat_id, f"*Call summary*\n\n{summary}")
        logger.info("calls event=processed id=%s", conversation_id)
        return True

    def status_snapshot(self) -> dict[str, Any]:
        health = self.monitor.snapshot()
        now = self._clock()
        return {
            "node": self.config.node_id,
            "local_alive": health.is_alive,
            "last_check": health.last_check.isoformat() if health.last_check else None,
            "last_check_age_s": (
                round((now - health.last_check).total_seconds(), 1) if health.last_check else None
            ),
            "consecutive_failures": health.consecutive_failures,
            "budget_remaining_usd": round(self.budget.remaining(), 4),
            "budget_spent_usd": round(self.budget.spent(), 4),
            "store_enabled": self.store.enabled,
            "uptime_s": round((now - self.started_at).total_seconds(), 1),
        }

    async def _resolve_media(self, media: InboundMedia) -> InboundMessage | None:
        if media.kind == "voice" and self.transcriber is not None and media.file_id:
            text = await self.transcriber.transcribe(media.file_id)
        elif media.kind == "image" and self.image_describer is not None and media.file_id:
            text = await self.image_describer.describe(media.file_id, media.caption)
            if text and media.caption:
                text = f"{media.caption}\n\n{text}"
        else:
            logger.info("controller event=media_unsupported kind=%s", media.kind)
            await self.messaging.send_text(
                media.chat_id, UNSUPPORTED_MEDIA_MESSAGE, thread_id=media.thread_id
            )
            return None

        if not text or not text.strip():
            logger.warning("controller event=media_empty kind=%s", media.kind)
            await self.messaging.send_text(
                media.chat_id,
                MEDIA_FAILED_TEMPLATE.format(kind=media.kind),
                thread_id=media.thread_id,
            )
            return None
        return InboundMessage(
            chat_id=media.chat_id, text=text, thread_id=media.thread_id, kind=media.kind
        )

    async def _handle_message_locked(self, message: InboundMessage) -> None:
        text = message.text.strip()
        if message.kind == "text" and text.startswith("/"):
            await self._handle_command(message, text)
            return

        prompt = _format_prompt(message)
        await self.store.save_message(
            message.chat_id,
            "user",
            prompt,
            {"thread_id": message.thread_id, "type": message.kind},
        )

        if self.monitor.is_alive():
            local = await self.local_node.forward(prompt, message.chat_id, message.thread_id)
            if local.accepted_async:
                return
            if local.success and local.response:
                logger.info("controller event=routed target=local chat_id=%s", message.chat_id)
                await self._deliver(
                    message.chat_id,
                    local.response,
                    thread_id=message.thread_id,
                    processed_by=self.config.local_node_id,
                )
                return
            logger.info(
                "controller event=local_fallback chat_id=%s error=%s", message.chat_id, local.error
            )

        reply = await self._process_in_cloud(prompt, message.chat_id, message.thread_id)
        if reply:
            await self._deliver(
                message.chat_id,
                reply,
                thread_id=message.thread_id,
                processed_by=self.config.node_id,
            )

    async def _handle_command(self, message: InboundMessage, text: str) -> None:
        command = text.split()[0].split("@")[0].lower()
        if command == "/start":
            state = "online" if self.monitor.is_alive() else "offline"
            reply = f"Hi! I'm {self.config.bot_name}. Local machine is {state}; send me anything."
        elif command == "/status":
            snapshot = self.status_snapshot()
            age = snapshot["last_check_age_s"]
            reply = "\n".join(
                [
                    "*Status*",
                    f"Local node: {'alive' if snapshot['local_alive'] else 'down'}",
                    f"Last check: {f'{age:.0f}s ago' if age is not None else 'never'}",
                    f"Consecutive failures: {snapshot['consecutive_failures']}",
                    f"Node: {snapshot['node']}",
                    f"Budget remaining: ${snapshot['budget_remaining_usd']:.2f}",
                ]
            )
        elif command == "/tasks":
            reply = await self.task_queue.format_task_status(message.chat_id)
        else:
            reply = "Unknown command. Try /status or /tasks."
        await self.messaging.send_text(message.chat_id, reply, thread_id=message.thread_id)

    async def _process_in_cloud(self, prompt: str, chat_id: str, thread_id: int | None) -> str:
        remaining = self.budget.remaining()
        if remaining <= 0:
            logger.info("controller event=budget_exhausted chat_id=%s", chat_id)
            return BUDGET_EXHAUSTED_MESSAGE

        selection = self.router.select_model(prompt, remaining)
        request = ExecutionRequest(
            prompt=prompt, chat_id=chat_id, selection=selection, thread_id=thread_id
        )
        outcome = await self._run_with_fallback(request)
        return await self._settle(outcome, chat_id=chat_id, prompt=prompt, thread_id=thread_id)

    def _engines_for(self, selection: ModelSelection) -> list[ExecutionEngine]:
        if (
            self.config.use_agent_runtime
            and self.agent_engine is not None
            and selection.tier is not ModelTier.CHEAP
        ):
            return [self.agent_engine, self.direct_engine]
        return [self.direct_engine]

    async def _run_with_fallback(self, request: ExecutionRequest) -> ExecutionOutcome:
        engines = self._engines_for(request.selection)
        for index, engine in enumerate(engines):
            is_last = index == len(engines) - 1
            logger.info(
                "controller event=engine_start engine=%s tier=%s model=%s",
                engine.name,
                request.selection.tier.value,
                request.selection.model_id,
            )
            try:
                outcome = await asyncio.wait_for(
                    engine.run(request), timeout=self.config.engine_timeout_s
                )
            except asyncio.TimeoutError:
                logger.warning("controller event=engine_timeout engine=%s", engine.name)
                return Failed(user_message=TIMEOUT_MESSAGE, reason="timeout")
            except Exception:
                logger.exception("controller event=engine_error engine=%s", engine.name)
                if is_last:
                    return Failed(user_message=GENERIC_FAILURE_MESSAGE, reason="engine_error")
                continue
            if isinstance(outcome, Done) and not outcome.text.strip():
                if not is_last:
                    logger.info("controller event=empty_result engine=%s", engine.name)
                    continue
                return Done(text=NO_RESPONSE_MESSAGE, usage=outcome.usage)
            return outcome
        return Failed(user_message=GENERIC_FAILURE_MESSAGE, reason="no_engine")

    async def _settle(
        self,
        outcome: ExecutionOutcome,
        *,
        chat_id: str,
        prompt: str,
        thread_id: int | None,
        task_id: str | None = None,
    ) -> str:
        """Apply ``outcome`` to the task queue and return the text still to send."""
        if isinstance(outcome, Suspended):
            return await self._suspend(
                outcome, chat_id=chat_id, prompt=prompt, thread_id=thread_id, task_id=task_id
            )

        self._poll_started_calls(outcome, chat_id)
        if isinstance(outcome, Done):
            if task_id is not None:
                await self.task_queue.complete(task_id, outcome.text)
            return outcome.text
        if isinstance(outcome, MaxIterations):
            if task_id is not None:
                await self.task_queue.fail(task_id, outcome.text)
            return outcome.text
        if task_id is not None:
            await self.task_queue.fail(task_id, outcome.reason)
        logger.info("controller event=failed reason=%s chat_id=%s", outcome.reason, chat_id)
        return outcome.user_message

    async def _suspend(
        self,
        outcome: Suspended,
        *,
        chat_id: str,
        prompt: str,
        thread_id: int | None,
        task_id: str | None,
    ) -> str:
        self._poll_started_calls(outcome, chat_id)
        if task_id is None:
            task_id = await self.task_queue.create_and_pause(
                chat_id,
                prompt,
                outcome.question,
                outcome.options,
                outcome.resume_payload,
                thread_id=thread_id,
                processed_by=self.config.node_id,
            )
        else:
            paused = await self.task_queue.pause_existing(
                task_id, outcome.question, outcome.options, outcome.resume_payload
            )
            if paused is None:
                await self.task_queue.fail(task_id, "could not record the pending question")
                task_id = None

        if task_id is None:
            # No way to resume without a stored task; show the question as plain text.
            return outcome.question
        sent = await self.task_queue.send_question(
            task_id, chat_id, outcome.question, outcome.options, thread_id=thread_id
        )
        if not sent:
            return outcome.question
        await self.store.save_message(
            chat_id,
            "assistant",
            outcome.question,
            {"type": "question", "task_id": task_id, "processed_by": self.config.node_id},
        )
        return ""

    async def _handle_callback_locked(self, token: str, chat_id: str, message_id: int) -> None:
        result = await self.task_queue.handle_callback(token)
        if result is None:
            await self.messaging.edit_text(chat_id, message_id, TASK_NOT_FOUND_MESSAGE)
            return
        if result.cancelled:
            await self.messaging.edit_text(chat_id, message_id, TASK_CANCELLED_MESSAGE)
            return

        task = await self.task_queue.claim_for_resume(result.task_id, result.choice)
        if task is None:
            await self.messaging.edit_text(chat_id, message_id, TASK_ALREADY_HANDLED_MESSAGE)
            return
        await self.messaging.edit_text(
            chat_id, message_id, RESUMING_TEMPLATE.format(choice=result.choice)
        )
        logger.info(
            "controller event=resume task_id=%s engine=%s",
            task.task_id,
            task.metadata.get("engine"),
        )

        outcome = await self._resume(task, result.choice, previous_step=result.task.current_step)
        reply = await self._settle(
            outcome,
            chat_id=task.chat_id,
            prompt=task.original_prompt,
            thread_id=task.thread_id,
            task_id=task.task_id,
        )
        if reply:
            await self._deliver(
                task.chat_id,
                reply,
                thread_id=task.thread_id,
                processed_by=self.config.node_id,
                extra={"resumed_from_task": task.task_id},
            )

    async def _resume(
        self, task: AsyncTask, choice: str, *, previous_step: str | None = None
    ) -> ExecutionOutcome:
        remaining = self.budget.remaining()
        if remaining <= 0:
            return Failed(user_message=BUDGET_EXHAUSTED_MESSAGE, reason="budget_exhausted")

        payload = task.metadata
        selection = self.router.select_model(task.original_prompt, remaining)
        request = ExecutionRequest(
            prompt=task.original_prompt,
            chat_id=task.chat_id,
            selection=selection,
            thread_id=task.thread_id,
            resume=ResumeState(task_id=task.task_id, choice=choice, payload=payload),
        )
        engine: ExecutionEngine = self.direct_engine
        resumable_session = payload.get("engine") == "agent_runtime" and payload.get("session_id")
        if resumable_session and self.agent_engine is not None:
            engine = self.agent_engine
        elif payload.get("engine") != "direct" or payload.get("messages_snapshot") is None:
            logger.info("controller event=resume_fresh task_id=%s", task.task_id)
            request = ExecutionRequest(
                prompt=FRESH_CONTINUE_TEMPLATE.format(
                    prompt=task.original_prompt, step=previous_step or "", choice=choice
                ),
                chat_id=task.chat_id,
                selection=selection,
                thread_id=task.thread_id,
            )

        try:
            outcome = await asyncio.wait_for(
                engine.run(request), timeout=self.config.engine_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning("controller event=resume_timeout task_id=%s", task.task_id)
            return Failed(user_message=TIMEOUT_MESSAGE, reason="timeout")
        except Exception:
            logger.exception("controller event=resume_error task_id=%s", task.task_id)
            return Failed(user_message=GENERIC_FAILURE_MESSAGE, reason="engine_error")
        if isinstance(outcome, Done) and not outcome.text.strip():
            return Done(text=NO_RESPONSE_MESSAGE, usage=outcome.usage)
        return outcome

    async def _deliver(
        self,
        chat_id: str,
        text: str,
        *,
        thread_id: int | None,
        processed_by: str,
        extra: dict[str, Any] | None = None,
    ) -> None:
        metadata = {"thread_id": thread_id, "processed_by": processed_by, **(extra or {})}
        await self.store.save_message(chat_id, "assistant", text, metadata)
        if processed_by == self.config.node_id:
            await process_intents(
                self.store, text, timezone=self.config.user_timezone, now=self._clock()
            )
        visible = strip_intent_tags(text) or NO_RESPONSE_MESSAGE
        await self.messaging.send_text(chat_id, visible, thread_id=thread_id)

    def _poll_started_calls(self, outcome: ExecutionOutcome, chat_id: str) -> None:
        if self.voice is None:
            return
        for conversation_id in getattr(outcome, "started_calls", []):
            self.call_tracker.start_polling(
                conversation_id, chat_id, self.voice.get_transcript, self.handle_call_transcript
            )

    async def _heartbeat_loop(self) -> None:
        while True:
            await self.store.upsert_heartbeat(self.config.node_id, {"role": "gateway"})
            await asyncio.sleep(self.config.heartbeat_interval_s)

    async def _stale_task_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.stale_task_scan_interval_s)
            try:
                await self.task_queue.check_stale_tasks()
            except Exception:
                logger.exception("controller event=stale_scan_failed")


def _format_prompt(message: InboundMessage) -> str:
    if message.kind == "voice":
        return f"[Voice message transcribed]: {message.text}"
    if message.kind == "image":
        return f"[Image]: {message.text}"
    return message.text
