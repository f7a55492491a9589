"""Human-in-the-loop task queue: park tasks on a question, resume on an answer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from hybrid_relay.gateway.messaging import Button, ButtonLayout, MessagingGateway
from hybrid_relay.storage.base import RelayStore
from hybrid_relay.storage.models import AsyncTask, TaskOption

logger = logging.getLogger(__name__)

CALLBACK_NAMESPACE = "atask"
CANCEL_VALUE = "cancel"
MAX_CALLBACK_BYTES = 64
RESULT_LIMIT = 1000
REMINDER_TEMPLATE = "Reminder: I'm still waiting on your answer: {question}"
ACTIVE_STATUSES = ("running", "needs_input")


@dataclass(frozen=True)
class CallbackResult:
    task_id: str
    choice: str
    task: AsyncTask
    cancelled: bool = False


def build_callback_token(task_id: str, value: str) -> str:
    prefix = f"{CALLBACK_NAMESPACE}:{task_id}:"
    budget = MAX_CALLBACK_BYTES - len(prefix.encode("utf-8"))
    if budget <= 0:
        raise ValueError(f"Task id too long for a callback token: {task_id}")
    encoded = value.encode("utf-8")[:budget]
    return prefix + encoded.decode("utf-8", errors="ignore")


def parse_callback_token(token: str) -> tuple[str, str] | None:
    parts = token.split(":", 2)
    if len(parts) != 3 or parts[0] != CALLBACK_NAMESPACE or not parts[1] or not parts[2]:
        return None
    return parts[1], parts[2]


class TaskQueue:
    """Persists suspended tasks and routes button answers back to them.

    Every state change is a conditional store update, so a task is resumed,
    cancelled or reminded at most once however many callbacks arrive.
    """

    def __init__(
        self,
        store: RelayStore,
        messaging: MessagingGateway,
        *,
        stale_threshold_s: float = 7200.0,
    ) -> None:
        self.store = store
        self.messaging = messaging
        self.stale_threshold_s = stale_threshold_s

    async def create_and_pause(
        self,
        chat_id: str,
        prompt: str,
        question: str,
        options: list[TaskOption],
        resume_payload: dict[str, Any],
        *,
        thread_id: int | None = None,
        processed_by: str | None = None,
    ) -> str | None:
        task = await self.store.create_task(
            chat_id, prompt, thread_id=thread_id, processed_by=processed_by, status="running"
        )
        if task is None:
            logger.warning("task_queue event=create_failed chat_id=%s", chat_id)
            return None
        paused = await self.pause_existing(task.task_id, question, options, resume_payload)
        if paused is None:
            await self.fail(task.task_id, "could not record the pending question")
            return None
        return task.task_id

    async def pause_existing(
        self,
        task_id: str,
        question: str,
        options: list[TaskOption],
        resume_payload: dict[str, Any],
    ) -> AsyncTask | None:
        paused = await self.store.update_task(
            task_id,
            {
                "status": "needs_input",
                "pending_question": question,
                "pending_options": options,
                "current_step": f"Waiting for answer: {question}",
                "session_id": resume_payload.get("session_id"),
                "metadata": resume_payload,
                "reminder_sent": False,
            },
            expected={"status": "running"},
        )
        if paused is not None:
            logger.info("task_queue event=paused task_id=%s", task_id)
        return paused

    def render_choices(self, task_id: str, options: list[TaskOption]) -> ButtonLayout:
        buttons = [
            Button(label=option.label, callback_data=build_callback_token(task_id, option.value))
            for option in options
        ]
        layout: ButtonLayout = [buttons[index : index + 2] for index in range(0, len(buttons), 2)]
        cancel = Button(label="Cancel", callback_data=build_callback_token(task_id, CANCEL_VALUE))
        layout.append([cancel])
        return layout

    async def send_question(
        self,
        task_id: str,
        chat_id: str,
        question: str,
        options: list[TaskOption],
        *,
        thread_id: int | None = None,
    ) -> bool:
        layout = self.render_choices(task_id, options)
        return await self.messaging.send_buttons(chat_id, question, layout, thread_id=thread_id)

    async def handle_callback(self, token: str) -> CallbackResult | None:
        """Resolve a button token; ``None`` means unknown token or task."""
        parsed = parse_callback_token(token)
        if parsed is None:
            return None
        task_id, raw_choice = parsed
        task = await self.store.get_task(task_id)
        if task is None:
            logger.info("task_queue event=unknown_task task_id=%s", task_id)
            return None

        if raw_choice == CANCEL_VALUE:
            cancelled = await self.store.update_task(
                task_id,
                {
                    "status": "cancelled",
                    "pending_question": None,
                    "pending_options": None,
                    "user_response": CANCEL_VALUE,
                    "current_step": "Cancelled by user",
                },
                expected={"status": "needs_input"},
            )
            if cancelled is not None:
                logger.info("task_queue event=cancelled task_id=%s", task_id)
                return CallbackResult(
                    task_id=task_id, choice=CANCEL_VALUE, task=cancelled, cancelled=True
                )
            return CallbackResult(task_id=task_id, choice=CANCEL_VALUE, task=task)

        return CallbackResult(task_id=task_id, choice=self._full_value(task, raw_choice), task=task)

    async def claim_for_resume(self, task_id: str, choice: str) -> AsyncTask | None:
        claimed = await self.store.update_task(
            task_id,
            {
                "status": "running",
                "user_response": choice,
                "pending_question": None,
                "pending_options": None,
                "current_step": f"Resuming with: {choice}",
            },
            expected={"status": "needs_input"},
        )
        if claimed is None:
            logger.info("task_queue event=claim_lost task_id=%s", task_id)
        return claimed

    async def complete(self, task_id: str, result: str) -> bool:
        updated = await self.store.update_task(
            task_id,
            {"status": "completed", "result": result[:RESULT_LIMIT], "current_step": "Completed"},
            expected={"status": "running"},
        )
        return updated is not None

    async def fail(self, task_id: str, reason: str) -> bool:
        updated = await self.store.update_task(
            task_id,
            {"status": "failed", "result": reason[:RESULT_LIMIT], "current_step": "Failed"},
            expected={"status": "running"},
        )
        return updated is not None

    async def check_stale_tasks(self, threshold_s: float | None = None) -> int:
        """Remind once about every task that has waited longer than the threshold.

        The reminder flag is claimed before sending, so concurrent scans never
        remind twice. A failed send is logged and that task is not reminded
        again.
        """
        threshold = self.stale_threshold_s if threshold_s is None else threshold_s
        stale = await self.store.get_stale_tasks(threshold)
        reminded = 0
        for task in stale:
            claimed = await self.store.update_task(
                task.task_id,
                {"reminder_sent": True},
                expected={"status": "needs_input", "reminder_sent": False},
            )
            if claimed is None:
                continue
            sent = await self.messaging.send_buttons(
                claimed.chat_id,
                REMINDER_TEMPLATE.format(question=claimed.pending_question),
                self.render_choices(claimed.task_id, claimed.pending_options or []),
                thread_id=claimed.thread_id,
            )
            if sent:
                reminded += 1
            else:
                logger.warning("task_queue event=reminder_failed task_id=%s", claimed.task_id)
        if reminded:
            logger.info("task_queue event=reminders_sent count=%s", reminded)
        return reminded

    async def format_task_status(self, chat_id: str) -> str:
        tasks = await self.store.list_tasks(chat_id, ACTIVE_STATUSES)
        if not tasks:
            return "No active tasks."
        lines = ["*Active tasks:*"]
        for task in tasks:
            prompt = task.original_prompt[:60]
            if task.status == "needs_input":
                lines.append(f"- Waiting: {prompt}\n  Question: {task.pending_question}")
            else:
                lines.append(f"- Running: {prompt}")
        return "\n".join(lines)

    @staticmethod
    def _full_value(task: AsyncTask, raw_choice: str) -> str:
        # Long option values are cut to fit the token; map back to the stored value.
        token_for_choice = f"{CALLBACK_NAMESPACE}:{task.task_id}:{raw_choice}"
        for option in task.pending_options or []:
            if build_callback_token(task.task_id, option.value) == token_for_choice:
                return option.value
        return raw_choice
