"""Storage models shared by the gateway, engines and persistence backends."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

TaskStatus = Literal["pending", "running", "needs_input", "completed", "failed", "cancelled"]
MessageRole = Literal["user", "assistant"]
MemoryKind = Literal["fact", "goal", "completed_goal", "preference"]

UPDATABLE_TASK_FIELDS = frozenset(
    {
        "status",
        "result",
        "session_id",
        "current_step",
        "pending_question",
        "pending_options",
        "user_response",
        "processed_by",
        "reminder_sent",
        "metadata",
    }
)


class TaskOption(BaseModel):
    """One answer choice offered to the user."""

    label: str
    value: str


class ChatMessage(BaseModel):
    id: int | None = None
    chat_id: str
    role: MessageRole
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class MemoryItem(BaseModel):
    id: int
    kind: MemoryKind
    content: str
    deadline: datetime | None = None
    completed_at: datetime | None = None
    priority: int = 0
    created_at: datetime


class NodeStatus(BaseModel):
    online: bool
    last_heartbeat: datetime | None = None


class AsyncTask(BaseModel):
    """A unit of work that may pause for a user answer and resume later.

    ``metadata`` carries the engine-specific resume payload. The pending
    question and its options are always set or cleared together.
    """

    task_id: str
    chat_id: str
    original_prompt: str
    status: TaskStatus = "pending"
    result: str | None = None
    session_id: str | None = None
    current_step: str | None = None
    pending_question: str | None = None
    pending_options: list[TaskOption] | None = None
    user_response: str | None = None
    thread_id: int | None = None
    processed_by: str | None = None
    reminder_sent: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_pending_pair(self) -> "AsyncTask":
        if (self.pending_question is None) != (self.pending_options is None):
            raise ValueError("pending_question and pending_options must be set together")
        if self.status == "needs_input" and not self.pending_question:
            raise ValueError("needs_input tasks require a pending_question")
        if self.result is not None and self.pending_question is not None:
            raise ValueError("a task cannot carry both a result and a pending question")
        return self


DEFAULT_TASK_OPTIONS = (
    TaskOption(label="Yes, go ahead", value="yes"),
    TaskOption(label="No, skip", value="no"),
)
