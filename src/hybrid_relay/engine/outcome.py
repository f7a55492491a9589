"""Typed results of one engine run."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from hybrid_relay.storage.models import TaskOption

MAX_ITERATIONS_MESSAGE = "Reached maximum iterations. Try a simpler request."
NO_RESPONSE_MESSAGE = "Processed but no response generated."
BUDGET_EXHAUSTED_MESSAGE = (
    "Daily API budget reached. I'll be back at full capacity tomorrow. "
    "Urgent? Try again once the local machine is back online."
)
GENERIC_FAILURE_MESSAGE = "Something went wrong while processing that. Please try again."
TIMEOUT_MESSAGE = "That took too long to process. Please try a simpler request."
AUTH_ERROR_MESSAGE = "API authentication error. Please check the API key configuration."
RATE_LIMIT_MESSAGE = "Rate limited. Please try again in a moment."


class RunUsage(BaseModel):
    iterations: int = 0
    tool_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


class Done(BaseModel):
    kind: Literal["done"] = "done"
    text: str
    usage: RunUsage = Field(default_factory=RunUsage)
    started_calls: list[str] = Field(default_factory=list)


class Suspended(BaseModel):
    kind: Literal["suspended"] = "suspended"
    question: str
    options: list[TaskOption]
    resume_payload: dict[str, Any]
    usage: RunUsage = Field(default_factory=RunUsage)
    started_calls: list[str] = Field(default_factory=list)


class MaxIterations(BaseModel):
    kind: Literal["max_iterations"] = "max_iterations"
    text: str = MAX_ITERATIONS_MESSAGE
    usage: RunUsage = Field(default_factory=RunUsage)
    started_calls: list[str] = Field(default_factory=list)


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    user_message: str
    reason: str


ExecutionOutcome = Annotated[
    Union[Done, Suspended, MaxIterations, Failed],
    Field(discriminator="kind"),
]
