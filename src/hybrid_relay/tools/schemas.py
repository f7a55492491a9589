"""Strict Pydantic schemas for tool inputs and outputs."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StrictModel(BaseModel):
    """Base model for strict schema validation."""

    model_config = ConfigDict(extra="forbid")


class AskUserOption(StrictModel):
    label: str = Field(min_length=1)
    value: str = Field(min_length=1)


class AskUserInput(BaseModel):
    question: str = Field(min_length=1)
    options: list[AskUserOption] | None = None


class GetCurrentTimeInput(StrictModel):
    timezone: str | None = None


class GetCurrentTimeOutput(StrictModel):
    iso: str
    display: str
    timezone: str


class ListGoalsInput(StrictModel):
    pass


class GoalEntry(StrictModel):
    content: str
    deadline: str | None = None


class ListGoalsOutput(StrictModel):
    goals: list[GoalEntry]


class RememberFactInput(StrictModel):
    fact: str = Field(min_length=1)


class RememberFactOutput(StrictModel):
    stored: bool


class PhoneCallInput(StrictModel):
    context: str = Field(min_length=1)


class PhoneCallOutput(StrictModel):
    success: bool
    conversation_id: str | None = None
    error: str | None = None
