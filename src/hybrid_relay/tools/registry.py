"""Tool registry and the tool definitions offered to the model."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from hybrid_relay.tools import builtin
from hybrid_relay.tools.builtin import ToolContext
from hybrid_relay.tools.schemas import (
    GetCurrentTimeInput,
    GetCurrentTimeOutput,
    ListGoalsInput,
    ListGoalsOutput,
    PhoneCallInput,
    PhoneCallOutput,
    RememberFactInput,
    RememberFactOutput,
)

ASK_USER_TOOL = "ask_user"
PHONE_CALL_TOOL = "phone_call"

ASK_USER_DEFINITION: dict[str, Any] = {
    "name": ASK_USER_TOOL,
    "description": (
        "Ask the user a question with button options before continuing. Use this before "
        "irreversible or outward-facing actions, or when the request is ambiguous. "
        "The task pauses until the user taps a button."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "question": {"type": "string", "description": "The question to ask"},
            "options": {
                "type": "array",
                "description": "Answer buttons; defaults to Yes/No",
                "items": {
                    "type": "object",
                    "properties": {
                        "label": {"type": "string"},
                        "value": {"type": "string"},
                    },
                    "required": ["label", "value"],
                },
            },
        },
        "required": ["question"],
    },
}


@dataclass(frozen=True)
class ToolSpec:
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    fn: Callable[[BaseModel], Awaitable[BaseModel]]
    description: str
    implementation: str = "builtin"


def build_registry(context: ToolContext) -> dict[str, ToolSpec]:
    registry = {
        "get_current_time": ToolSpec(
            input_model=GetCurrentTimeInput,
            output_model=GetCurrentTimeOutput,
            fn=partial(builtin.get_current_time, context=context),
            description="Get the current date and time in the user's timezone.",
        ),
        "list_goals": ToolSpec(
            input_model=ListGoalsInput,
            output_model=ListGoalsOutput,
            fn=partial(builtin.list_goals, context=context),
            description="List the user's active goals and their deadlines.",
        ),
        "remember_fact": ToolSpec(
            input_model=RememberFactInput,
            output_model=RememberFactOutput,
            fn=partial(builtin.remember_fact, context=context),
            description="Store a durable fact about the user for future conversations.",
        ),
    }
    if context.voice is not None:
        registry[PHONE_CALL_TOOL] = ToolSpec(
            input_model=PhoneCallInput,
            output_model=PhoneCallOutput,
            fn=partial(builtin.phone_call, context=context),
            description="Place a phone call to the user. Provide what the call is about.",
            implementation="voice",
        )
    return registry


def tool_definitions(registry: dict[str, ToolSpec]) -> list[dict[str, Any]]:
    definitions = [ASK_USER_DEFINITION]
    for name, spec in registry.items():
        schema = spec.input_model.model_json_schema()
        schema.pop("title", None)
        schema.pop("additionalProperties", None)
        definitions.append(
            {"name": name, "description": spec.description, "input_schema": schema}
        )
    return definitions
