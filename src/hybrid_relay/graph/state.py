"""Typed state contract for the direct-API tool-use loop."""

from typing import Any, TypedDict


class LoopState(TypedDict, total=False):
    model: str
    system: str
    tools: list[dict[str, Any]]
    messages: list[dict[str, Any]]
    max_iterations: int
    max_tokens: int
    iterations: int
    response: dict[str, Any]
    tool_calls: int
    input_tokens: int
    output_tokens: int
    started_calls: list[str]
    suspension: dict[str, Any]
    final_text: str
    hit_iteration_cap: bool


def initial_loop_state(
    *,
    model: str,
    system: str,
    tools: list[dict[str, Any]],
    messages: list[dict[str, Any]],
    max_iterations: int = 15,
    max_tokens: int = 4096,
) -> LoopState:
    return {
        "model": model,
        "system": system,
        "tools": tools,
        "messages": list(messages),
        "max_iterations": max_iterations,
        "max_tokens": max_tokens,
        "iterations": 0,
        "tool_calls": 0,
        "input_tokens": 0,
        "output_tokens": 0,
        "started_calls": [],
        "hit_iteration_cap": False,
    }
