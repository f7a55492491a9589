from __future__ import annotations

import asyncio

from pydantic import BaseModel

from fakes import T0
from hybrid_relay.storage.memory import InMemoryRelayStore
from hybrid_relay.tools.builtin import ToolContext
from hybrid_relay.tools.gateway import ToolExecutor
from hybrid_relay.tools.registry import (
    ASK_USER_TOOL,
    PHONE_CALL_TOOL,
    ToolSpec,
    build_registry,
    tool_definitions,
)
from hybrid_relay.tools.voice import CallStart


class _SlowInput(BaseModel):
    pass


class _SlowOutput(BaseModel):
    done: bool


async def _slow(_: _SlowInput) -> _SlowOutput:
    await asyncio.sleep(1.0)
    return _SlowOutput(done=True)


class _Voice:
    async def initiate_call(self, context: str) -> CallStart:
        return CallStart(success=True, conversation_id="conv-1")

    async def get_transcript(self, conversation_id: str) -> str | None:
        return None


def _executor(**kwargs) -> ToolExecutor:
    context = ToolContext(store=InMemoryRelayStore(), timezone="Europe/Lisbon", clock=lambda: T0)
    return ToolExecutor(registry=build_registry(context), **kwargs)


def test_current_time_uses_configured_timezone() -> None:
    result = asyncio.run(_executor().execute("get_current_time", {}))

    assert result["status"] == "ok"
    assert result["output"]["timezone"] == "Europe/Lisbon"
    assert result["output"]["iso"].startswith("2026-03-02T09:00:00")
    assert result["attempts"] == 1
    assert "duration_ms" in result


def test_invalid_input_is_reported_as_failure() -> None:
    result = asyncio.run(_executor().execute("remember_fact", {"fact": "x", "extra": 1}))

    assert result["status"] == "failed"
    assert "extra" in result["error"]


def test_unknown_tool_fails_without_raising() -> None:
    result = asyncio.run(_executor().execute("does_not_exist", {}))

    assert result["status"] == "failed"
    assert result["implementation"] == "unknown"
    assert "Unknown tool" in result["error"]


def test_timeout_is_retried_then_reported() -> None:
    executor = _executor(tool_timeout_s=0.01, max_retries=1)
    executor.registry["slow"] = ToolSpec(
        input_model=_SlowInput,
        output_model=_SlowOutput,
        fn=_slow,
        description="slow",
    )

    result = asyncio.run(executor.execute("slow", {}))

    assert result["status"] == "failed"
    assert result["attempts"] == 2
    assert "timed out" in result["error"]


def test_remember_fact_and_list_goals_use_the_store() -> None:
    store = InMemoryRelayStore()
    executor = ToolExecutor(registry=build_registry(ToolContext(store=store)))

    async def scenario() -> tuple[dict, dict]:
        stored = await executor.execute("remember_fact", {"fact": "  Likes rowing "})
        await store.add_memory("goal", "Book dentist")
        goals = await executor.execute("list_goals", {})
        return stored, goals

    stored, goals = asyncio.run(scenario())
    assert stored["output"] == {"stored": True}
    assert goals["output"] == {"goals": [{"content": "Book dentist", "deadline": None}]}
    facts = asyncio.run(store.get_memory("fact"))
    assert [fact.content for fact in facts] == ["Likes rowing"]


def test_definitions_put_ask_user_first_and_gate_phone_calls() -> None:
    store = InMemoryRelayStore()
    without_voice = tool_definitions(build_registry(ToolContext(store=store)))
    with_voice = tool_definitions(build_registry(ToolContext(store=store, voice=_Voice())))

    assert without_voice[0]["name"] == ASK_USER_TOOL
    assert PHONE_CALL_TOOL not in [item["name"] for item in without_voice]
    assert PHONE_CALL_TOOL in [item["name"] for item in with_voice]
    remember = next(item for item in with_voice if item["name"] == "remember_fact")
    assert remember["input_schema"]["required"] == ["fact"]
    assert "title" not in remember["input_schema"]
