from __future__ import annotations

import asyncio
from datetime import timedelta

from fakes import T0
from hybrid_relay.memory.intents import parse_relative_date, process_intents, strip_intent_tags
from hybrid_relay.storage.memory import InMemoryRelayStore


def test_strip_removes_every_tag() -> None:
    text = "Done! [GOAL: run 10k | DEADLINE: in 3 weeks] [REMEMBER: likes tea] [done: taxes]"

    assert strip_intent_tags(text) == "Done!"
    assert strip_intent_tags("[REMEMBER: x]") == ""


def test_relative_dates() -> None:
    assert parse_relative_date("tomorrow", now=T0) == (T0 + timedelta(days=1)).replace(
        hour=23, minute=59, second=59
    )
    assert parse_relative_date("in 2 hours", now=T0) == T0 + timedelta(hours=2)
    assert parse_relative_date("5pm", now=T0).hour == 17
    assert parse_relative_date("8am", now=T0).date() == (T0 + timedelta(days=1)).date()
    assert parse_relative_date("2026-04-01", now=T0).date().isoformat() == "2026-04-01"
    assert parse_relative_date("someday", now=T0) is None


def test_process_intents_updates_memory() -> None:
    store = InMemoryRelayStore()

    async def scenario():
        await store.add_memory("goal", "File the taxes")
        await store.add_memory("fact", "Drinks coffee")
        summary = await process_intents(
            store,
            "Great. [GOAL: Run a 10k | DEADLINE: in 3 days] [GOAL: Read more] "
            "[DONE: the taxes] [REMEMBER: Drinks tea now] [FORGET: coffee]",
            now=T0,
        )
        return summary, await store.get_memory("goal"), await store.get_memory("fact")

    summary, goals, facts = asyncio.run(scenario())
    assert summary.goals_added == ["Run a 10k", "Read more"]
    assert summary.goals_completed == ["the taxes"]
    assert summary.facts_forgotten == ["coffee"]
    assert [goal.content for goal in goals] == ["Run a 10k", "Read more"]
    assert goals[0].deadline.date().isoformat() == "2026-03-05"
    assert [fact.content for fact in facts] == ["Drinks tea now"]


def test_vague_done_and_cancel_tags_are_skipped() -> None:
    store = InMemoryRelayStore()

    async def scenario():
        await store.add_memory("goal", "Call mom")
        summary = await process_intents(store, "[DONE: mom] [CANCEL: all]", now=T0)
        return summary, await store.get_memory("goal")

    summary, goals = asyncio.run(scenario())
    assert summary.skipped == ["mom", "all"]
    assert [goal.content for goal in goals] == ["Call mom"]
