"""Render stored conversation and memory as prompt context."""

from __future__ import annotations

from datetime import UTC, datetime

from hybrid_relay.storage.base import RelayStore
from hybrid_relay.storage.models import ChatMessage, MemoryItem


def time_ago(then: datetime, now: datetime) -> str:
    seconds = int((now - then).total_seconds())
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if seconds < 60:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute{'' if minutes == 1 else 's'} ago"
    if hours < 24:
        return f"{hours} hour{'' if hours == 1 else 's'} ago"
    if days < 30:
        return f"{days} day{'' if days == 1 else 's'} ago"
    return then.date().isoformat()


def format_conversation_context(messages: list[ChatMessage], now: datetime) -> str:
    lines = []
    for message in messages:
        stamp = time_ago(message.created_at, now) if message.created_at else ""
        speaker = "User" if message.role == "user" else "Bot"
        lines.append(f"[{stamp}] {speaker}: {message.content}")
    return "\n".join(lines)


def format_memory_context(facts: list[MemoryItem], goals: list[MemoryItem]) -> str:
    sections = []
    if facts:
        sections.append("**Known Facts:**\n" + "\n".join(f"- {fact.content}" for fact in facts))
    if goals:
        lines = []
        for index, goal in enumerate(goals, start=1):
            due = f" (due: {goal.deadline.date().isoformat()})" if goal.deadline else ""
            lines.append(f"{index}. {goal.content}{due}")
        sections.append("**Active Goals:**\n" + "\n".join(lines))
    return "\n\n".join(sections)


async def load_prompt_context(
    store: RelayStore,
    chat_id: str,
    *,
    message_limit: int,
    now: datetime | None = None,
) -> str:
    """Conversation history plus memory, ready to prepend to a prompt."""
    now = now or datetime.now(UTC)
    messages = await store.get_recent_messages(chat_id, message_limit)
    facts = await store.get_memory("fact")
    goals = await store.get_memory("goal")

    sections = []
    memory = format_memory_context(facts, goals)
    if memory:
        sections.append(memory)
    if messages:
        sections.append("**Recent Conversation:**\n" + format_conversation_context(messages, now))
    return "\n\n".join(sections)
