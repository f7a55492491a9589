"""System prompts for the two execution engines."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo


def _now_line(now: datetime, timezone: str) -> str:
    local = now.astimezone(ZoneInfo(timezone))
    return f"Current time: {local.strftime('%A, %B %d, %Y %I:%M %p')} ({timezone})"


def build_direct_system_prompt(
    *,
    bot_name: str,
    user_name: str,
    timezone: str,
    now: datetime,
    context: str = "",
) -> str:
    lines = [
        f"You are {bot_name}, a personal assistant for {user_name}, replying over chat.",
        _now_line(now, timezone),
        "Keep replies short and readable on a phone.",
        "Before anything irreversible or outward-facing, confirm with the ask_user tool.",
        "When the user states a goal, append [GOAL: text | DEADLINE: when]. "
        "When a goal is done, append [DONE: text]. To drop a goal, append [CANCEL: text]. "
        "To store a fact, append [REMEMBER: fact]; to forget one, append [FORGET: text].",
    ]
    if context:
        lines.extend(["", context])
    return "\n".join(lines)


def build_agent_prompt(
    *,
    prompt: str,
    user_name: str,
    timezone: str,
    now: datetime,
    context: str = "",
) -> str:
    parts = [
        f"You are assisting {user_name} over chat. {_now_line(now, timezone)}.",
        "Use AskUserQuestion before anything irreversible or outward-facing.",
    ]
    if context:
        parts.append(context)
    parts.append(f"User: {prompt}")
    return "\n\n".join(parts)
