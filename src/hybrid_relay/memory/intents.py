"""Memory intent tags embedded in model replies.

Replies may end with tags such as ``[GOAL: ship v2 | DEADLINE: tomorrow]``,
``[DONE: ship v2]``, ``[CANCEL: ...]``, ``[REMEMBER: ...]`` and
``[FORGET: ...]``. They are applied to the store and removed from the text
the user sees.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from hybrid_relay.storage.base import RelayStore

logger = logging.getLogger(__name__)

MIN_MATCH_CHARS = 5

GOAL_WITH_DEADLINE = re.compile(
    r"\[GOAL:\s*([^|\]]+?)\s*\|\s*DEADLINE:\s*([^\]]+?)\s*\]", re.IGNORECASE
)
GOAL_SIMPLE = re.compile(r"\[GOAL:\s*([^\]|]+?)\s*\]", re.IGNORECASE)
DONE = re.compile(r"\[DONE:\s*([^\]]+?)\s*\]", re.IGNORECASE)
CANCEL = re.compile(r"\[CANCEL:\s*([^\]]+?)\s*\]", re.IGNORECASE)
REMEMBER = re.compile(r"\[REMEMBER:\s*([^\]]+?)\s*\]", re.IGNORECASE)
FORGET = re.compile(r"\[FORGET:\s*([^\]]+?)\s*\]", re.IGNORECASE)
ANY_TAG = re.compile(r"\s*\[(?:GOAL|DONE|CANCEL|REMEMBER|FORGET):[^\]]*\]", re.IGNORECASE)

_IN_DAYS = re.compile(r"^in\s+(\d+)\s+days?$")
_IN_HOURS = re.compile(r"^in\s+(\d+)\s+hours?$")
_IN_WEEKS = re.compile(r"^in\s+(\d+)\s+weeks?$")
_BARE_TIME = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$")


@dataclass
class IntentSummary:
    goals_added: list[str] = field(default_factory=list)
    goals_completed: list[str] = field(default_factory=list)
    goals_cancelled: list[str] = field(default_factory=list)
    facts_added: list[str] = field(default_factory=list)
    facts_forgotten: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def strip_intent_tags(text: str) -> str:
    return ANY_TAG.sub("", text).strip()


def parse_relative_date(raw: str, *, now: datetime, timezone: str = "UTC") -> datetime | None:
    """Resolve phrases like ``tomorrow``, ``in 3 days`` or ``5pm`` to a datetime."""
    text = raw.strip().lower()
    if not text:
        return None
    local = now.astimezone(ZoneInfo(timezone))
    end_of_day = {"hour": 23, "minute": 59, "second": 59, "microsecond": 0}

    if text == "today":
        return local.replace(**end_of_day)
    if text == "tomorrow":
        return (local + timedelta(days=1)).replace(**end_of_day)
    match = _IN_DAYS.match(text)
    if match:
        return (local + timedelta(days=int(match.group(1)))).replace(**end_of_day)
    match = _IN_HOURS.match(text)
    if match:
        return local + timedelta(hours=int(match.group(1)))
    match = _IN_WEEKS.match(text)
    if match:
        return (local + timedelta(weeks=int(match.group(1)))).replace(**end_of_day)
    match = _BARE_TIME.match(text)
    if match:
        hours = int(match.group(1))
        minutes = int(match.group(2) or 0)
        meridiem = match.group(3)
        if meridiem == "pm" and hours < 12:
            hours += 12
        if meridiem == "am" and hours == 12:
            hours = 0
        if hours > 23 or minutes > 59:
            return None
        candidate = local.replace(hour=hours, minute=minutes, second=0, microsecond=0)
        if candidate < local:
            candidate += timedelta(days=1)
        return candidate
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(timezone))
    return parsed


async def process_intents(
    store: RelayStore,
    text: str,
    *,
    timezone: str = "UTC",
    now: datetime | None = None,
) -> IntentSummary:
    now = now or datetime.now(UTC)
    summary = IntentSummary()

    for match in GOAL_WITH_DEADLINE.finditer(text):
        goal, deadline_text = match.group(1), match.group(2)
        deadline = parse_relative_date(deadline_text, now=now, timezone=timezone)
        if await store.add_memory("goal", goal, deadline):
            summary.goals_added.append(goal)

    for match in GOAL_SIMPLE.finditer(text):
        if await store.add_memory("goal", match.group(1)):
            summary.goals_added.append(match.group(1))

    for match in DONE.finditer(text):
        target = match.group(1)
        if len(target) < MIN_MATCH_CHARS:
            logger.warning("intents event=skip_vague tag=DONE text=%r", target)
            summary.skipped.append(target)
            continue
        if await store.complete_goal(target):
            summary.goals_completed.append(target)

    for match in REMEMBER.finditer(text):
        if await store.add_memory("fact", match.group(1)):
            summary.facts_added.append(match.group(1))

    for match in FORGET.finditer(text):
        if await store.delete_fact(match.group(1)):
            summary.facts_forgotten.append(match.group(1))

    for match in CANCEL.finditer(text):
        target = match.group(1)
        if len(target) < MIN_MATCH_CHARS:
            logger.warning("intents event=skip_vague tag=CANCEL text=%r", target)
            summary.skipped.append(target)
            continue
        if await store.cancel_goal(target):
            summary.goals_cancelled.append(target)

    return summary
