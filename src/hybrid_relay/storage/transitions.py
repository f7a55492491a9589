"""Task status machine shared by every store backend."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from hybrid_relay.storage.models import UPDATABLE_TASK_FIELDS, AsyncTask

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running"}),
    "running": frozenset({"needs_input", "completed", "failed"}),
    "needs_input": frozenset({"running", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}
TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})


def is_legal_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def apply_task_changes(
    current: AsyncTask,
    changes: dict[str, Any],
    *,
    expected: dict[str, Any] | None,
    now: datetime,
) -> AsyncTask | None:
    """Return ``current`` with ``changes`` applied, or ``None`` when rejected.

    A mismatch on any ``expected`` field is an ordinary lost race and is not
    logged; illegal transitions and invariant violations are.
    """
    for field_name, value in (expected or {}).items():
        if getattr(current, field_name) != value:
            return None

    unknown = set(changes) - UPDATABLE_TASK_FIELDS
    if unknown:
        logger.warning(
            "task_transition event=rejected task_id=%s reason=unknown_fields fields=%s",
            current.task_id,
            sorted(unknown),
        )
        return None

    target = changes.get("status", current.status)
    if not is_legal_transition(current.status, target):
        logger.warning(
            "task_transition event=rejected task_id=%s from=%s to=%s",
            current.task_id,
            current.status,
            target,
        )
        return None

    try:
        updated = AsyncTask.model_validate(
            {**current.model_dump(), **changes, "updated_at": now}
        )
    except ValidationError as exc:
        logger.warning(
            "task_transition event=rejected task_id=%s reason=invalid error=%s",
            current.task_id,
            exc.errors()[0].get("msg", "invalid"),
        )
        return None

    if updated.status != current.status:
        logger.info(
            "task_transition event=applied task_id=%s from=%s to=%s",
            current.task_id,
            current.status,
            updated.status,
        )
    return updated
