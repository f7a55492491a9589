"""Tool registry, schemas and execution gateway."""

from hybrid_relay.tools.builtin import ToolContext
from hybrid_relay.tools.gateway import ToolExecutor
from hybrid_relay.tools.registry import (
    ASK_USER_TOOL,
    PHONE_CALL_TOOL,
    ToolSpec,
    build_registry,
    tool_definitions,
)

__all__ = [
    "ASK_USER_TOOL",
    "PHONE_CALL_TOOL",
    "ToolContext",
    "ToolExecutor",
    "ToolSpec",
    "build_registry",
    "tool_definitions",
]
