"""Schema-enforcing tool execution gateway with timeout/retry telemetry."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from hybrid_relay.tools.registry import ToolSpec

logger = logging.getLogger(__name__)

_LOGGED_INPUT_CHARS = 200


class ToolExecutor:
    """Execute registered tools with strict validation and retry/timeout controls."""

    def __init__(
        self,
        *,
        registry: dict[str, ToolSpec],
        tool_timeout_s: float = 10.0,
        max_retries: int = 0,
        backoff_s: float = 0.0,
    ) -> None:
        self.registry = registry
        self.tool_timeout_s = tool_timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s

    async def execute(self, tool_name: str, args: dict[str, Any]) -> dict[str, Any]:
        started_at = time.perf_counter()
        attempts = 0
        final_error = "unknown error"
        implementation = (
            self.registry[tool_name].implementation if tool_name in self.registry else "unknown"
        )
        logger.info(
            "tool_call event=start tool=%s input=%s",
            tool_name,
            json.dumps(args, default=str)[:_LOGGED_INPUT_CHARS],
        )

        for attempt in range(self.max_retries + 1):
            attempts = attempt + 1
            try:
                output = await self._execute_once(tool_name, args)
                logger.info(
                    "tool_call event=ok tool=%s attempts=%s duration_ms=%s",
                    tool_name,
                    attempts,
                    _duration_ms(started_at),
                )
                return {
                    "tool": tool_name,
                    "status": "ok",
                    "output": output,
                    "implementation": implementation,
                    "attempts": attempts,
                    "duration_ms": _duration_ms(started_at),
                }
            except Exception as exc:  # noqa: BLE001
                final_error = str(exc)
                if attempt < self.max_retries and self.backoff_s > 0:
                    await asyncio.sleep(self.backoff_s)

        logger.warning("tool_call event=failed tool=%s error=%s", tool_name, final_error)
        return {
            "tool": tool_name,
            "status": "failed",
            "error": final_error,
            "implementation": implementation,
            "attempts": attempts,
            "duration_ms": _duration_ms(started_at),
        }

    async def _execute_once(self, tool_name: str, args: dict[str, Any]) -> dict[str, Any]:
        spec = self.registry.get(tool_name)
        if spec is None:
            raise ValueError(f"Unknown tool: {tool_name}")

        payload = spec.input_model.model_validate(args)
        try:
            raw_output = await asyncio.wait_for(spec.fn(payload), timeout=self.tool_timeout_s)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(
                f"Tool '{tool_name}' timed out after {self.tool_timeout_s:.2f}s"
            ) from exc

        validated_output = spec.output_model.model_validate(raw_output)
        return validated_output.model_dump(mode="json")


def _duration_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000.0, 2)
