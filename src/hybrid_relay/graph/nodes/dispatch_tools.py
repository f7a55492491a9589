"""Dispatch node: run the tool calls of the last model turn."""

from __future__ import annotations

import json
import logging
from typing import Any

from hybrid_relay.engine.history import tool_result_block
from hybrid_relay.graph.state import LoopState
from hybrid_relay.storage.models import DEFAULT_TASK_OPTIONS, TaskOption
from hybrid_relay.tools.gateway import ToolExecutor
from hybrid_relay.tools.registry import ASK_USER_TOOL, PHONE_CALL_TOOL

logger = logging.getLogger(__name__)


async def run(state: LoopState, *, executor: ToolExecutor) -> LoopState:
    content = state["response"]["content"]
    tool_uses = [block for block in content if block.get("type") == "tool_use"]
    results: list[dict[str, Any]] = []
    started_calls = list(state.get("started_calls", []))
    ask_block: dict[str, Any] | None = None

    for block in tool_uses:
        if block.get("name") == ASK_USER_TOOL:
            if ask_block is None:
                ask_block = block
            else:
                results.append(
                    tool_result_block(
                        block["id"],
                        json.dumps({"error": "Only one question can be asked at a time."}),
                        is_error=True,
                    )
                )
            continue

        outcome = await executor.execute(block.get("name", ""), block.get("input") or {})
        if outcome["status"] == "ok":
            output = outcome["output"]
            if block.get("name") == PHONE_CALL_TOOL and output.get("conversation_id"):
                started_calls.append(output["conversation_id"])
            results.append(tool_result_block(block["id"], json.dumps(output)))
        else:
            results.append(
                tool_result_block(
                    block["id"], json.dumps({"error": outcome["error"]}), is_error=True
                )
            )

    update: LoopState = {
        "tool_calls": state.get("tool_calls", 0) + len(tool_uses),
        "started_calls": started_calls,
    }
    if ask_block is not None:
        question, options = parse_ask_user(ask_block.get("input") or {})
        logger.info("direct_loop event=suspend tool_use_id=%s", ask_block["id"])
        update["suspension"] = {
            "question": question,
            "options": [option.model_dump() for option in options],
            "tool_use_id": ask_block["id"],
            "assistant_content": content,
            "completed_tool_results": results,
        }
        return update

    update["messages"] = [
        *state["messages"],
        {"role": "assistant", "content": content},
        {"role": "user", "content": results},
    ]
    return update


def parse_ask_user(raw: dict[str, Any]) -> tuple[str, list[TaskOption]]:
    question = str(raw.get("question") or "").strip() or "Confirm?"
    options = []
    for item in raw.get("options") or []:
        if not isinstance(item, dict):
            continue
        label = str(item.get("label") or item.get("value") or "").strip()
        value = str(item.get("value") or label).strip()
        if label:
            options.append(TaskOption(label=label, value=value))
    return question, options or list(DEFAULT_TASK_OPTIONS)
