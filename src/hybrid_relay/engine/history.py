"""Message-history compression and resume-sequence reconstruction."""

from __future__ import annotations

import copy
from typing import Any

USER_CHOICE_TEMPLATE = "User chose: {choice}"


def compress_history(
    messages: list[dict[str, Any]],
    *,
    text_limit: int = 2000,
    tool_result_limit: int = 500,
) -> list[dict[str, Any]]:
    """Return a copy of ``messages`` with long text and tool output truncated.

    Roles, ordering and tool_use/tool_result ids are preserved, so the
    result is still a valid conversation to continue from.
    """
    compressed = []
    for message in copy.deepcopy(messages):
        content = message.get("content")
        if isinstance(content, str):
            message["content"] = content[:text_limit]
        elif isinstance(content, list):
            message["content"] = [
                _compress_block(block, text_limit, tool_result_limit) for block in content
            ]
        compressed.append(message)
    return compressed


def _compress_block(block: Any, text_limit: int, tool_result_limit: int) -> Any:
    if not isinstance(block, dict):
        return block
    if block.get("type") == "text" and isinstance(block.get("text"), str):
        block["text"] = block["text"][:text_limit]
    elif block.get("type") == "tool_result":
        content = block.get("content")
        if isinstance(content, str):
            block["content"] = content[:tool_result_limit]
        elif isinstance(content, list):
            for item in content:
                if isinstance(item, dict) and isinstance(item.get("text"), str):
                    item["text"] = item["text"][:tool_result_limit]
    return block


def tool_result_block(tool_use_id: str, content: str, *, is_error: bool = False) -> dict[str, Any]:
    block: dict[str, Any] = {"type": "tool_result", "tool_use_id": tool_use_id, "content": content}
    if is_error:
        block["is_error"] = True
    return block


def build_resume_messages(payload: dict[str, Any], choice: str) -> list[dict[str, Any]]:
    """Rebuild the conversation a suspended direct-loop run continues from.

    The user turn answers every tool call of the suspended assistant turn:
    results computed before suspension are reused and the question is
    answered with the user's choice.
    """
    snapshot = list(payload.get("messages_snapshot") or [])
    assistant_content = payload.get("assistant_content") or []
    ask_id = payload.get("tool_use_id")
    completed = {
        block.get("tool_use_id"): block for block in payload.get("completed_tool_results") or []
    }

    results = []
    for block in assistant_content:
        if not isinstance(block, dict) or block.get("type") != "tool_use":
            continue
        if block.get("id") == ask_id:
            results.append(tool_result_block(ask_id, USER_CHOICE_TEMPLATE.format(choice=choice)))
        elif block.get("id") in completed:
            results.append(completed[block["id"]])
    if not any(result.get("tool_use_id") == ask_id for result in results):
        results.append(tool_result_block(ask_id, USER_CHOICE_TEMPLATE.format(choice=choice)))

    return [
        *snapshot,
        {"role": "assistant", "content": assistant_content},
        {"role": "user", "content": results},
    ]
