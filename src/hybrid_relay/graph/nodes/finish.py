"""Finish node: produce the final user-facing text."""

from __future__ import annotations

from hybrid_relay.engine.outcome import NO_RESPONSE_MESSAGE
from hybrid_relay.graph.state import LoopState


def run(state: LoopState) -> LoopState:
    content = state.get("response", {}).get("content", [])
    texts = [
        block["text"]
        for block in content
        if block.get("type") == "text" and block.get("text", "").strip()
    ]
    return {"final_text": "\n".join(texts) if texts else NO_RESPONSE_MESSAGE}


def mark_iteration_cap(state: LoopState) -> LoopState:
    return {"hit_iteration_cap": True}
