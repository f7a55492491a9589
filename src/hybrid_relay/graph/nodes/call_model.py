"""Call-model node: one model turn over the current conversation."""

from __future__ import annotations

import logging

from hybrid_relay.engine.llm import LLMClient
from hybrid_relay.graph.state import LoopState

logger = logging.getLogger(__name__)


async def run(state: LoopState, *, llm_client: LLMClient) -> LoopState:
    iterations = state.get("iterations", 0) + 1
    response = await llm_client.create_message(
        model=state["model"],
        system=state["system"],
        tools=state["tools"],
        messages=state["messages"],
        max_tokens=state.get("max_tokens", 4096),
    )
    logger.info(
        "direct_loop event=model_turn iteration=%s stop_reason=%s model=%s",
        iterations,
        response.stop_reason,
        state["model"],
    )
    return {
        "iterations": iterations,
        "response": response.model_dump(),
        "input_tokens": state.get("input_tokens", 0) + response.input_tokens,
        "output_tokens": state.get("output_tokens", 0) + response.output_tokens,
    }
