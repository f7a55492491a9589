"""Direct-API execution engine: a bounded, suspendable tool-use loop."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Callable

from hybrid_relay.engine.base import ExecutionRequest
from hybrid_relay.engine.budget import DailyBudget
from hybrid_relay.engine.history import build_resume_messages, compress_history
from hybrid_relay.engine.llm import LLMClient, LLMRequestError, user_message_for_error
from hybrid_relay.engine.outcome import (
    Done,
    ExecutionOutcome,
    Failed,
    MaxIterations,
    RunUsage,
    Suspended,
)
from hybrid_relay.engine.prompts import build_direct_system_prompt
from hybrid_relay.graph.state import initial_loop_state
from hybrid_relay.graph.workflow import build_loop_graph, recursion_limit_for
from hybrid_relay.routing.model_router import ModelRouter
from hybrid_relay.storage.base import RelayStore
from hybrid_relay.storage.context import load_prompt_context
from hybrid_relay.storage.models import TaskOption
from hybrid_relay.tools.gateway import ToolExecutor
from hybrid_relay.tools.registry import tool_definitions

logger = logging.getLogger(__name__)


class DirectApiEngine:
    """Runs the model/tool loop against the Messages API.

    An ``ask_user`` call ends the run with ``Suspended`` carrying everything
    needed to continue later: the compressed history, the assistant turn
    that asked, and the results of its other tool calls.
    """

    name = "direct"

    def __init__(
        self,
        *,
        llm_client: LLMClient,
        executor: ToolExecutor,
        store: RelayStore,
        router: ModelRouter,
        budget: DailyBudget,
        max_iterations: int = 15,
        max_tokens: int = 4096,
        text_block_limit: int = 2000,
        tool_result_limit: int = 500,
        context_message_limit: int = 10,
        bot_name: str = "Relay",
        user_name: str = "there",
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.router = router
        self.budget = budget
        self.tools = tool_definitions(executor.registry)
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens
        self.text_block_limit = text_block_limit
        self.tool_result_limit = tool_result_limit
        self.context_message_limit = context_message_limit
        self.bot_name = bot_name
        self.user_name = user_name
        self.timezone = timezone
        self._clock = clock or (lambda: datetime.now(UTC))
        self._graph = build_loop_graph(llm_client=llm_client, executor=executor)

    async def run(self, request: ExecutionRequest) -> ExecutionOutcome:
        model = request.selection.model_id
        if request.resume is not None:
            model = request.resume.payload.get("model") or model
            messages = build_resume_messages(request.resume.payload, request.resume.choice)
        else:
            messages = [{"role": "user", "content": request.prompt}]

        now = self._clock()
        context = await load_prompt_context(
            self.store, request.chat_id, message_limit=self.context_message_limit, now=now
        )
        system = build_direct_system_prompt(
            bot_name=self.bot_name,
            user_name=self.user_name,
            timezone=self.timezone,
            now=now,
            context=context,
        )
        state = initial_loop_state(
            model=model,
            system=system,
            tools=self.tools,
            messages=messages,
            max_iterations=self.max_iterations,
            max_tokens=self.max_tokens,
        )

        try:
            final = await self._graph.ainvoke(
                state, config={"recursion_limit": recursion_limit_for(self.max_iterations)}
            )
        except LLMRequestError as exc:
            return Failed(
                user_message=user_message_for_error(exc), reason=f"llm_error:{exc.status_code}"
            )

        usage = await self._record_usage(final, model)
        started_calls = list(final.get("started_calls", []))
        suspension = final.get("suspension")
        if suspension:
            payload = {
                "engine": self.name,
                "messages_snapshot": compress_history(
                    final["messages"],
                    text_limit=self.text_block_limit,
                    tool_result_limit=self.tool_result_limit,
                ),
                "assistant_content": suspension["assistant_content"],
                "tool_use_id": suspension["tool_use_id"],
                "completed_tool_results": suspension["completed_tool_results"],
                "model": model,
            }
            return Suspended(
                question=suspension["question"],
                options=[TaskOption.model_validate(option) for option in suspension["options"]],
                resume_payload=payload,
                usage=usage,
                started_calls=started_calls,
            )
        if final.get("hit_iteration_cap"):
            logger.info("direct_loop event=max_iterations iterations=%s", usage.iterations)
            return MaxIterations(usage=usage, started_calls=started_calls)
        return Done(text=final["final_text"], usage=usage, started_calls=started_calls)

    async def _record_usage(self, final: dict, model: str) -> RunUsage:
        input_tokens = final.get("input_tokens", 0)
        output_tokens = final.get("output_tokens", 0)
        spec = self.router.spec_for_model(model)
        cost = spec.cost(input_tokens, output_tokens) if spec else 0.0
        usage = RunUsage(
            iterations=final.get("iterations", 0),
            tool_calls=final.get("tool_calls", 0),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
        )
        await self.budget.record(cost, model, usage.iterations)
        return usage
