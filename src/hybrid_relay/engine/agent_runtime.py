"""Agent-runtime execution engine over the Claude Agent SDK.

The runtime owns its own tool loop. The one hook into it is the
permission callback: an ``AskUserQuestion`` request is denied with
``interrupt=True`` and recorded, which ends the session so the task can be
parked and later resumed by session id.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Callable

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    PermissionResultAllow,
    PermissionResultDeny,
    ResultMessage,
    SystemMessage,
    TextBlock,
)

from hybrid_relay.engine.base import ExecutionRequest
from hybrid_relay.engine.budget import DailyBudget
from hybrid_relay.engine.history import USER_CHOICE_TEMPLATE
from hybrid_relay.engine.outcome import (
    BUDGET_EXHAUSTED_MESSAGE,
    GENERIC_FAILURE_MESSAGE,
    Done,
    ExecutionOutcome,
    Failed,
    MaxIterations,
    RunUsage,
    Suspended,
)
from hybrid_relay.engine.prompts import build_agent_prompt
from hybrid_relay.storage.base import RelayStore
from hybrid_relay.storage.context import load_prompt_context
from hybrid_relay.storage.models import DEFAULT_TASK_OPTIONS, TaskOption

logger = logging.getLogger(__name__)

ASK_USER_QUESTION_TOOL = "AskUserQuestion"
WAITING_FOR_USER = "Waiting for the user to answer via chat buttons."


def parse_ask_user_question(tool_input: dict[str, Any]) -> tuple[str, list[TaskOption]]:
    questions = tool_input.get("questions") or []
    first = questions[0] if questions and isinstance(questions[0], dict) else {}
    question = str(first.get("question") or "").strip() or "Confirm?"
    options = [
        TaskOption(label=str(option["label"]), value=str(option["label"]))
        for option in first.get("options") or []
        if isinstance(option, dict) and option.get("label")
    ]
    return question, options or list(DEFAULT_TASK_OPTIONS)


class AgentRuntimeEngine:
    name = "agent_runtime"

    def __init__(
        self,
        *,
        store: RelayStore,
        budget: DailyBudget,
        max_iterations: int = 15,
        max_run_budget_usd: float = 2.0,
        context_message_limit: int = 10,
        user_name: str = "there",
        timezone: str = "UTC",
        cwd: str | None = None,
        api_key: str = "",
        client_factory: Callable[..., Any] = ClaudeSDKClient,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.budget = budget
        self.max_iterations = max_iterations
        self.max_run_budget_usd = max_run_budget_usd
        self.context_message_limit = context_message_limit
        self.user_name = user_name
        self.timezone = timezone
        self.cwd = cwd
        self.api_key = api_key
        self._client_factory = client_factory
        self._clock = clock or (lambda: datetime.now(UTC))

    async def run(self, request: ExecutionRequest) -> ExecutionOutcome:
        remaining = self.budget.remaining()
        if remaining <= 0:
            return Failed(user_message=BUDGET_EXHAUSTED_MESSAGE, reason="budget_exhausted")

        session_id: str | None = None
        if request.resume is not None:
            session_id = request.resume.payload.get("session_id")
            prompt = USER_CHOICE_TEMPLATE.format(choice=request.resume.choice)
        else:
            now = self._clock()
            context = await load_prompt_context(
                self.store, request.chat_id, message_limit=self.context_message_limit, now=now
            )
            prompt = build_agent_prompt(
                prompt=request.prompt,
                user_name=self.user_name,
                timezone=self.timezone,
                now=now,
                context=context,
            )

        asked: dict[str, Any] = {}

        async def can_use_tool(tool_name: str, tool_input: dict[str, Any], context: Any) -> Any:
            if tool_name == ASK_USER_QUESTION_TOOL:
                question, options = parse_ask_user_question(tool_input)
                asked["question"] = question
                asked["options"] = options
                logger.info("agent_runtime event=ask_user session_id=%s", session_id)
                return PermissionResultDeny(message=WAITING_FOR_USER, interrupt=True)
            return PermissionResultAllow(updated_input=tool_input)

        options = ClaudeAgentOptions(
            model=request.selection.model_id,
            max_turns=self.max_iterations,
            max_budget_usd=min(remaining, self.max_run_budget_usd),
            can_use_tool=can_use_tool,
            cwd=self.cwd or None,
            env={"ANTHROPIC_API_KEY": self.api_key} if self.api_key else {},
            resume=session_id,
        )

        text_parts: list[str] = []
        result_text: str | None = None
        error_subtype: str | None = None
        cost = 0.0
        turns = 0
        async with self._client_factory(options=options) as client:
            await client.query(prompt)
            async for message in client.receive_response():
                if isinstance(message, SystemMessage):
                    if message.subtype == "init":
                        session_id = message.data.get("session_id") or session_id
                elif isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            text_parts.append(block.text)
                elif isinstance(message, ResultMessage):
                    session_id = message.session_id or session_id
                    cost = message.total_cost_usd or 0.0
                    turns = message.num_turns
                    if message.is_error:
                        error_subtype = message.subtype
                    else:
                        result_text = message.result

        await self.budget.record(cost, request.selection.model_id, turns)
        usage = RunUsage(iterations=turns, cost_usd=cost)
        logger.info(
            "agent_runtime event=finished session_id=%s turns=%s cost=%.4f error=%s",
            session_id,
            turns,
            cost,
            error_subtype,
        )

        if asked:
            if not session_id:
                return Failed(user_message=GENERIC_FAILURE_MESSAGE, reason="missing_session_id")
            return Suspended(
                question=asked["question"],
                options=asked["options"],
                resume_payload={"engine": self.name, "session_id": session_id},
                usage=usage,
            )
        if error_subtype == "error_max_turns":
            return MaxIterations(usage=usage)
        text = (result_text or "\n".join(text_parts)).strip()
        if error_subtype and not text:
            return Failed(
                user_message=GENERIC_FAILURE_MESSAGE, reason=f"runtime_error:{error_subtype}"
            )
        return Done(text=text, usage=usage)
