"""Model client interface and the Anthropic Messages adapter."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import anthropic
from anthropic import AsyncAnthropic
from pydantic import BaseModel, Field

from hybrid_relay.engine.outcome import (
    AUTH_ERROR_MESSAGE,
    GENERIC_FAILURE_MESSAGE,
    RATE_LIMIT_MESSAGE,
)

logger = logging.getLogger(__name__)


class ModelResponse(BaseModel):
    content: list[dict[str, Any]] = Field(default_factory=list)
    stop_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0


class LLMRequestError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMClient(Protocol):
    """Interface for one tool-enabled model turn."""

    async def create_message(
        self,
        *,
        model: str,
        system: str,
        tools: list[dict[str, Any]],
        messages: list[dict[str, Any]],
        max_tokens: int,
    ) -> ModelResponse: ...


class AnthropicMessagesClient:
    """Thin adapter over ``AsyncAnthropic.messages.create``."""

    def __init__(self, *, api_key: str, timeout_s: float = 120.0, max_retries: int = 2) -> None:
        self._client = AsyncAnthropic(api_key=api_key, timeout=timeout_s, max_retries=max_retries)

    async def create_message(
        self,
        *,
        model: str,
        system: str,
        tools: list[dict[str, Any]],
        messages: list[dict[str, Any]],
        max_tokens: int,
    ) -> ModelResponse:
        try:
            response = await self._client.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=system,
                tools=tools,
                messages=messages,
            )
        except anthropic.APIStatusError as exc:
            logger.warning(
                "llm event=request_failed model=%s status=%s error=%s",
                model,
                exc.status_code,
                exc,
            )
            raise LLMRequestError(str(exc), status_code=exc.status_code) from exc
        except anthropic.APIError as exc:
            logger.warning("llm event=request_failed model=%s error=%s", model, exc)
            raise LLMRequestError(str(exc)) from exc

        return ModelResponse(
            content=[
                block.model_dump(mode="json", exclude_none=True) for block in response.content
            ],
            stop_reason=response.stop_reason,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


def user_message_for_error(exc: LLMRequestError) -> str:
    if exc.status_code == 401:
        return AUTH_ERROR_MESSAGE
    if exc.status_code == 429:
        return RATE_LIMIT_MESSAGE
    return GENERIC_FAILURE_MESSAGE
