"""Voice-call collaborator interface."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel


class CallStart(BaseModel):
    success: bool
    conversation_id: str | None = None
    error: str | None = None


class VoiceService(Protocol):
    async def initiate_call(self, context: str) -> CallStart: ...

    async def get_transcript(self, conversation_id: str) -> str | None: ...
