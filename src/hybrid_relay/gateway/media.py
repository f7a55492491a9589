"""Collaborator interfaces for inbound voice notes and photos."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

MediaKind = Literal["voice", "image", "other"]


@dataclass(frozen=True)
class InboundMedia:
    """A non-text message; `file_id` is the platform's handle for the attachment."""

    chat_id: str
    kind: MediaKind
    file_id: str | None = None
    caption: str | None = None
    thread_id: int | None = None


class Transcriber(Protocol):
    async def transcribe(self, file_id: str) -> str | None: ...


class ImageDescriber(Protocol):
    async def describe(self, file_id: str, caption: str | None = None) -> str | None: ...
