"""Forward chat messages to the local node's processing endpoint."""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class LocalResponse(BaseModel):
    success: bool
    response: str | None = None
    error: str | None = None
    accepted_async: bool = False


class LocalNodeClient:
    """POSTs a message to the local node.

    ``202`` means the local node took the message and will reply to the
    user itself; ``200`` carries the reply in ``response`` or ``result``.
    """

    def __init__(
        self,
        process_url: str,
        secret: str = "",
        *,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.process_url = process_url
        self.secret = secret
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.process_url)

    async def forward(self, text: str, chat_id: str, thread_id: int | None = None) -> LocalResponse:
        if not self.configured:
            return LocalResponse(success=False, error="local node not configured")

        headers = {"Authorization": f"Bearer {self.secret}"} if self.secret else {}
        payload = {"text": text, "chat_id": chat_id, "thread_id": thread_id}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s, transport=self._transport
            ) as client:
                response = await client.post(self.process_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("local_node event=forward_failed error=%s", exc)
            return LocalResponse(success=False, error=str(exc) or exc.__class__.__name__)

        if response.status_code == 202:
            logger.info("local_node event=accepted_async chat_id=%s", chat_id)
            return LocalResponse(success=True, accepted_async=True)
        if response.status_code != 200:
            logger.warning("local_node event=forward_rejected status=%s", response.status_code)
            return LocalResponse(success=False, error=f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return LocalResponse(success=False, error="invalid JSON from local node")
        reply = (body.get("response") or body.get("result")) if isinstance(body, dict) else None
        if not reply:
            return LocalResponse(success=False, error="empty response from local node")
        return LocalResponse(success=True, response=str(reply))
