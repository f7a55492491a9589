from __future__ import annotations

import asyncio
import json

import httpx

from hybrid_relay.gateway.local_node import LocalNodeClient

URL = "http://local.test/process"


def _client(handler, secret: str = "") -> LocalNodeClient:
    return LocalNodeClient(URL, secret, transport=httpx.MockTransport(handler))


def test_reply_is_read_from_response_or_result() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": "done locally"})

    result = asyncio.run(_client(handler, secret="s3").forward("hi", "42", 5))

    assert result.success is True
    assert result.response == "done locally"
    assert seen[0].headers["Authorization"] == "Bearer s3"
    assert json.loads(seen[0].content) == {"text": "hi", "chat_id": "42", "thread_id": 5}


def test_accepted_means_the_local_node_replies_itself() -> None:
    result = asyncio.run(_client(lambda request: httpx.Response(202)).forward("hi", "42"))

    assert result.success is True
    assert result.accepted_async is True


def test_errors_and_empty_replies_fail() -> None:
    rejected = asyncio.run(_client(lambda request: httpx.Response(500)).forward("hi", "42"))
    empty = asyncio.run(
        _client(lambda request: httpx.Response(200, json={"response": ""})).forward("hi", "42")
    )

    assert (rejected.success, rejected.error) == (False, "HTTP 500")
    assert empty.success is False


def test_unconfigured_client_does_not_call_out() -> None:
    client = LocalNodeClient("")

    result = asyncio.run(client.forward("hi", "42"))

    assert client.configured is False
    assert result.success is False
