import inspect
from typing import Awaitable, Callable, List, Optional, Union

import httpx

from relay.forwarding import create_upstream_client

TEST_API_KEY = "sk-test-server-held-credential"

Responder = Callable[
    [httpx.Request], Union[httpx.Response, Awaitable[httpx.Response]]
]


class RecordingUpstream:
    """Simulated upstream API that records every request the relay sends it."""

    def __init__(self, responder: Optional[Responder] = None):
        self.requests: List[httpx.Request] = []
        self.responder = responder or (
            lambda request: httpx.Response(200, json={"ok": True})
        )

    async def handler(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        result = self.responder(request)
        if inspect.isawaitable(result):
            result = await result
        if result.is_stream_consumed:
            # Hand back an unread body, as a network transport does.
            result = httpx.Response(
                result.status_code,
                headers=result.headers,
                stream=httpx.ByteStream(result.content),
            )
        return result

    def client(self) -> httpx.AsyncClient:
        return create_upstream_client(transport=httpx.MockTransport(self.handler))

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "upstream was never called"
        return self.requests[-1]


def failing_upstream(exc: Exception) -> RecordingUpstream:
    def _raise(request: httpx.Request) -> httpx.Response:
        raise exc

    return RecordingUpstream(_raise)
