"""
Response sinks: the emission side of an ASGI response.

Downstream handlers emit ASGI messages into a sink. ``SendSink`` delivers
them to the client; ``CachingSink`` decorates another sink and captures the
body on the side without altering what is delivered.
"""

from typing import Awaitable, Callable, List, Optional

from starlette.datastructures import Headers
from starlette.types import Message, Send


class ResponseSink:
    """Anything a response can be emitted into."""

    async def emit(self, message: Message) -> None:
        raise NotImplementedError

    async def __call__(self, message: Message) -> None:
        # Lets a sink stand in for an ASGI ``send`` callable
        await self.emit(message)


class SendSink(ResponseSink):
    """Delivers messages to the real ASGI ``send``."""

    def __init__(self, send: Send):
        self._send = send

    async def emit(self, message: Message) -> None:
        await self._send(message)


class CachingSink(ResponseSink):
    """
    Tees a response into a buffer while forwarding it unchanged.

    ``on_complete`` fires at most once, after the final body message has
    been delivered by the inner sink, and only for a cacheable status. A
    response that is abandoned, fails mid-stream, or fails to deliver never
    completes.
    """

    def __init__(
        self,
        inner: ResponseSink,
        on_complete: Callable[[int, Optional[str], bytes], Awaitable[None]],
        cacheable_statuses: frozenset = frozenset({200}),
    ):
        self._inner = inner
        self._on_complete = on_complete
        self._cacheable_statuses = cacheable_statuses
        self._chunks: List[bytes] = []
        self._status: Optional[int] = None
        self._media_type: Optional[str] = None
        self._capturing = False
        self.completed = False

    async def emit(self, message: Message) -> None:
        message_type = message["type"]

        if message_type == "http.response.start":
            self._status = message["status"]
            headers = Headers(raw=message.get("headers", []))
            self._media_type = headers.get("content-type")
            self._capturing = (
                self._status in self._cacheable_statuses
                and "set-cookie" not in headers
            )
            await self._inner.emit(message)
            return

        if message_type != "http.response.body":
            await self._inner.emit(message)
            return

        if self._capturing:
            self._chunks.append(message.get("body", b""))

        await self._inner.emit(message)

        if message.get("more_body", False) or not self._capturing or self.completed:
            return

        self.completed = True
        self._capturing = False
        body = b"".join(self._chunks)
        self._chunks = []
        await self._on_complete(self._status, self._media_type, body)
