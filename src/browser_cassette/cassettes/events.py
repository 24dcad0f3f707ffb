"""Typed network events and the single-consumer stream that carries them.

Browser drivers publish events synchronously from their callbacks; the
correlator receives them one at a time from `EventStream`. Both event kinds
share one queue so a response is never handled before the request that
preceded it on the wire.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field

BodyReader = Callable[[], Awaitable[bytes]]


@dataclass(frozen=True)
class RequestStarted:
    """The browser is about to send a request."""

    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class ResponseReceived:
    """Response headers arrived; `read_body` fetches the payload (and may fail)."""

    url: str
    status_code: int
    read_body: BodyReader
    status_message: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    request_id: str | None = None


NetworkEvent = RequestStarted | ResponseReceived

_CLOSED = object()


class EventStream:
    """Ordered, closable queue of network events with one consumer."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: NetworkEvent) -> bool:
        """Enqueue an event. Returns False (dropping it) once the stream is closed."""
        if self._closed:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        return self._queue.qsize()

    async def receive(self) -> NetworkEvent | None:
        """Wait for the next event; None once the stream is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the sentinel for any later receive() call.
            self._queue.put_nowait(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    async def __aiter__(self) -> AsyncIterator[NetworkEvent]:
        while True:
            event = await self.receive()
            if event is None:
                return
            yield event
