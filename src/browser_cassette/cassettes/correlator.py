"""Pair asynchronous request and response events into Interactions.

Pending requests are keyed by URL by default: a second request to a URL that
is still pending overwrites the first, and a response consumes whatever entry
holds its key. Drivers that supply a per-request id can opt into exact pairing
with `correlate_by="request_id"`.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from .builder import FixtureBuilder
from .events import EventStream, NetworkEvent, RequestStarted, ResponseReceived
from .models import CapturedRequest, CapturedResponse, Interaction
from .normalizer import normalize_body

logger = logging.getLogger(__name__)

CorrelationKey = Literal["url", "request_id"]


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class CorrelationStats:
    """Counters for one capture run."""

    requests: int = 0
    responses: int = 0
    recorded: int = 0
    overwritten: int = 0
    unmatched: int = 0
    failed_reads: int = 0


class InteractionCorrelator:
    """Turns a stream of request/response events into Interactions.

    Each event is handled to completion before the next one is taken, so the
    pending table is only touched by one handler at a time.
    """

    def __init__(
        self,
        builder: FixtureBuilder,
        correlate_by: CorrelationKey = "url",
        body_read_timeout: float | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize correlator.

        Args:
            builder: Receives every completed Interaction
            correlate_by: Pending-table key, "url" or "request_id"
            body_read_timeout: Seconds to wait for a response body (None waits forever)
            clock: Source of capture timestamps
        """
        self._builder = builder
        self.correlate_by = correlate_by
        self.body_read_timeout = body_read_timeout
        self._clock = clock
        self._pending: dict[str, CapturedRequest] = {}
        self.stats = CorrelationStats()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _key(self, url: str, request_id: str | None) -> str:
        if self.correlate_by == "request_id" and request_id:
            return request_id
        return url

    def on_request_started(self, event: RequestStarted) -> None:
        self.stats.requests += 1
        request = CapturedRequest(
            method=event.method,
            url=event.url,
            headers=dict(event.headers),
            body=event.body,
        )
        key = self._key(event.url, event.request_id)
        if key in self._pending:
            self.stats.overwritten += 1
            logger.debug(f"Request to {event.url} replaces a pending request with the same key")
        self._pending[key] = request
        logger.debug(f"Request: {request.method} {event.url}")

    async def _read_body(self, event: ResponseReceived) -> bytes:
        if self.body_read_timeout is None:
            return await event.read_body()
        return await asyncio.wait_for(event.read_body(), timeout=self.body_read_timeout)

    async def on_response_received(self, event: ResponseReceived) -> Interaction | None:
        """Complete the interaction for `event`. Returns None if its body could not be read."""
        self.stats.responses += 1
        logger.debug(f"Response: {event.url} ({event.status_code})")

        request = self._pending.pop(self._key(event.url, event.request_id), None)
        if request is None:
            self.stats.unmatched += 1
            logger.warning(f"No pending request for response {event.url}, recording it with a synthetic GET")
            request = CapturedRequest.synthetic(event.url)

        try:
            body = await self._read_body(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.failed_reads += 1
            logger.warning(f"Error recording response {event.url}: {type(e).__name__}: {e}")
            return None

        response = CapturedResponse(
            status_code=event.status_code,
            status_message=event.status_message,
            headers=dict(event.headers),
            body=body,
        )
        interaction = Interaction(
            request=request,
            response=response,
            request_body=normalize_body(request.body, request.header("content-type")),
            response_body=normalize_body(response.body, response.content_type),
            recorded_at=self._clock(),
        )
        self._builder.append(interaction)
        self.stats.recorded += 1
        return interaction

    async def handle(self, event: NetworkEvent) -> None:
        if isinstance(event, RequestStarted):
            self.on_request_started(event)
        else:
            await self.on_response_received(event)

    async def consume(self, stream: EventStream) -> None:
        """Process events until the stream is closed and drained."""
        async for event in stream:
            await self.handle(event)
        if self._pending:
            logger.debug(f"{len(self._pending)} requests never received a response")
