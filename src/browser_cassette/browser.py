"""Browser driver: render a page in Chromium and publish its network events.

The tap works with browser-use's CDP-based architecture. CDP callbacks are
synchronous, so they only translate events and publish them onto an
EventStream; the correlator reads bodies later through the reader attached to
each ResponseReceived event.

Event mapping:
- Network.requestWillBeSent -> RequestStarted (plus a body-less
  ResponseReceived for the previous hop when it carries a redirectResponse)
- Network.responseReceived  -> response metadata kept until loading ends
- Network.loadingFinished   -> ResponseReceived, body via Network.getResponseBody
- Network.loadingFailed     -> ResponseReceived whose body read fails (if
  headers had arrived), otherwise the request is just forgotten
"""

import asyncio
import base64
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from .cassettes.events import BodyReader, EventStream, RequestStarted, ResponseReceived
from .cassettes.models import get_header
from .cassettes.normalizer import parse_content_type
from .config import CaptureSettings
from .exceptions import CaptureError

if TYPE_CHECKING:
    from browser_use.browser.session import BrowserSession, CDPSession
    from cdp_use.cdp.network.events import LoadingFailedEvent, LoadingFinishedEvent, RequestWillBeSentEvent, ResponseReceivedEvent

logger = logging.getLogger(__name__)

IDLE_POLL_INTERVAL = 0.1
SELECTOR_POLL_INTERVAL = 0.25


class BodyUnavailableError(CaptureError):
    """Raised by a body reader when the browser cannot deliver the payload."""

    pass


class BrowserDriver(Protocol):
    """What a capture session needs from a browser."""

    async def start(self) -> None: ...

    async def load(self, url: str) -> None: ...

    async def close(self) -> None: ...


DriverFactory = Callable[[CaptureSettings, EventStream], BrowserDriver]


def _encode_text_body(body: str, content_type: str | None) -> bytes:
    # CDP hands back decoded text; re-encode it in the charset the page declared.
    _, charset = parse_content_type(content_type)
    if charset:
        try:
            return body.encode(charset)
        except (LookupError, UnicodeEncodeError):
            pass
    return body.encode("utf-8")


@dataclass
class _PendingResponse:
    url: str
    status_code: int
    status_message: str
    headers: dict[str, str] = field(default_factory=dict)
    session_id: str | None = None


class CdpNetworkTap:
    """Translates CDP Network events into cassette events.

    Usage:
        tap = CdpNetworkTap(stream)
        await tap.attach(browser_session)
        ...
        await tap.wait_for_idle(idle_time=0.5, timeout=30)
    """

    def __init__(self, stream: EventStream) -> None:
        self._stream = stream
        self._responses: dict[str, _PendingResponse] = {}  # keyed by CDP requestId
        self._inflight: set[str] = set()
        self._last_activity = time.monotonic()
        self._browser_session: "BrowserSession | None" = None
        self._attached = False

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def _touch(self) -> None:
        self._last_activity = time.monotonic()

    async def attach(self, browser_session: "BrowserSession") -> None:
        """Register CDP Network handlers on a started BrowserSession."""
        if self._attached:
            logger.warning("Network tap already attached")
            return

        self._browser_session = browser_session
        self._attached = True

        cdp_client = browser_session.cdp_client
        cdp_client.register.Network.requestWillBeSent(self._on_request_will_be_sent)
        cdp_client.register.Network.responseReceived(self._on_response_received)
        cdp_client.register.Network.loadingFinished(self._on_loading_finished)
        cdp_client.register.Network.loadingFailed(self._on_loading_failed)

        # Enable on browser-wide level (no session_id) to capture ALL network traffic
        try:
            await cdp_client.send.Network.enable()
            logger.debug("Network domain enabled browser-wide")
        except Exception as e:
            logger.debug(f"Browser-wide Network.enable failed: {e}, trying session-scoped")
            try:
                cdp_session = await browser_session.get_or_create_cdp_session()
                await cdp_client.send.Network.enable(session_id=cdp_session.session_id)
                logger.debug(f"Network domain enabled for session: {cdp_session.session_id}")
            except Exception as e2:
                raise CaptureError(f"Failed to enable Network domain: {e2}") from e2

    def _on_request_will_be_sent(self, event: "RequestWillBeSentEvent", session_id: str | None = None) -> None:
        """Handle CDP Network.requestWillBeSent event."""
        request_id = event.get("requestId", "")
        request_data: dict[str, Any] = dict(event.get("request", {}))  # type: ignore[arg-type]
        url = request_data.get("url", "")

        redirect = event.get("redirectResponse")
        if isinstance(redirect, dict):
            # Same requestId continues with the next hop; the redirect itself has no body.
            self._publish_redirect(request_id, redirect)

        post_data = request_data.get("postData")
        self._inflight.add(request_id)
        self._touch()
        self._stream.publish(
            RequestStarted(
                url=url,
                method=request_data.get("method", "GET"),
                headers=dict(request_data.get("headers", {})),
                body=post_data.encode("utf-8") if isinstance(post_data, str) and post_data else None,
                request_id=request_id,
            )
        )

    def _publish_redirect(self, request_id: str, redirect: dict[str, Any]) -> None:
        async def empty_body() -> bytes:
            return b""

        self._stream.publish(
            ResponseReceived(
                url=redirect.get("url", ""),
                status_code=int(redirect.get("status", 0)),
                status_message=redirect.get("statusText", "") or "",
                headers=dict(redirect.get("headers", {})),
                read_body=empty_body,
                request_id=request_id,
            )
        )

    def _on_response_received(self, event: "ResponseReceivedEvent", session_id: str | None = None) -> None:
        """Handle CDP Network.responseReceived event. The body is not ready yet."""
        request_id = event.get("requestId", "")
        response_data: dict[str, Any] = dict(event.get("response", {}))  # type: ignore[arg-type]
        self._responses[request_id] = _PendingResponse(
            url=response_data.get("url", ""),
            status_code=int(response_data.get("status", 0)),
            status_message=response_data.get("statusText", "") or "",
            headers=dict(response_data.get("headers", {})),
            session_id=session_id,
        )
        self._touch()

    def _on_loading_finished(self, event: "LoadingFinishedEvent", session_id: str | None = None) -> None:
        """Handle CDP Network.loadingFinished event."""
        request_id = event.get("requestId", "")
        self._inflight.discard(request_id)
        self._touch()

        pending = self._responses.pop(request_id, None)
        if pending is None:
            return

        content_type = get_header(pending.headers, "content-type")
        self._publish_response(request_id, pending, self._body_reader(request_id, pending.session_id, content_type))

    def _on_loading_failed(self, event: "LoadingFailedEvent", session_id: str | None = None) -> None:
        """Handle CDP Network.loadingFailed event."""
        request_id = event.get("requestId", "")
        error_text = event.get("errorText", "Unknown error")
        self._inflight.discard(request_id)
        self._touch()

        pending = self._responses.pop(request_id, None)
        if pending is None:
            logger.debug(f"Request {request_id} failed before a response arrived: {error_text}")
            return

        async def failed_body() -> bytes:
            raise BodyUnavailableError(f"Loading failed: {error_text}")

        self._publish_response(request_id, pending, failed_body)

    def _publish_response(self, request_id: str, pending: _PendingResponse, reader: BodyReader) -> None:
        self._stream.publish(
            ResponseReceived(
                url=pending.url,
                status_code=pending.status_code,
                status_message=pending.status_message,
                headers=pending.headers,
                read_body=reader,
                request_id=request_id,
            )
        )

    def _body_reader(self, request_id: str, session_id: str | None, content_type: str | None) -> BodyReader:
        async def read_body() -> bytes:
            if not self._browser_session:
                raise BodyUnavailableError("Network tap is not attached")

            result = await self._browser_session.cdp_client.send.Network.getResponseBody(
                params={"requestId": request_id},
                session_id=session_id,
            )
            body = result.get("body", "")
            if not isinstance(body, str):
                body = str(body)
            if result.get("base64Encoded", False):
                return base64.b64decode(body)
            return _encode_text_body(body, content_type)

        return read_body

    async def wait_for_idle(self, idle_time: float, timeout: float) -> bool:
        """Wait until no request has been in flight for `idle_time` seconds.

        Returns False if the network did not go idle within `timeout`.
        """
        deadline = time.monotonic() + timeout
        while True:
            now = time.monotonic()
            if not self._inflight and now - self._last_activity >= idle_time:
                return True
            if now >= deadline:
                return False
            await asyncio.sleep(IDLE_POLL_INTERVAL)

    def detach(self) -> None:
        # CDP handlers are registered on the client and go away with the browser session.
        self._attached = False
        self._browser_session = None


class CdpBrowserDriver:
    """Launches Chromium through browser-use and renders the capture target.

    Usage:
        driver = CdpBrowserDriver(settings, stream)
        await driver.start()
        await driver.load("https://example.com/product")
        await driver.close()
    """

    def __init__(self, settings: CaptureSettings, stream: EventStream) -> None:
        self.settings = settings
        self.tap = CdpNetworkTap(stream)
        self._browser_session: "BrowserSession | None" = None
        self._cdp_session: "CDPSession | None" = None

    def _build_profile(self) -> Any:
        from browser_use import BrowserProfile

        browser = self.settings.browser
        return BrowserProfile(
            headless=browser.headless,
            user_agent=browser.user_agent,
            viewport={"width": browser.viewport_width, "height": browser.viewport_height},
            device_scale_factor=browser.device_scale_factor,
            is_mobile=browser.is_mobile,
            has_touch=browser.has_touch,
            args=list(browser.extra_args),
        )

    async def start(self) -> None:
        from browser_use.browser.session import BrowserSession

        try:
            self._browser_session = BrowserSession(browser_profile=self._build_profile())
            await self._browser_session.start()
            await self.tap.attach(self._browser_session)
            self._cdp_session = await self._browser_session.get_or_create_cdp_session()
        except CaptureError:
            raise
        except Exception as e:
            raise CaptureError(f"Failed to launch browser: {e}") from e

        session_id = self._cdp_session.session_id
        # Page and Runtime are needed for navigation and selector checks.
        for domain in (self._browser_session.cdp_client.send.Page, self._browser_session.cdp_client.send.Runtime):
            try:
                await domain.enable(session_id=session_id)
            except Exception as e:
                # May already be enabled by session manager
                logger.debug(f"Domain enable: {e}")
        logger.debug(f"Browser started, CDP session {session_id[-8:]}")

    async def load(self, url: str) -> None:
        """Navigate to `url` and wait for the page and its late requests to settle."""
        if not self._browser_session or not self._cdp_session:
            raise CaptureError("Browser is not started")

        page = self.settings.page
        logger.info(f"Loading page: {url}")
        nav_result = await self._browser_session.cdp_client.send.Page.navigate(
            params={"url": url, "transitionType": "typed"},
            session_id=self._cdp_session.session_id,
        )
        if nav_result.get("errorText"):
            raise CaptureError(f"Navigation failed: {nav_result['errorText']}")

        if not await self.tap.wait_for_idle(idle_time=page.network_idle_time, timeout=page.navigation_timeout):
            logger.warning(f"Network still busy after {page.navigation_timeout}s ({self.tap.inflight_count} requests in flight)")

        if not await self.wait_for_selector("body", timeout=page.body_timeout):
            logger.warning(f"Timeout waiting for page body after {page.body_timeout}s")
        elif page.content_selectors and not await self.wait_for_selector(page.content_selectors, timeout=page.content_timeout):
            logger.warning(f"Timeout waiting for page content ({page.content_selectors}) after {page.content_timeout}s")

        # Give extra time for dynamic content and pending requests to complete
        await asyncio.sleep(page.settle_delay)

    async def wait_for_selector(self, selector: str, timeout: float) -> bool:
        """Poll the document until `selector` matches. Returns False on timeout."""
        if not self._browser_session or not self._cdp_session:
            raise CaptureError("Browser is not started")

        expression = "(() => { try { return document.querySelector(%s) !== null; } catch (e) { return false; } })()" % json.dumps(selector)
        deadline = time.monotonic() + timeout
        while True:
            try:
                result = await self._browser_session.cdp_client.send.Runtime.evaluate(
                    params={"expression": expression, "returnByValue": True},
                    session_id=self._cdp_session.session_id,
                )
                if result.get("result", {}).get("value") is True:
                    return True
            except Exception as e:
                logger.debug(f"Selector check for {selector!r} failed: {e}")
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(SELECTOR_POLL_INTERVAL)

    async def close(self) -> None:
        self.tap.detach()
        if self._browser_session is None:
            return
        logger.info("Closing browser...")
        try:
            await self._browser_session.stop()
        finally:
            self._browser_session = None
            self._cdp_session = None
