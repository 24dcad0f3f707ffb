"""Contract tests for the CDP network tap."""

import base64
from collections.abc import Callable, Mapping

import pytest

from browser_cassette.browser import BodyUnavailableError, CdpNetworkTap
from browser_cassette.cassettes.events import EventStream, RequestStarted, ResponseReceived


class _DummyNetworkRegister:
    def __init__(self) -> None:
        self.request_will_be_sent: Callable[[Mapping[str, object], str | None], None] | None = None
        self.response_received: Callable[[Mapping[str, object], str | None], None] | None = None
        self.loading_failed: Callable[[Mapping[str, object], str | None], None] | None = None
        self.loading_finished: Callable[[Mapping[str, object], str | None], None] | None = None

    def requestWillBeSent(self, cb: Callable[[Mapping[str, object], str | None], None]) -> None:
        self.request_will_be_sent = cb

    def responseReceived(self, cb: Callable[[Mapping[str, object], str | None], None]) -> None:
        self.response_received = cb

    def loadingFailed(self, cb: Callable[[Mapping[str, object], str | None], None]) -> None:
        self.loading_failed = cb

    def loadingFinished(self, cb: Callable[[Mapping[str, object], str | None], None]) -> None:
        self.loading_finished = cb


class _DummyRegister:
    def __init__(self) -> None:
        self.Network = _DummyNetworkRegister()


class _DummyNetworkSender:
    def __init__(self, bodies: dict[str, dict[str, object]]) -> None:
        self._bodies = bodies
        self.enabled = False
        self.body_requests: list[tuple[str, str | None]] = []

    async def enable(self, session_id: str | None = None) -> dict[str, object]:
        _ = session_id
        self.enabled = True
        return {}

    async def getResponseBody(self, *, params: dict[str, str], session_id: str | None = None) -> dict[str, object]:
        self.body_requests.append((params["requestId"], session_id))
        return self._bodies[params["requestId"]]


class _DummySender:
    def __init__(self, bodies: dict[str, dict[str, object]]) -> None:
        self.Network = _DummyNetworkSender(bodies)


class _DummyCDPClient:
    def __init__(self, bodies: dict[str, dict[str, object]]) -> None:
        self.register = _DummyRegister()
        self.send = _DummySender(bodies)


class _DummyBrowserSession:
    def __init__(self, bodies: dict[str, dict[str, object]] | None = None) -> None:
        self.cdp_client = _DummyCDPClient(bodies or {})


async def _drain(stream: EventStream) -> list[object]:
    stream.close()
    return [event async for event in stream]


async def _attached(bodies: dict[str, dict[str, object]] | None = None) -> tuple[CdpNetworkTap, EventStream, _DummyBrowserSession]:
    stream = EventStream()
    tap = CdpNetworkTap(stream)
    session = _DummyBrowserSession(bodies)
    await tap.attach(session)
    return tap, stream, session


def _request(request_id: str, url: str, method: str = "GET", **extra: object) -> dict[str, object]:
    return {"requestId": request_id, "request": {"url": url, "method": method, "headers": {"Accept": "*/*"}, **extra}}


def _response(request_id: str, url: str, status: int = 200, content_type: str = "text/html") -> dict[str, object]:
    return {
        "requestId": request_id,
        "response": {"url": url, "status": status, "statusText": "OK", "headers": {"Content-Type": content_type}, "mimeType": content_type},
    }


@pytest.mark.asyncio
async def test_attach_registers_handlers_and_enables_network() -> None:
    _, _, session = await _attached()

    network = session.cdp_client.register.Network
    assert network.request_will_be_sent is not None
    assert network.response_received is not None
    assert network.loading_finished is not None
    assert network.loading_failed is not None
    assert session.cdp_client.send.Network.enabled


@pytest.mark.asyncio
async def test_request_and_finished_response_are_published() -> None:
    tap, stream, session = await _attached({"1": {"body": "<html>ok</html>", "base64Encoded": False}})

    tap._on_request_will_be_sent(_request("1", "https://a.test/", method="POST", postData='{"q":1}'), session_id="s1")
    tap._on_response_received(_response("1", "https://a.test/"), session_id="s1")
    assert tap.inflight_count == 1
    tap._on_loading_finished({"requestId": "1"}, session_id="s1")

    request, response = await _drain(stream)
    assert isinstance(request, RequestStarted)
    assert request.method == "POST"
    assert request.body == b'{"q":1}'
    assert request.request_id == "1"
    assert isinstance(response, ResponseReceived)
    assert response.status_code == 200
    assert response.headers == {"Content-Type": "text/html"}
    assert await response.read_body() == b"<html>ok</html>"
    assert session.cdp_client.send.Network.body_requests == [("1", "s1")]
    assert tap.inflight_count == 0


@pytest.mark.asyncio
async def test_base64_body_is_decoded() -> None:
    png = b"\x89PNG\r\n\x1a\n\x00"
    tap, stream, _ = await _attached({"7": {"body": base64.b64encode(png).decode(), "base64Encoded": True}})

    tap._on_request_will_be_sent(_request("7", "https://a.test/logo.png"))
    tap._on_response_received(_response("7", "https://a.test/logo.png", content_type="image/png"))
    tap._on_loading_finished({"requestId": "7"})

    _, response = await _drain(stream)
    assert await response.read_body() == png


@pytest.mark.asyncio
async def test_text_body_reencoded_in_declared_charset() -> None:
    tap, stream, _ = await _attached({"3": {"body": "café", "base64Encoded": False}})

    tap._on_request_will_be_sent(_request("3", "https://a.test/"))
    tap._on_response_received(_response("3", "https://a.test/", content_type="text/html; charset=iso-8859-1"))
    tap._on_loading_finished({"requestId": "3"})

    _, response = await _drain(stream)
    assert await response.read_body() == "café".encode("latin-1")


@pytest.mark.asyncio
async def test_loading_failed_after_headers_publishes_failing_reader() -> None:
    tap, stream, _ = await _attached()

    tap._on_request_will_be_sent(_request("9", "https://a.test/big.jpg"))
    tap._on_response_received(_response("9", "https://a.test/big.jpg", content_type="image/jpeg"))
    tap._on_loading_failed({"requestId": "9", "errorText": "net::ERR_ABORTED"})

    _, response = await _drain(stream)
    with pytest.raises(BodyUnavailableError, match="ERR_ABORTED"):
        await response.read_body()


@pytest.mark.asyncio
async def test_loading_failed_before_headers_publishes_nothing_more() -> None:
    tap, stream, _ = await _attached()

    tap._on_request_will_be_sent(_request("4", "https://blocked.test/tracker.js"))
    tap._on_loading_failed({"requestId": "4", "errorText": "net::ERR_BLOCKED_BY_CLIENT"})

    events = await _drain(stream)
    assert len(events) == 1
    assert isinstance(events[0], RequestStarted)
    assert tap.inflight_count == 0


@pytest.mark.asyncio
async def test_redirect_hop_recorded_with_empty_body() -> None:
    tap, stream, _ = await _attached({"5": {"body": "final", "base64Encoded": False}})

    tap._on_request_will_be_sent(_request("5", "http://a.test/"))
    redirect = _request("5", "https://a.test/")
    redirect["redirectResponse"] = {"url": "http://a.test/", "status": 301, "statusText": "Moved", "headers": {"Location": "https://a.test/"}}
    tap._on_request_will_be_sent(redirect)
    tap._on_response_received(_response("5", "https://a.test/"))
    tap._on_loading_finished({"requestId": "5"})

    first, hop, second, final = await _drain(stream)
    assert isinstance(first, RequestStarted) and first.url == "http://a.test/"
    assert isinstance(hop, ResponseReceived) and hop.status_code == 301 and hop.url == "http://a.test/"
    assert await hop.read_body() == b""
    assert isinstance(second, RequestStarted) and second.url == "https://a.test/"
    assert await final.read_body() == b"final"


@pytest.mark.asyncio
async def test_wait_for_idle() -> None:
    tap, _, _ = await _attached()

    assert await tap.wait_for_idle(idle_time=0.0, timeout=1.0)

    tap._on_request_will_be_sent(_request("1", "https://a.test/slow"))
    assert not await tap.wait_for_idle(idle_time=0.0, timeout=0.15)


class _DummyPageSender:
    def __init__(self, error_text: str | None = None) -> None:
        self.navigations: list[dict[str, str]] = []
        self._error_text = error_text

    async def navigate(self, *, params: dict[str, str], session_id: str | None = None) -> dict[str, object]:
        _ = session_id
        self.navigations.append(params)
        return {"errorText": self._error_text} if self._error_text else {"frameId": "F1"}


class _DummyRuntimeSender:
    def __init__(self, present: set[str]) -> None:
        self._present = present
        self.expressions: list[str] = []

    async def evaluate(self, *, params: dict[str, object], session_id: str | None = None) -> dict[str, object]:
        _ = session_id
        expression = str(params["expression"])
        self.expressions.append(expression)
        return {"result": {"type": "boolean", "value": any(f'"{sel}"' in expression for sel in self._present)}}


class _DummyCDPSession:
    session_id = "session-0001"


def _driver(settings, present: set[str], error_text: str | None = None):
    from browser_cassette.browser import CdpBrowserDriver

    driver = CdpBrowserDriver(settings, EventStream())
    browser_session = _DummyBrowserSession()
    browser_session.cdp_client.send.Page = _DummyPageSender(error_text)
    browser_session.cdp_client.send.Runtime = _DummyRuntimeSender(present)
    driver._browser_session = browser_session
    driver._cdp_session = _DummyCDPSession()
    return driver, browser_session


@pytest.mark.asyncio
async def test_driver_load_navigates_and_waits_for_content(settings) -> None:
    settings.page.content_selectors = "main"
    settings.page.network_idle_time = 0.0
    driver, browser_session = _driver(settings, present={"body", "main"})

    await driver.load("https://a.test/")

    assert browser_session.cdp_client.send.Page.navigations == [{"url": "https://a.test/", "transitionType": "typed"}]
    assert len(browser_session.cdp_client.send.Runtime.expressions) == 2


@pytest.mark.asyncio
async def test_driver_load_tolerates_missing_content(settings, caplog) -> None:
    settings.page.content_selectors = ".product-title"
    settings.page.content_timeout = 0.1
    settings.page.network_idle_time = 0.0
    driver, _ = _driver(settings, present={"body"})

    with caplog.at_level("WARNING", logger="browser_cassette"):
        await driver.load("https://a.test/")

    assert "Timeout waiting for page content" in caplog.text


@pytest.mark.asyncio
async def test_driver_navigation_error(settings) -> None:
    from browser_cassette.exceptions import CaptureError

    driver, _ = _driver(settings, present={"body"}, error_text="net::ERR_NAME_NOT_RESOLVED")

    with pytest.raises(CaptureError, match="ERR_NAME_NOT_RESOLVED"):
        await driver.load("https://nowhere.invalid/")


@pytest.mark.asyncio
async def test_driver_load_requires_start(settings) -> None:
    from browser_cassette.browser import CdpBrowserDriver
    from browser_cassette.exceptions import CaptureError

    with pytest.raises(CaptureError, match="not started"):
        await CdpBrowserDriver(settings, EventStream()).load("https://a.test/")


@pytest.mark.asyncio
async def test_wait_for_selector_requires_start(settings) -> None:
    from browser_cassette.browser import CdpBrowserDriver
    from browser_cassette.exceptions import CaptureError

    with pytest.raises(CaptureError, match="not started"):
        await CdpBrowserDriver(settings, EventStream()).wait_for_selector("body", timeout=0.1)
