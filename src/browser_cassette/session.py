"""One capture run: render a page, correlate its traffic, write the cassette."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from .browser import BrowserDriver, CdpBrowserDriver, DriverFactory
from .cassettes.builder import FixtureBuilder
from .cassettes.correlator import CorrelationStats, InteractionCorrelator
from .cassettes.events import EventStream
from .cassettes.naming import cassette_name, cassette_path, validate_capture_url
from .cassettes.serializer import write_cassette_async
from .config import CaptureSettings
from .exceptions import CaptureError
from .observability import bind_capture_context, get_capture_logger

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    """Outcome of a capture run."""

    url: str
    cassette: str
    path: Path
    interactions: int
    stats: CorrelationStats
    complete: bool = True  # False when the run hit capture_timeout or drain_timeout


class CaptureSession:
    """Records every network interaction of one page load into a cassette.

    Usage:
        session = CaptureSession(load_settings())
        result = await session.record("https://shop.example.com/item")
    """

    def __init__(self, settings: CaptureSettings, driver_factory: DriverFactory = CdpBrowserDriver) -> None:
        self.settings = settings
        self._driver_factory = driver_factory

    async def record(self, url: str) -> CaptureResult:
        """Capture `url` and write its cassette.

        Raises:
            InvalidCaptureTargetError: If the URL is not http(s)
            CaptureError: If the browser could not be launched or navigate
            CassetteWriteError: If the cassette could not be written
        """
        validate_capture_url(url)
        recorder = self.settings.recorder
        name = cassette_name(url)
        path = cassette_path(url, self.settings.get_library_dir())

        bind_capture_context(url, name)
        log = get_capture_logger(__name__)
        log.info("capture_started", cassette_path=str(path))

        builder = FixtureBuilder()
        stream = EventStream()
        correlator = InteractionCorrelator(
            builder,
            correlate_by=recorder.correlate_by,
            body_read_timeout=self.settings.page.body_read_timeout,
        )
        try:
            driver = self._driver_factory(self.settings, stream)
        except Exception as e:
            raise CaptureError(f"Failed to create browser driver: {e}") from e
        consumer = asyncio.create_task(correlator.consume(stream))

        complete = True
        try:
            try:
                await asyncio.wait_for(self._drive(driver, url), timeout=recorder.capture_timeout)
            except TimeoutError:
                complete = False
                log.warning("capture_timeout", timeout=recorder.capture_timeout, recorded=len(builder))
            # Bodies are read through the browser, so drain before closing it.
            if not await self._drain(stream, consumer):
                complete = False
        finally:
            stream.close()
            if not consumer.done():
                consumer.cancel()
                await asyncio.gather(consumer, return_exceptions=True)
            await self._close_driver(driver)

        document = builder.finalize()
        written = await write_cassette_async(document, path)

        stats = correlator.stats
        log.info(
            "capture_finished",
            interactions=len(document.interactions),
            failed_reads=stats.failed_reads,
            unmatched=stats.unmatched,
            complete=complete,
        )
        return CaptureResult(
            url=url,
            cassette=name,
            path=written,
            interactions=len(document.interactions),
            stats=stats,
            complete=complete,
        )

    async def _drive(self, driver: BrowserDriver, url: str) -> None:
        try:
            await driver.start()
            await driver.load(url)
        except (CaptureError, asyncio.CancelledError):
            raise
        except Exception as e:
            raise CaptureError(f"Capture of {url} failed: {e}") from e

    async def _drain(self, stream: EventStream, consumer: asyncio.Task[None]) -> bool:
        """Let the correlator finish queued events. Returns False if it had to be cut off."""
        stream.close()
        queued = stream.pending()
        if queued:
            logger.debug(f"Draining {queued} queued network events")
        try:
            await asyncio.wait_for(consumer, timeout=self.settings.recorder.drain_timeout)
        except TimeoutError:
            logger.warning(f"Abandoning in-flight interactions after {self.settings.recorder.drain_timeout}s drain timeout")
            return False
        return True

    async def _close_driver(self, driver: BrowserDriver) -> None:
        try:
            await driver.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")
