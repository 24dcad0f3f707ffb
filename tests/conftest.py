"""Pytest configuration and fixtures for browser-cassette tests."""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path

import pytest

from browser_cassette.cassettes.events import EventStream, RequestStarted, ResponseReceived
from browser_cassette.config import CaptureSettings, load_settings

FIXED_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "e2e: End-to-end tests requiring a real browser")
    config.addinivalue_line("markers", "slow: Tests that take longer to run")


def fixed_clock() -> datetime:
    return FIXED_TIME


def body_of(payload: bytes) -> Callable[[], Awaitable[bytes]]:
    async def read() -> bytes:
        return payload

    return read


def failing_body(message: str = "body unavailable") -> Callable[[], Awaitable[bytes]]:
    async def read() -> bytes:
        raise RuntimeError(message)

    return read


def response_event(
    url: str,
    payload: bytes = b"",
    content_type: str | None = None,
    status_code: int = 200,
    request_id: str | None = None,
    read_body: Callable[[], Awaitable[bytes]] | None = None,
) -> ResponseReceived:
    headers: Mapping[str, str] = {"Content-Type": content_type} if content_type else {}
    return ResponseReceived(
        url=url,
        status_code=status_code,
        status_message="OK" if status_code == 200 else "",
        headers=headers,
        read_body=read_body or body_of(payload),
        request_id=request_id,
    )


class ScriptedDriver:
    """Browser driver stand-in that replays a list of events during load()."""

    def __init__(self, settings: CaptureSettings, stream: EventStream, events=(), fail_on=None, hang=False) -> None:
        self.settings = settings
        self.stream = stream
        self.events = list(events)
        self.fail_on = fail_on
        self.hang = hang
        self.started = False
        self.closed = False
        self.loaded_url: str | None = None

    async def start(self) -> None:
        if self.fail_on == "start":
            raise RuntimeError("Chromium executable not found")
        self.started = True

    async def load(self, url: str) -> None:
        self.loaded_url = url
        for event in self.events:
            self.stream.publish(event)
        if self.fail_on == "load":
            raise RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        if self.hang:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def library_dir(tmp_path: Path) -> Path:
    return tmp_path / "vcr_cassettes"


@pytest.fixture
def settings(library_dir: Path, tmp_path: Path) -> CaptureSettings:
    """Settings isolated from the user's config file, with short timeouts."""
    return load_settings(
        config_file=tmp_path / "missing-config.json",
        recorder={"cassette_library_dir": str(library_dir), "debug_log": "", "capture_timeout": 5.0, "drain_timeout": 2.0},
        page={"settle_delay": 0.0, "body_read_timeout": 1.0},
    )


@pytest.fixture
def request_started() -> Callable[..., RequestStarted]:
    def make(url: str, method: str = "GET", headers=None, body: bytes | None = None, request_id: str | None = None) -> RequestStarted:
        return RequestStarted(url=url, method=method, headers=headers or {}, body=body, request_id=request_id)

    return make
