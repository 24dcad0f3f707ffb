"""Configuration management using Pydantic settings with optional file persistence.

Settings are loaded once per capture run with `load_settings()` and passed to the
capture session explicitly; nothing here is process-wide state.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# --- Paths ---

APP_NAME = "browser-cassette"


def get_config_dir() -> Path:
    """Get the configuration directory (e.g. ~/.config/browser-cassette)."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / ".config")).expanduser()
    else:
        base = Path("~/.config").expanduser()
    return base / APP_NAME


def get_config_file() -> Path:
    return get_config_dir() / "config.json"


def load_config_file(path: Path | None = None) -> dict[str, Any]:
    """Load settings from the JSON config file if it exists."""
    config_file = path or get_config_file()
    if not config_file.exists():
        return {}

    try:
        text = config_file.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        data = json.loads(text)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {config_file}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


MOBILE_SAFARI_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
)

DEFAULT_CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--disable-features=site-per-process",
    "--disable-blink-features=AutomationControlled",
    "--enable-touch-events",
]

DEFAULT_CONTENT_SELECTORS = 'main, #main, .main, [role="main"], .product-title, .product-details'

CorrelationKey = Literal["url", "request_id"]


class RecorderSettings(BaseSettings):
    """Where and how cassettes are recorded."""

    model_config = SettingsConfigDict(env_prefix="VCR_RECORDER_")

    cassette_library_dir: str = Field(default="vcr_cassettes", description="Root directory for cassettes")
    debug_log: str | None = Field(default="vcr.log", description="Debug log file for the run (empty to disable)")
    logging_level: str = Field(default="WARNING", description="Console log level")
    correlate_by: CorrelationKey = Field(default="url", description="Pair responses with requests by URL or by browser request id")
    capture_timeout: float = Field(default=120.0, description="Overall capture timeout in seconds")
    drain_timeout: float = Field(default=10.0, description="Seconds to finish queued events after the page settled")


class BrowserSettings(BaseSettings):
    """Browser launch and emulation configuration."""

    model_config = SettingsConfigDict(env_prefix="VCR_BROWSER_")

    headless: bool = Field(default=True)
    viewport_width: int = Field(default=390)
    viewport_height: int = Field(default=844)
    device_scale_factor: float = Field(default=3.0)
    is_mobile: bool = Field(default=True)
    has_touch: bool = Field(default=True)
    user_agent: str = Field(default=MOBILE_SAFARI_USER_AGENT)
    extra_args: list[str] = Field(default_factory=lambda: list(DEFAULT_CHROMIUM_ARGS), description="Additional Chromium flags")


class PageSettings(BaseSettings):
    """Page-load waiting heuristics."""

    model_config = SettingsConfigDict(env_prefix="VCR_PAGE_")

    navigation_timeout: float = Field(default=30.0, description="Seconds to wait for the network to go idle after navigation")
    network_idle_time: float = Field(default=0.5, description="Seconds without in-flight requests that count as idle")
    body_timeout: float = Field(default=5.0, description="Seconds to wait for the <body> element")
    content_selectors: str = Field(default=DEFAULT_CONTENT_SELECTORS, description="CSS selector signalling main content")
    content_timeout: float = Field(default=10.0, description="Seconds to wait for content_selectors")
    settle_delay: float = Field(default=5.0, description="Extra seconds for late dynamic requests")
    body_read_timeout: float = Field(default=5.0, description="Seconds to wait for one response body")


class CaptureSettings(BaseSettings):
    """Root settings for a capture run.

    Priority: Config File > Environment Variables > Defaults. Each group reads
    its own env prefix unless the config file supplies that group.
    """

    model_config = SettingsConfigDict(env_prefix="VCR_", extra="ignore")

    recorder: RecorderSettings = Field(default_factory=RecorderSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    page: PageSettings = Field(default_factory=PageSettings)

    def get_library_dir(self) -> Path:
        return Path(self.recorder.cassette_library_dir).expanduser()


def load_settings(config_file: Path | None = None, **overrides: Any) -> CaptureSettings:
    """Load settings with file config as base, env vars overlay."""
    file_data = load_config_file(config_file)
    # Pydantic will overlay env vars on top of groups the file does not set
    return CaptureSettings(**{**file_data, **overrides})
