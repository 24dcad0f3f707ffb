"""Record a rendered web page's network traffic into VCR-style YAML cassettes."""

from .cassettes import FixtureDocument, Interaction, load_cassette, read_cassette, write_cassette
from .config import CaptureSettings, load_settings
from .exceptions import (
    BrowserCassetteError,
    CaptureError,
    CassetteFinalizedError,
    CassetteFormatError,
    CassetteWriteError,
    InvalidCaptureTargetError,
)
from .session import CaptureResult, CaptureSession

__all__ = [
    "CaptureSession",
    "CaptureResult",
    "CaptureSettings",
    "load_settings",
    "FixtureDocument",
    "Interaction",
    "load_cassette",
    "read_cassette",
    "write_cassette",
    "BrowserCassetteError",
    "InvalidCaptureTargetError",
    "CaptureError",
    "CassetteFormatError",
    "CassetteFinalizedError",
    "CassetteWriteError",
]
