"""Custom exceptions for browser-cassette."""

from pathlib import Path


class BrowserCassetteError(Exception):
    """Base exception for browser-cassette errors."""

    pass


class InvalidCaptureTargetError(BrowserCassetteError, ValueError):
    """Raised when the capture URL cannot be recorded (not http(s), no host)."""

    pass


class CaptureError(BrowserCassetteError):
    """Raised when the browser could not be launched or driven."""

    pass


class CassetteFormatError(BrowserCassetteError):
    """Raised when cassette bytes cannot be loaded into a FixtureDocument."""

    pass


class CassetteFinalizedError(BrowserCassetteError):
    """Raised when appending to a builder that was already finalized."""

    pass


class CassetteWriteError(BrowserCassetteError):
    """Raised when a cassette cannot be persisted."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write cassette {path}: {reason}")
