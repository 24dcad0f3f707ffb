"""Stable, filesystem-safe cassette locations for capture targets."""

import hashlib
from pathlib import Path
from urllib.parse import urlparse

from ..exceptions import InvalidCaptureTargetError

CASSETTE_SUFFIX = ".yml"


def validate_capture_url(url: str) -> str:
    """Return `url` if it can be recorded, raise InvalidCaptureTargetError otherwise."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidCaptureTargetError("Capture URL must be a non-empty string")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise InvalidCaptureTargetError(f"Capture URL must be http(s), got scheme={parsed.scheme!r}")
    if not parsed.hostname:
        raise InvalidCaptureTargetError(f"Capture URL must include a hostname: {url!r}")
    return url


def host_directory(url: str) -> str:
    """Host with dots replaced by underscores, e.g. shop.example.com -> shop_example_com."""
    validate_capture_url(url)
    hostname = urlparse(url).hostname or ""
    return hostname.replace(".", "_").replace(":", "_")


def url_digest(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def cassette_name(url: str) -> str:
    """Cassette name relative to the library dir, without suffix."""
    return f"{host_directory(url)}/{url_digest(url)}"


def cassette_path(url: str, base_dir: str | Path) -> Path:
    return Path(base_dir).expanduser() / host_directory(url) / f"{url_digest(url)}{CASSETTE_SUFFIX}"
