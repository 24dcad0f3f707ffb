"""Body normalization: turn raw body bytes into a YAML-safe string.

Binary families are always base64-encoded. Everything else, including unknown
or missing content types, is decoded strictly in its declared charset and falls
back to base64 when the bytes are not valid text, so no content is ever lost or
mangled by a forced decode.
"""

import base64
import codecs
import logging

from .models import NormalizedBody

logger = logging.getLogger(__name__)

DEFAULT_CHARSET = "utf-8"

_BINARY_FAMILIES = ("image/", "audio/", "video/", "font/")

_BINARY_TYPES = frozenset(
    {
        "application/octet-stream",
        "application/pdf",
        "application/wasm",
        "application/zip",
        "application/gzip",
        "application/x-gzip",
        "application/x-tar",
        "application/x-bzip2",
        "application/x-xz",
        "application/zstd",
        "application/x-7z-compressed",
        "application/x-rar-compressed",
        "application/vnd.rar",
        "application/font-woff",
        "application/x-font-woff",
        "application/vnd.ms-fontobject",
    }
)


def parse_content_type(content_type: str | None) -> tuple[str, str | None]:
    """Split a Content-Type header into (media type, charset).

    Example: 'text/html; charset="ISO-8859-1"' -> ("text/html", "iso-8859-1")
    """
    if not content_type:
        return "", None

    media_type, _, params = content_type.partition(";")
    charset: str | None = None
    for param in params.split(";"):
        key, sep, value = param.partition("=")
        if sep and key.strip().lower() == "charset":
            charset = value.strip().strip("\"'").lower() or None
    return media_type.strip().lower(), charset


def is_binary_content_type(content_type: str | None) -> bool:
    media_type, _ = parse_content_type(content_type)
    if not media_type:
        return False
    if media_type.startswith(_BINARY_FAMILIES):
        return True
    return media_type in _BINARY_TYPES


def _canonical_charset(charset: str) -> str:
    # Raises LookupError for unknown codecs.
    name = codecs.lookup(charset).name
    return DEFAULT_CHARSET if name == "utf-8" else charset.lower()


def _as_base64(body: bytes, content_type: str | None) -> NormalizedBody:
    return NormalizedBody(
        encoding="base64",
        string=base64.b64encode(body).decode("ascii"),
        content_type=content_type,
    )


def normalize_body(body: bytes | None, content_type: str | None) -> NormalizedBody:
    """Produce a NormalizedBody for `body` served with `content_type`. Never raises."""
    if not body:
        return NormalizedBody()

    if is_binary_content_type(content_type):
        return _as_base64(body, content_type)

    _, declared = parse_content_type(content_type)
    try:
        charset = _canonical_charset(declared or DEFAULT_CHARSET)
        text = body.decode(charset)
    except (LookupError, UnicodeDecodeError) as e:
        logger.debug(f"Body is not valid {declared or DEFAULT_CHARSET} text ({e}), storing as base64")
        return _as_base64(body, content_type)

    # Codecs that add a BOM or normalize on encode would not reproduce the bytes.
    try:
        exact = text.encode(charset) == body
    except UnicodeEncodeError:
        exact = False
    if not exact:
        logger.debug(f"Text decoded with {charset} does not re-encode to the same bytes, storing as base64")
        return _as_base64(body, content_type)

    return NormalizedBody(encoding="utf8", string=text, charset=charset)


def decode_body(body: NormalizedBody) -> bytes:
    """Reconstruct the original bytes from a NormalizedBody."""
    if body.encoding == "base64":
        return base64.b64decode(body.string.encode("ascii"), validate=True)
    return body.string.encode(body.charset)
