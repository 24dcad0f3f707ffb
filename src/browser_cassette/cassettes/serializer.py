"""Cassette persistence using YAML files.

The on-disk layout follows the VCR cassette convention (`http_interactions`,
`request`/`response`, `recorded_at`). Key order is fixed and nothing depends on
dict ordering of the loader, so two captures of the same traffic differ only in
their `recorded_at` values.
"""

import logging
import os
import tempfile
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from anyio import to_thread

from ..exceptions import CassetteFormatError, CassetteWriteError
from .models import FORMAT_VERSION, CapturedRequest, CapturedResponse, FixtureDocument, Interaction, NormalizedBody
from .normalizer import DEFAULT_CHARSET, decode_body

logger = logging.getLogger(__name__)

BASE64_FORMAT = "base64"

# Line breaks that only survive a load when escaped in a double-quoted scalar.
_NO_BLOCK_CHARS = frozenset("\r\x85\u2028\u2029")


class _CassetteDumper(yaml.SafeDumper):
    pass


def _represent_str(dumper: yaml.SafeDumper, value: str) -> yaml.ScalarNode:
    if _NO_BLOCK_CHARS.intersection(value):
        return dumper.represent_scalar("tag:yaml.org,2002:str", value, style='"')
    # Multi-line bodies read better (and diff better) as literal blocks.
    if "\n" in value:
        return dumper.represent_scalar("tag:yaml.org,2002:str", value, style="|")
    return dumper.represent_str(value)


_CassetteDumper.add_representer(str, _represent_str)


def _encoding_label(body: NormalizedBody) -> str:
    if body.is_binary or body.charset == DEFAULT_CHARSET:
        return "UTF-8"
    return body.charset.upper()


def _body_to_dict(body: NormalizedBody) -> dict[str, Any]:
    data: dict[str, Any] = {"encoding": _encoding_label(body), "string": body.string}
    if body.is_binary:
        data["format"] = BASE64_FORMAT
        if body.content_type is not None:
            data["content_type"] = body.content_type
    return data


def _interaction_to_dict(interaction: Interaction) -> dict[str, Any]:
    request = interaction.request
    response = interaction.response
    return {
        "request": {
            "method": request.method,
            "uri": request.url,
            "body": _body_to_dict(interaction.request_body),
            "headers": dict(request.headers),
        },
        "response": {
            "status": {"code": response.status_code, "message": response.status_message},
            "headers": dict(response.headers),
            "body": _body_to_dict(interaction.response_body),
        },
        "recorded_at": interaction.recorded_at.isoformat(),
    }


def document_to_dict(document: FixtureDocument) -> dict[str, Any]:
    return {
        "http_interactions": [_interaction_to_dict(i) for i in document.interactions],
        "format_version": document.format_version,
        "recorded_with": document.recorded_with,
    }


def dump_cassette(document: FixtureDocument) -> bytes:
    """Render a FixtureDocument as YAML bytes."""
    content = yaml.dump(
        document_to_dict(document),
        Dumper=_CassetteDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )
    if not content.endswith("\n"):
        content += "\n"
    return content.encode("utf-8")


def _require_mapping(value: object, label: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise CassetteFormatError(f"Expected a mapping for {label}, got {type(value).__name__}")
    return value


def _body_from_dict(value: object, label: str) -> NormalizedBody:
    data = _require_mapping(value, label)
    string = data.get("string")
    string = "" if string is None else str(string)

    fmt = data.get("format")
    if fmt == BASE64_FORMAT:
        return NormalizedBody(encoding="base64", string=string, content_type=data.get("content_type"))
    if fmt is not None:
        raise CassetteFormatError(f"Unsupported body format {fmt!r} in {label}")

    label_value = str(data.get("encoding") or "UTF-8")
    charset = DEFAULT_CHARSET if label_value.upper() == "UTF-8" else label_value.lower()
    return NormalizedBody(encoding="utf8", string=string, charset=charset)


def _interaction_from_dict(value: object, index: int) -> Interaction:
    data = _require_mapping(value, f"http_interactions[{index}]")
    req = _require_mapping(data["request"], f"http_interactions[{index}].request")
    resp = _require_mapping(data["response"], f"http_interactions[{index}].response")
    status = _require_mapping(resp["status"], f"http_interactions[{index}].response.status")

    request_body = _body_from_dict(req.get("body") or {}, f"http_interactions[{index}].request.body")
    response_body = _body_from_dict(resp.get("body") or {}, f"http_interactions[{index}].response.body")

    recorded_at = data["recorded_at"]
    if not isinstance(recorded_at, datetime):
        recorded_at = datetime.fromisoformat(str(recorded_at))

    return Interaction(
        request=CapturedRequest(
            method=req.get("method") or "GET",
            url=req["uri"],
            headers=req.get("headers") or {},
            body=decode_body(request_body) or None,
        ),
        response=CapturedResponse(
            status_code=status["code"],
            status_message=status.get("message") or "",
            headers=resp.get("headers") or {},
            body=decode_body(response_body),
        ),
        request_body=request_body,
        response_body=response_body,
        recorded_at=recorded_at,
    )


def load_cassette(data: bytes | str) -> FixtureDocument:
    """Parse cassette bytes back into a FixtureDocument.

    Raises:
        CassetteFormatError: If the YAML is invalid or does not describe a cassette
    """
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise CassetteFormatError(f"Invalid YAML: {e}") from e

    doc = _require_mapping(raw, "cassette")
    version = doc.get("format_version")
    if version != FORMAT_VERSION:
        raise CassetteFormatError(f"Unsupported cassette format_version {version!r}, expected {FORMAT_VERSION}")

    items = doc.get("http_interactions") or []
    if not isinstance(items, list):
        raise CassetteFormatError("http_interactions must be a list")

    try:
        interactions = tuple(_interaction_from_dict(item, i) for i, item in enumerate(items))
        return FixtureDocument(
            interactions=interactions,
            format_version=version,
            recorded_with=str(doc.get("recorded_with") or ""),
        )
    except CassetteFormatError:
        raise
    except (LookupError, TypeError, ValueError) as e:
        raise CassetteFormatError(f"Invalid cassette content: {e}") from e


def _atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Atomically write bytes to `path` using temp + fsync + os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.tmp.", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        if os.name != "nt":
            os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise


def write_cassette(document: FixtureDocument, path: str | Path) -> Path:
    """Write `document` to `path`, replacing any previous cassette.

    Raises:
        CassetteWriteError: If the directory or file cannot be written
    """
    target = Path(path).expanduser()
    payload = dump_cassette(document)
    try:
        _atomic_write_bytes(target, payload)
    except OSError as e:
        raise CassetteWriteError(target, str(e)) from e

    logger.info(f"Saved cassette with {len(document.interactions)} interactions to {target}")
    return target


async def write_cassette_async(document: FixtureDocument, path: str | Path) -> Path:
    """Async wrapper for write_cassette() to avoid blocking the event loop."""
    return await to_thread.run_sync(write_cassette, document, path)


def read_cassette(path: str | Path) -> FixtureDocument:
    return load_cassette(Path(path).expanduser().read_bytes())
