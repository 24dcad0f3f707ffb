"""Pydantic models for recorded HTTP interactions.

Browser events become CapturedRequest/CapturedResponse objects, the correlator
pairs them into Interactions, and the builder snapshots those into a
FixtureDocument, the unit that is persisted as a cassette. Models are:
- Frozen (nothing is mutated after capture)
- Strict at the persistence boundary (unknown fields forbidden)
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from importlib.metadata import PackageNotFoundError, version
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

FORMAT_VERSION = 1

BodyEncoding = Literal["utf8", "base64"]


def _package_version() -> str:
    try:
        return version("browser-cassette")
    except PackageNotFoundError:
        return "0.0.0+unknown"


RECORDED_WITH = f"browser-cassette {_package_version()}"


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    target = name.strip().lower()
    for k, v in headers.items():
        if k.strip().lower() == target:
            return v
    return None


def merge_headers(headers: Mapping[str, object] | None) -> dict[str, str]:
    """Fold header names case-insensitively.

    The first spelling of a name keeps its position, the last value wins.
    """
    out: dict[str, str] = {}
    spelling: dict[str, str] = {}
    for key, value in (headers or {}).items():
        name = str(key)
        folded = name.lower()
        if folded in spelling:
            out[spelling[folded]] = str(value)
            continue
        spelling[folded] = name
        out[name] = str(value)
    return out


class FrozenModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class CapturedRequest(FrozenModel):
    """A request as announced by the browser."""

    method: str = "GET"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes | None = None

    @field_validator("headers", mode="before")
    @classmethod
    def _fold_headers(cls, value: object) -> object:
        if isinstance(value, Mapping):
            return merge_headers(value)
        return value

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.strip().upper() or "GET"

    @field_validator("body")
    @classmethod
    def _empty_body_is_none(cls, value: bytes | None) -> bytes | None:
        return value or None

    @classmethod
    def synthetic(cls, url: str) -> CapturedRequest:
        """Stand-in for a response whose request was never seen."""
        return cls(method="GET", url=url)

    def header(self, name: str) -> str | None:
        return get_header(self.headers, name)


class CapturedResponse(FrozenModel):
    """A response with its fully read body."""

    status_code: int
    status_message: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    @field_validator("headers", mode="before")
    @classmethod
    def _fold_headers(cls, value: object) -> object:
        if isinstance(value, Mapping):
            return merge_headers(value)
        return value

    def header(self, name: str) -> str | None:
        return get_header(self.headers, name)

    @property
    def content_type(self) -> str | None:
        return self.header("content-type")


class NormalizedBody(FrozenModel):
    """Text-safe representation of a body.

    `utf8` bodies hold the decoded text (decoded with `charset`), `base64`
    bodies hold the encoded bytes plus the content-type they were served with.
    """

    encoding: BodyEncoding = "utf8"
    string: str = ""
    charset: str = "utf-8"
    content_type: str | None = None

    @property
    def is_binary(self) -> bool:
        return self.encoding == "base64"


class Interaction(FrozenModel):
    """One request paired with its response."""

    request: CapturedRequest
    response: CapturedResponse
    request_body: NormalizedBody = Field(default_factory=NormalizedBody)
    response_body: NormalizedBody = Field(default_factory=NormalizedBody)
    recorded_at: datetime

    @field_validator("recorded_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class FixtureDocument(FrozenModel):
    """All interactions recorded for one capture target, in completion order."""

    interactions: tuple[Interaction, ...] = ()
    format_version: int = FORMAT_VERSION
    recorded_with: str = RECORDED_WITH
