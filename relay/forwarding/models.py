"""
Typed transient data for one relay cycle.

Nothing here outlives a single request except ``RelayConfig``, which is
built once at startup and shared read-only by every call.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from relay.vars import (
    COMPAT_PATH,
    COMPAT_UPSTREAM_PATH,
    FEATURE_HEADER,
    OPENAI_API_KEY,
    ROUTE_PREFIX,
    UPSTREAM_ORIGIN,
)

JSON_MEDIA_TYPE = "application/json"
EVENT_STREAM_MEDIA_TYPE = "text/event-stream"

# Methods without body semantics
READ_ONLY_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class RelayConfig:
    """Immutable relay settings, including the server-held credential."""

    api_key: str
    upstream_origin: str = "https://api.openai.com"
    route_prefix: str = "/openai"
    compat_path: str = "/openai"
    compat_upstream_path: str = "/v1/chat/completions"
    feature_header: str = "OpenAI-Beta"

    def __post_init__(self):
        # frozen, so normalise through object.__setattr__
        object.__setattr__(self, "upstream_origin", self.upstream_origin.rstrip("/"))
        prefix = self.route_prefix.strip("/")
        object.__setattr__(self, "route_prefix", f"/{prefix}" if prefix else "")

    @classmethod
    def from_env(cls) -> "RelayConfig":
        return cls(
            api_key=OPENAI_API_KEY,
            upstream_origin=UPSTREAM_ORIGIN,
            route_prefix=ROUTE_PREFIX,
            compat_path=COMPAT_PATH,
            compat_upstream_path=COMPAT_UPSTREAM_PATH,
            feature_header=FEATURE_HEADER,
        )

    @property
    def compat_url(self) -> str:
        return f"{self.upstream_origin}/{self.compat_upstream_path.lstrip('/')}"

    def __repr__(self) -> str:
        return (
            f"RelayConfig(upstream_origin={self.upstream_origin!r}, "
            f"route_prefix={self.route_prefix!r}, compat_path={self.compat_path!r})"
        )


def is_json_media_type(content_type: Optional[str]) -> bool:
    """True for a missing content type, ``application/json`` and ``*+json``."""
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == JSON_MEDIA_TYPE or media_type.endswith("+json")


def is_event_stream(content_type: Optional[str]) -> bool:
    return bool(content_type) and EVENT_STREAM_MEDIA_TYPE in content_type.lower()


class BodyKind(str, Enum):
    """What an outbound body carries."""

    ABSENT = "absent"
    JSON = "json"
    RAW = "raw"


@dataclass(frozen=True)
class RelayBody:
    """
    Outbound request body.

    Attributes:
        kind: Whether the body is absent, a structured JSON value or raw bytes
        value: The parsed JSON value for ``JSON``, the bytes for ``RAW``
    """

    kind: BodyKind
    value: Any = None

    @classmethod
    def absent(cls) -> "RelayBody":
        return cls(BodyKind.ABSENT)

    @classmethod
    def from_json_bytes(cls, raw: bytes) -> "RelayBody":
        """
        Parse a JSON payload. An empty payload is treated as an empty object.

        Raises:
            ValueError: If the payload is not valid JSON
        """
        if not raw or not raw.strip():
            return cls(BodyKind.JSON, {})
        try:
            return cls(BodyKind.JSON, json.loads(raw))
        except ValueError as e:
            raise ValueError(f"Request body is not valid JSON: {e}") from e

    @classmethod
    def from_inbound(
        cls, method: str, content_type: Optional[str], raw: bytes
    ) -> "RelayBody":
        if method.upper() in READ_ONLY_METHODS:
            return cls.absent()
        if is_json_media_type(content_type):
            return cls.from_json_bytes(raw)
        return cls(BodyKind.RAW, bytes(raw))

    def encode(self) -> Optional[bytes]:
        if self.kind is BodyKind.ABSENT:
            return None
        if self.kind is BodyKind.JSON:
            return json.dumps(
                self.value, separators=(",", ":"), ensure_ascii=False
            ).encode("utf-8")
        return self.value


@dataclass(frozen=True)
class InboundRequest:
    method: str
    path: str
    headers: httpx.Headers
    body: bytes = b""
    query: str = ""

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")


@dataclass(frozen=True)
class OutboundRequest:
    """Request derived from an ``InboundRequest``, ready to be sent upstream."""

    method: str
    url: str
    headers: httpx.Headers
    body: RelayBody

    @property
    def content(self) -> Optional[bytes]:
        return self.body.encode()
