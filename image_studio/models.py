"""Data models for the key pool, its snapshots, and image payloads.

Snapshots are frozen dataclasses; to_dict() gives the field order the
monitor endpoint returns.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Literal

from image_studio.errors import InvalidImageDataError

Feature = Literal[
    "text-to-image",
    "canvas-editor",
    "style-transfer",
    "templates",
    "enhance-prompt",
    "guided-prompt",
    "photo-restore",
    "default",
]

FEATURES: frozenset[str] = frozenset(Feature.__args__)  # type: ignore[attr-defined]

RestorationType = Literal["restore", "colorize", "enhance"]

RESTORATION_TYPES: frozenset[str] = frozenset(RestorationType.__args__)  # type: ignore[attr-defined]

UNASSIGNED = "unassigned"

_DATA_URL = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class Credential:
    """A named API key. The secret never appears in repr/str."""

    name: str
    secret: str = field(repr=False)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class KeyUsage:
    """One row of the usage snapshot."""

    name: str
    usage_count: int
    is_rate_limited: bool
    failures: int
    feature: str

    def to_dict(self) -> dict:
        return {
            "keyName": self.name,
            "usageCount": self.usage_count,
            "isRateLimited": self.is_rate_limited,
            "failures": self.failures,
            "feature": self.feature,
        }


@dataclass(frozen=True)
class SystemStatus:
    """Aggregate pool health."""

    total_credentials: int
    healthy_credentials: int
    rate_limited_credentials: int
    total_requests: int

    def to_dict(self) -> dict:
        return {
            "totalKeys": self.total_credentials,
            "availableKeys": self.total_credentials - self.rate_limited_credentials,
            "healthyKeys": self.healthy_credentials,
            "rateLimitedKeys": self.rate_limited_credentials,
            "totalRequests": self.total_requests,
        }


@dataclass(frozen=True)
class InlineImage:
    """Base64 image payload with its MIME type, as exchanged with Gemini."""

    mime_type: str
    data: str = field(repr=False)

    @classmethod
    def from_data_url(cls, url: str, label: str = "image") -> "InlineImage":
        m = _DATA_URL.match(url or "")
        if not m:
            raise InvalidImageDataError(
                f"Invalid {label} data format. Expected data URL with base64 content."
            )
        return cls(mime_type=m.group(1), data=m.group(2))

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def to_part(self) -> dict:
        return {"inlineData": {"mimeType": self.mime_type, "data": self.data}}

    def decode(self) -> bytes:
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidImageDataError(f"Image payload is not valid base64: {exc}") from exc

    @property
    def extension(self) -> str:
        subtype = self.mime_type.split("/")[-1].lower()
        return {"jpeg": "jpg", "svg+xml": "svg"}.get(subtype, subtype)
