"""Data model types for streamstore.

ObjectInfo is the descriptor published on an object's metadata subject; its
JSON form is the wire format shared with every other reader and writer of the
bucket. BucketInfo summarizes the stream that backs a bucket.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from streamstore.errors import CorruptMetadata

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# RFC 3339 with optional fractional seconds of any precision (the server
# reports nanoseconds, datetime keeps microseconds).
_RFC3339_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>Z|[+-]\d{2}:\d{2})?$"
)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Fractional seconds beyond microsecond precision are truncated.

    Args:
        value: Timestamp such as ``2024-05-01T10:00:00.123456789Z``.

    Returns:
        The timestamp converted to UTC.

    Raises:
        ValueError: If the string is not an RFC 3339 timestamp.
    """
    match = _RFC3339_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid RFC 3339 timestamp: {value!r}")
    frac = (match.group("frac") or "0")[:6].ljust(6, "0")
    tz = match.group("tz") or "Z"
    if tz == "Z":
        tz = "+00:00"
    parsed = datetime.fromisoformat(f"{match.group('base')}.{frac}{tz}")
    return parsed.astimezone(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    """Format a datetime as an RFC 3339 UTC string with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def normalize_headers(headers: Mapping[str, Any] | None) -> dict[str, list[str]]:
    """Coerce user metadata into a mapping of string to list of strings.

    Scalar values become one-element lists; sequences are copied.
    """
    if not headers:
        return {}
    result: dict[str, list[str]] = {}
    for name, value in headers.items():
        if isinstance(value, (list, tuple)):
            result[str(name)] = [str(v) for v in value]
        else:
            result[str(name)] = [str(value)]
    return result


@dataclass
class ObjectInfo:
    """Descriptor of the current version of an object.

    Attributes:
        bucket: The owning bucket name.
        name: The raw object key as supplied to put.
        id: Version identifier minted for each put.
        size: Total size in bytes.
        chunks: Number of chunk messages holding the content.
        digest: URL-safe base64 SHA-256 of the content.
        description: Optional free text.
        headers: User metadata, each name mapped to a list of values.
        mtime: Commit time. Provisional on the write path; replaced with the
            server-side message time on lookup.
        deleted: Reserved tombstone flag.
    """

    bucket: str
    name: str
    id: str
    size: int
    chunks: int
    digest: str
    description: str | None = None
    headers: dict[str, list[str]] = field(default_factory=dict)
    mtime: datetime = EPOCH
    deleted: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation (absent optionals omitted)."""
        data: dict[str, Any] = {
            "bucket": self.bucket,
            "name": self.name,
            "headers": self.headers,
            "id": self.id,
            "size": self.size,
            "mtime": format_rfc3339(self.mtime),
            "chunks": self.chunks,
            "digest": self.digest,
        }
        if self.description is not None:
            data["description"] = self.description
        if self.deleted is not None:
            data["deleted"] = self.deleted
        return data

    def to_json(self) -> bytes:
        """Serialize to the UTF-8 JSON payload of a metadata message."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ObjectInfo:
        """Build an ObjectInfo from a decoded JSON mapping.

        Unknown keys are ignored; ``description``, ``headers``, ``mtime`` and
        ``deleted`` may be absent.

        Raises:
            CorruptMetadata: If a required field is missing or has the wrong type.
        """
        try:
            mtime_raw = data.get("mtime")
            return cls(
                bucket=str(data["bucket"]),
                name=str(data["name"]),
                id=str(data["id"]),
                size=int(data["size"]),
                chunks=int(data["chunks"]),
                digest=str(data["digest"]),
                description=data.get("description"),
                headers=normalize_headers(data.get("headers")),
                mtime=parse_rfc3339(mtime_raw) if mtime_raw else EPOCH,
                deleted=data.get("deleted"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptMetadata(f"Invalid object descriptor: {exc}") from exc

    @classmethod
    def from_json(cls, payload: bytes | str) -> ObjectInfo:
        """Decode a metadata message payload.

        Raises:
            CorruptMetadata: If the payload is not a JSON object describing an object.
        """
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CorruptMetadata(f"Invalid object descriptor JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise CorruptMetadata("Object descriptor must be a JSON object")
        return cls.from_dict(data)


@dataclass
class BucketInfo:
    """Summary of the stream backing a bucket.

    Attributes:
        name: The bucket name.
        stream_name: The underlying stream name (``OBJ_{name}``).
        description: Stream description.
        ttl: Maximum object age in seconds, or None for no limit.
        storage: Storage class, ``"file"`` or ``"memory"``.
        replicas: Replica count.
        messages: Messages currently held (chunks plus descriptors).
        bytes: Bytes currently held.
    """

    name: str
    stream_name: str
    description: str = ""
    ttl: float | None = None
    storage: str = "file"
    replicas: int = 1
    messages: int = 0
    bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "stream_name": self.stream_name,
            "description": self.description,
            "ttl": self.ttl,
            "storage": self.storage,
            "replicas": self.replicas,
            "messages": self.messages,
            "bytes": self.bytes,
        }
