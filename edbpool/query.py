"""Query descriptions and message header encoding."""

from __future__ import annotations

import enum
import struct
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

Headers = dict[int, bytes]

_COUNT = struct.Struct(">H")
_KEY_LEN = struct.Struct(">HI")


class Format(enum.Enum):
    """Output format of a query."""

    BINARY = "binary"
    JSON = "json"


class Cardinality(enum.Enum):
    """Expected number of results of a query."""

    ONE = "one"
    MANY = "many"


@dataclass(frozen=True)
class ScriptQuery:
    """A command (or commands) run as a script, without results."""

    command: str
    headers: Headers = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", dict(self.headers))


@dataclass(frozen=True)
class GranularQuery:
    """A query whose results are returned to the caller."""

    command: str
    format: Format = Format.BINARY
    expected_cardinality: Cardinality = Cardinality.MANY
    args: tuple[Any, ...] = ()
    headers: Headers = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "format", Format(self.format))
        object.__setattr__(
            self, "expected_cardinality", Cardinality(self.expected_cardinality)
        )
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "headers", dict(self.headers))

    def flat(self) -> bool:
        """True when the result is a single value rather than a sequence."""
        return (
            self.expected_cardinality is not Cardinality.MANY
            or self.format is Format.JSON
        )


def encode_headers(headers: Mapping[int, bytes]) -> bytes:
    """Encode message headers: a count, then key, length and value of each."""
    if len(headers) > 0xFFFF:
        raise ValueError(f"too many headers: {len(headers)}")

    parts = [_COUNT.pack(len(headers))]
    for key, value in headers.items():
        if not 0 <= key <= 0xFFFF:
            raise ValueError(f"header key out of range: {key}")
        value = bytes(value)
        if len(value) > 0xFFFFFFFF:
            raise ValueError(f"header {key} value is too long")
        parts.append(_KEY_LEN.pack(key, len(value)))
        parts.append(value)
    return b"".join(parts)


def read_headers(data: bytes) -> tuple[Headers, bytes]:
    """Decode message headers from the start of ``data``.

    Returns the headers and the bytes that follow them.
    """
    data = bytes(data)
    try:
        (count,) = _COUNT.unpack_from(data, 0)
        offset = _COUNT.size
        headers: Headers = {}
        for _ in range(count):
            key, length = _KEY_LEN.unpack_from(data, offset)
            offset += _KEY_LEN.size
            end = offset + length
            if end > len(data):
                raise ValueError("truncated message headers")
            headers[key] = data[offset:end]
            offset = end
    except struct.error:
        raise ValueError("truncated message headers") from None
    return headers, data[offset:]