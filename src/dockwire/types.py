"""Shared typing helpers."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class BodyKind(enum.Enum):
    DOCUMENT = "document"
    EVENT_STREAM = "event_stream"
    RAW_STREAM = "raw_stream"


class StreamState(enum.Enum):
    """Where a lazy response stream stands.

    PENDING streams may still yield items; the three other states are final.
    """

    PENDING = "pending"
    EXHAUSTED = "exhausted"
    ERRORED = "errored"
    CLOSED = "closed"


class StreamType(enum.IntEnum):
    STDIN = 0
    STDOUT = 1
    STDERR = 2


@dataclass(frozen=True)
class Frame:
    stream: StreamType
    payload: bytes

    def text(self, encoding: str = "utf-8") -> str:
        return self.payload.decode(encoding, errors="replace")


__all__ = ["BodyKind", "Frame", "StreamState", "StreamType"]
