"""Demultiplexer for the daemon's stdin/stdout/stderr framing.

Each frame is an 8-byte header followed by its payload::

    [type: u8][reserved: 3 bytes, all zero][length: u32 big-endian][payload]

Frames arrive split at arbitrary points across reads, so the demuxer keeps
whatever it has not been able to turn into a complete frame yet.
"""

from __future__ import annotations

import struct
from collections import deque
from typing import TYPE_CHECKING

import httpx

from .errors import FrameError
from .logger import BoundLogger
from .stream import LazyStream
from .types import Frame, StreamType

if TYPE_CHECKING:
    from .decoder import RawStream

HEADER_SIZE = 8
DEFAULT_MAX_FRAME_SIZE = 16 * 1024 * 1024

_HEADER = struct.Struct(">B3sI")
_RESERVED = b"\x00\x00\x00"


def parse_frame_header(header: bytes, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> tuple[StreamType, int]:
    """Validate one frame header and return its stream type and payload length."""
    if len(header) != HEADER_SIZE:
        raise FrameError(f"Frame header must be {HEADER_SIZE} bytes, got {len(header)}")
    tag, reserved, length = _HEADER.unpack(header)
    try:
        stream = StreamType(tag)
    except ValueError:
        raise FrameError(f"Invalid stream type {tag}", context=header) from None
    if reserved != _RESERVED:
        raise FrameError(f"Reserved header bytes must be zero, got {reserved.hex()}", context=header)
    if length > max_frame_size:
        raise FrameError(
            f"Frame length {length} exceeds the {max_frame_size} byte limit",
            context=header,
        )
    return stream, length


class FrameDemuxer:
    """Incremental frame parser.

    ``feed`` accepts bytes in any chunking and returns the frames completed so
    far. A protocol violation poisons the demuxer: frames completed before the
    bad header are still returned, and the error is raised from that call or,
    if frames were returned, from the next ``feed``/``finish``.
    """

    def __init__(self, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> None:
        if max_frame_size <= 0:
            raise ValueError("max_frame_size must be positive")
        self._max_frame_size = max_frame_size
        self._buffer = bytearray()
        self._header: tuple[StreamType, int] | None = None
        self._error: FrameError | None = None

    def feed(self, data: bytes) -> list[Frame]:
        self.check()
        self._buffer.extend(data)

        frames: list[Frame] = []
        while True:
            if self._header is None:
                if len(self._buffer) < HEADER_SIZE:
                    break
                try:
                    self._header = parse_frame_header(bytes(self._buffer[:HEADER_SIZE]), self._max_frame_size)
                except FrameError as exc:
                    self._error = exc
                    if frames:
                        return frames
                    raise
                del self._buffer[:HEADER_SIZE]

            stream, length = self._header
            if len(self._buffer) < length:
                break
            payload = bytes(self._buffer[:length])
            del self._buffer[:length]
            self._header = None
            frames.append(Frame(stream=stream, payload=payload))
        return frames

    def finish(self) -> None:
        """Signal end-of-stream; a partially received frame is an error."""
        self.check()
        if self._header is not None:
            _, length = self._header
            self._error = FrameError(
                f"Stream ended mid-payload: expected {length} bytes, got {len(self._buffer)}"
            )
            raise self._error
        if self._buffer:
            self._error = FrameError(
                f"Stream ended mid-header: got {len(self._buffer)} of {HEADER_SIZE} bytes"
            )
            raise self._error

    def check(self) -> None:
        """Re-raise a pending protocol violation, if any."""
        if self._error is not None:
            raise self._error


class FrameStream(LazyStream[Frame]):
    """Lazy sequence of frames read from a raw response stream."""

    def __init__(
        self,
        raw: "RawStream",
        *,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
        logger: BoundLogger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        self._raw = raw
        self._demuxer = FrameDemuxer(max_frame_size)
        self._ready: deque[Frame] = deque()

    @property
    def status(self) -> int:
        return self._raw.status

    @property
    def headers(self) -> httpx.Headers:
        return self._raw.headers

    async def collect(self) -> tuple[bytes, bytes]:
        """Drain the stream into (stdout, stderr).

        STDIN frames (echoed input on attached sessions) are dropped.
        """
        stdout = bytearray()
        stderr = bytearray()
        async for frame in self:
            if frame.stream is StreamType.STDOUT:
                stdout.extend(frame.payload)
            elif frame.stream is StreamType.STDERR:
                stderr.extend(frame.payload)
        return bytes(stdout), bytes(stderr)

    async def _pull(self) -> Frame:
        while not self._ready:
            self._demuxer.check()
            try:
                chunk = await self._raw.next()
            except StopAsyncIteration:
                self._demuxer.finish()
                raise
            self._ready.extend(self._demuxer.feed(chunk))
        frame = self._ready.popleft()
        self._logger.trace("frame %s bytes=%d", frame.stream.name.lower(), len(frame.payload))
        return frame

    async def _release(self) -> None:
        await self._raw.aclose()


__all__ = [
    "DEFAULT_MAX_FRAME_SIZE",
    "FrameDemuxer",
    "FrameStream",
    "HEADER_SIZE",
    "parse_frame_header",
]
