"""Response body decoding: whole documents, JSON-lines streams, raw bytes."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Generic, Mapping, TypeVar

import httpx

from .demux import DEFAULT_MAX_FRAME_SIZE, FrameStream
from .errors import DecodeError
from .logger import BoundLogger, create_logger
from .stream import LazyStream
from .transport.base import Transport

T = TypeVar("T")


def extract_error_message(body: str | None) -> str:
    if not body:
        return "Error occurred"
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return body.strip() or "Error occurred"

    if isinstance(parsed, dict) and "message" in parsed:
        message = parsed["message"]
        if isinstance(message, str):
            return message
        return str(message)
    return body.strip() or "Error occurred"


def parse_json(data: bytes | bytearray, *, what: str = "response") -> Any:
    try:
        return json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DecodeError(f"Invalid JSON in {what}: {exc}", context=bytes(data[:200])) from exc


@dataclass
class Document:
    status: int
    value: Any
    headers: Mapping[str, str] = field(default_factory=dict)


async def read_document(
    response: httpx.Response,
    transport: Transport,
    logger: BoundLogger | None = None,
) -> Document:
    """Read the whole body, release the transport and parse one JSON value."""
    logger = logger or create_logger()
    try:
        body = await response.aread()
    except httpx.TransportError as exc:
        raise DecodeError(f"Response body did not terminate: {exc}") from exc
    finally:
        await response.aclose()
        await transport.aclose()

    logger.debug("document status=%s bytes=%d", response.status_code, len(body))
    value = parse_json(body, what="document") if body.strip() else None
    return Document(status=response.status_code, value=value, headers=dict(response.headers))


class _BodyStream(LazyStream[T], Generic[T]):
    """Lazy stream that owns the response and the transport it came from."""

    def __init__(
        self,
        response: httpx.Response,
        transport: Transport,
        *,
        logger: BoundLogger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        self._response = response
        self._transport = transport
        self._chunks: AsyncIterator[bytes] = response.aiter_raw()

    @property
    def status(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    async def _read_chunk(self) -> bytes:
        """Next non-empty body chunk; StopAsyncIteration at end-of-body."""
        while True:
            try:
                chunk = await self._chunks.__anext__()
            except httpx.TransportError as exc:
                raise DecodeError(f"Connection dropped mid-body: {exc}") from exc
            if chunk:
                return chunk

    async def _release(self) -> None:
        try:
            close_chunks = getattr(self._chunks, "aclose", None)
            if close_chunks is not None:
                await close_chunks()
            await self._response.aclose()
        finally:
            await self._transport.aclose()


class EventStream(_BodyStream[Any]):
    """One JSON value per newline-delimited line, decoded as lines complete."""

    def __init__(
        self,
        response: httpx.Response,
        transport: Transport,
        *,
        logger: BoundLogger | None = None,
    ) -> None:
        super().__init__(response, transport, logger=logger)
        self._buffer = bytearray()
        self._eof = False

    async def _pull(self) -> Any:
        while True:
            newline = self._buffer.find(b"\n")
            if newline >= 0:
                line = bytes(self._buffer[:newline])
                del self._buffer[: newline + 1]
                if line.strip():
                    return parse_json(line, what="event stream")
                continue

            if self._eof:
                if self._buffer.strip():
                    line = bytes(self._buffer)
                    self._buffer.clear()
                    return parse_json(line, what="event stream")
                self._buffer.clear()
                raise StopAsyncIteration

            try:
                self._buffer.extend(await self._read_chunk())
            except StopAsyncIteration:
                self._eof = True


class RawStream(_BodyStream[bytes]):
    """Body chunks exactly as they come off the wire."""

    async def _pull(self) -> bytes:
        return await self._read_chunk()

    async def read(self) -> bytes:
        """Drain the remaining body."""
        parts: list[bytes] = []
        async for chunk in self:
            parts.append(chunk)
        return b"".join(parts)

    def frames(self, *, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> FrameStream:
        """Demultiplex this stream into stdin/stdout/stderr frames."""
        return FrameStream(self, max_frame_size=max_frame_size, logger=self._logger)


__all__ = [
    "Document",
    "EventStream",
    "RawStream",
    "extract_error_message",
    "parse_json",
    "read_document",
]
