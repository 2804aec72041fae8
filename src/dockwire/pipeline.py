"""Request/response pipeline: one request, one transport, one response shape."""

from __future__ import annotations

import itertools
import json
import time
from dataclasses import dataclass, field
from typing import AsyncIterable, Callable, Iterable, Union

import httpx

from .archive import aiter_body
from .config import ConnectionConfig
from .decoder import Document, EventStream, RawStream, extract_error_message, read_document
from .errors import RequestError
from .logger import BoundLogger, create_logger
from .transport import connect as connect_transport
from .transport.base import Content, QueryParams, Transport
from .types import BodyKind

DOCUMENT_TYPES = frozenset({"application/json"})
EVENT_STREAM_TYPES = frozenset(
    {
        "application/x-ndjson",
        "application/jsonl",
        "application/json-seq",
        "application/x-json-stream",
    }
)
MULTIPLEXED_STREAM_TYPE = "application/vnd.docker.multiplexed-stream"

Body = Union[bytes, Iterable[bytes], AsyncIterable[bytes]]
ResponseShape = Union[Document, EventStream, RawStream]
Connector = Callable[[ConnectionConfig, BoundLogger], Transport]


@dataclass
class Request:
    method: str
    path: str
    params: QueryParams | None = None
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Body | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)


def media_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def classify(content_type: str | None, expect: BodyKind | None = None) -> BodyKind:
    """Pick the body shape from the response media type unless the caller knows better."""
    if expect is not None:
        return expect
    kind = media_type(content_type)
    if kind in DOCUMENT_TYPES:
        return BodyKind.DOCUMENT
    if kind in EVENT_STREAM_TYPES:
        return BodyKind.EVENT_STREAM
    return BodyKind.RAW_STREAM


def _content(body: Body | None) -> Content | None:
    if body is None:
        return None
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if hasattr(body, "__aiter__"):
        return body  # type: ignore[return-value]
    # Length unknown up front; httpx sends it chunked.
    return aiter_body(body)  # type: ignore[arg-type]


class Pipeline:
    """Sends requests and hands back Document, EventStream or RawStream.

    Each ``send`` opens its own transport. For streams the transport belongs
    to the returned object until it is drained or closed.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        logger: BoundLogger | None = None,
        connect: Connector = connect_transport,
    ) -> None:
        self.config = config
        self._root_logger = logger or create_logger()
        self._logger = self._root_logger.child("pipeline")
        self._connect = connect
        self._request_ids = itertools.count(1)

    async def send(self, request: Request, *, expect: BodyKind | None = None) -> ResponseShape:
        path = self.config.versioned(request.path)
        request_id = next(self._request_ids)
        logger = self._logger.bind(request=request_id)
        transport = self._connect(self.config, self._root_logger.bind(request=request_id))
        try:
            http_request = transport.build_request(
                request.method,
                path,
                params=request.params,
                headers=request.headers,
                content=_content(request.body),
            )
        except BaseException:
            await transport.aclose()
            raise

        logger.debug("HTTP %s %s", request.method, path)
        started = time.monotonic()
        response = await transport.send(http_request)
        logger.debug(
            "HTTP <- %s %s status=%s type=%s in %.1fms",
            request.method,
            path,
            response.status_code,
            media_type(response.headers.get("content-type")) or "-",
            (time.monotonic() - started) * 1000,
        )

        try:
            if not response.is_success:
                await self._raise_for_status(response, logger)
            kind = classify(response.headers.get("content-type"), expect)
        except BaseException:
            await response.aclose()
            await transport.aclose()
            raise

        logger = logger.bind(body=kind.value)
        if kind is BodyKind.DOCUMENT:
            return await read_document(response, transport, logger)
        if kind is BodyKind.EVENT_STREAM:
            return EventStream(response, transport, logger=logger)
        return RawStream(response, transport, logger=logger)

    async def _raise_for_status(self, response: httpx.Response, logger: BoundLogger) -> None:
        try:
            body = await response.aread()
        except httpx.TransportError as exc:
            logger.debug("Error body unreadable: %s", exc)
            body = b""
        text = body.decode("utf-8", errors="replace")
        message = extract_error_message(text)
        try:
            detail = json.loads(text) if text.strip() else None
        except ValueError:
            detail = None
        logger.debug("Daemon error status=%s message=%s", response.status_code, message)
        raise RequestError(message, status=response.status_code, detail=detail, context=text)


__all__ = [
    "Body",
    "Connector",
    "MULTIPLEXED_STREAM_TYPE",
    "Pipeline",
    "Request",
    "ResponseShape",
    "classify",
    "media_type",
]
