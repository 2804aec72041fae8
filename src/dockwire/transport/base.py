"""Common transport abstractions."""

from __future__ import annotations

from typing import Any, AsyncIterable, Mapping, Protocol, Sequence, Union, runtime_checkable

import httpx

from ..config import TransportKind
from ..errors import ConnectError
from ..logger import BoundLogger, create_logger

QueryParams = Union[Mapping[str, Any], Sequence[tuple[str, Any]]]
Content = Union[bytes, AsyncIterable[bytes]]

# One logical request owns one connection; nothing is pooled or retried.
SINGLE_CONNECTION = httpx.Limits(max_connections=1, max_keepalive_connections=0)


@runtime_checkable
class Transport(Protocol):
    Kind = TransportKind

    @property
    def kind(self) -> TransportKind: ...

    @property
    def closed(self) -> bool: ...

    def build_request(
        self,
        method: str,
        path: str,
        *,
        params: QueryParams | None = None,
        headers: httpx.Headers | None = None,
        content: Content | None = None,
    ) -> httpx.Request: ...

    async def send(self, request: httpx.Request) -> httpx.Response: ...

    async def aclose(self) -> None: ...


class ChannelTransport:
    """Duplex HTTP channel over a dedicated single-connection httpx transport.

    ``send`` returns the response as soon as the status line and headers are
    in; the body is left on the wire for the caller to stream.
    """

    def __init__(
        self,
        *,
        kind: TransportKind,
        base_url: str,
        address: str,
        http_transport: httpx.AsyncBaseTransport,
        timeout: float | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._kind: TransportKind = kind
        self._address = address
        self._logger = (logger or create_logger()).bind(address=address)
        try:
            self._client = httpx.AsyncClient(
                transport=http_transport,
                base_url=base_url,
                timeout=httpx.Timeout(timeout),
            )
        except httpx.InvalidURL as exc:
            raise ConnectError(f"Invalid daemon address {address}: {exc}", context=base_url) from exc
        self._closed = False

    @property
    def kind(self) -> TransportKind:
        return self._kind

    @property
    def address(self) -> str:
        return self._address

    @property
    def closed(self) -> bool:
        return self._closed

    def build_request(
        self,
        method: str,
        path: str,
        *,
        params: QueryParams | None = None,
        headers: httpx.Headers | None = None,
        content: Content | None = None,
    ) -> httpx.Request:
        return self._client.build_request(method, path, params=params, headers=headers, content=content)

    async def send(self, request: httpx.Request) -> httpx.Response:
        if self._closed:
            raise ConnectError(f"Transport to {self._address} is already closed")
        self._logger.trace("%s %s", request.method, request.url.raw_path.decode("ascii"))
        try:
            return await self._client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            await self.aclose()
            raise ConnectError(f"Timed out reaching {self._address}: {exc}") from exc
        except httpx.TransportError as exc:
            await self.aclose()
            raise ConnectError(f"Cannot connect to {self._address}: {exc}") from exc
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._logger.trace("Closing transport")
        await self._client.aclose()


__all__ = ["ChannelTransport", "Content", "QueryParams", "SINGLE_CONNECTION", "Transport", "TransportKind"]
