from __future__ import annotations

import struct
from typing import AsyncIterator, Callable, Iterable

import httpx
import pytest

from dockwire.config import ConnectionConfig
from dockwire.logger import BoundLogger, create_logger
from dockwire.pipeline import Pipeline
from dockwire.transport.base import ChannelTransport

Handler = Callable[[httpx.Request], httpx.Response]


def encode_frame(stream: int, payload: bytes) -> bytes:
    return struct.pack(">B3xI", stream, len(payload)) + payload


async def chunked(parts: Iterable[bytes]) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


class MockConnector:
    """Stands in for transport.connect, serving every request from *handler*."""

    def __init__(self, handler: Handler) -> None:
        self._handler = handler
        self.opened: list[ChannelTransport] = []
        self.requests: list[httpx.Request] = []

    def __call__(self, config: ConnectionConfig, logger: BoundLogger) -> ChannelTransport:
        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self._handler(request)

        transport = ChannelTransport(
            kind=config.kind,
            base_url="http://docker",
            address="mock",
            http_transport=httpx.MockTransport(record),
            logger=logger,
        )
        self.opened.append(transport)
        return transport

    @property
    def last(self) -> ChannelTransport:
        return self.opened[-1]


@pytest.fixture
def config() -> ConnectionConfig:
    return ConnectionConfig.from_url("unix:///var/run/docker.sock")


@pytest.fixture
def make_pipeline(config: ConnectionConfig) -> Callable[[Handler], tuple[Pipeline, MockConnector]]:
    def factory(handler: Handler) -> tuple[Pipeline, MockConnector]:
        connector = MockConnector(handler)
        return Pipeline(config, logger=create_logger(), connect=connector), connector

    return factory
