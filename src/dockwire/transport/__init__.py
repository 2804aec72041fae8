"""Transport implementations exposed to users."""

from __future__ import annotations

from ..config import ConnectionConfig
from ..logger import BoundLogger, create_logger
from .base import ChannelTransport, Transport, TransportKind
from .tcp import TcpTransport
from .unix import UnixTransport


def connect(config: ConnectionConfig, logger: BoundLogger | None = None) -> Transport:
    """Open a fresh transport for one request, picking the variant from *config*."""
    logger = (logger or create_logger()).child("transport")
    if config.kind == "unix":
        assert config.socket_path is not None
        return UnixTransport(config.socket_path, timeout=config.timeout, logger=logger)
    assert config.port is not None
    return TcpTransport(config.host, config.port, tls=config.tls, timeout=config.timeout, logger=logger)


__all__ = [
    "ChannelTransport",
    "TcpTransport",
    "Transport",
    "TransportKind",
    "UnixTransport",
    "connect",
]
