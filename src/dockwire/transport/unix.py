"""Unix domain socket transport."""

from __future__ import annotations

import os
import stat

import httpx

from ..errors import ConnectError
from ..logger import BoundLogger, create_logger
from .base import SINGLE_CONNECTION, ChannelTransport, Transport

# Host header value only; the socket path decides where bytes go.
UNIX_BASE_URL = "http://docker"


def _ensure_socket(socket_path: str) -> None:
    try:
        mode = os.stat(socket_path).st_mode
    except FileNotFoundError as exc:
        raise ConnectError(f"Socket not found: {socket_path}") from exc
    except OSError as exc:
        raise ConnectError(f"Cannot access socket {socket_path}: {exc}") from exc
    if not stat.S_ISSOCK(mode):
        raise ConnectError(f"Not a unix socket: {socket_path}")


class UnixTransport(ChannelTransport):
    kind: Transport.Kind = "unix"

    def __init__(
        self,
        socket_path: str,
        *,
        timeout: float | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        logger = (logger or create_logger()).child("unix")
        _ensure_socket(socket_path)
        self._socket_path = socket_path
        logger.debug("Connecting to unix socket %s", socket_path)
        super().__init__(
            kind="unix",
            base_url=UNIX_BASE_URL,
            address=f"unix://{socket_path}",
            http_transport=httpx.AsyncHTTPTransport(uds=socket_path, limits=SINGLE_CONNECTION, retries=0),
            timeout=timeout,
            logger=logger,
        )


__all__ = ["UNIX_BASE_URL", "UnixTransport"]
