"""TCP/TLS transport."""

from __future__ import annotations

import ssl

import httpx

from ..config import TlsConfig, url_host
from ..errors import ConnectError
from ..logger import BoundLogger, create_logger
from .base import SINGLE_CONNECTION, ChannelTransport, Transport


def create_ssl_context(tls: TlsConfig) -> ssl.SSLContext:
    """Build a client-side SSL context from the configured TLS material."""
    try:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=tls.ca_cert)
        if not tls.verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        if tls.client_cert:
            context.load_cert_chain(tls.client_cert, tls.client_key)
    except (OSError, ssl.SSLError) as exc:
        raise ConnectError(f"Invalid TLS material: {exc}", context=tls) from exc
    return context


class TcpTransport(ChannelTransport):
    kind: Transport.Kind = "tcp"

    def __init__(
        self,
        host: str,
        port: int,
        *,
        tls: TlsConfig | None = None,
        timeout: float | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._use_ssl = tls is not None
        logger = (logger or create_logger()).child("tcp")
        scheme = "https" if self._use_ssl else "http"
        verify: ssl.SSLContext | bool = create_ssl_context(tls) if tls is not None else False
        logger.debug("Connecting to %s:%s (%s)", host, port, "tls" if self._use_ssl else "tcp")
        super().__init__(
            kind="tcp",
            base_url=f"{scheme}://{url_host(host)}:{port}",
            address=f"{url_host(host)}:{port}",
            http_transport=httpx.AsyncHTTPTransport(verify=verify, limits=SINGLE_CONNECTION, retries=0),
            timeout=timeout,
            logger=logger,
        )


__all__ = ["TcpTransport", "create_ssl_context"]
