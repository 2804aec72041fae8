"""Connection settings for reaching the daemon."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping
from urllib.parse import urlparse

TransportKind = Literal["tcp", "unix"]

DEFAULT_SOCKET_PATH = "/var/run/docker.sock"
DEFAULT_URL = f"unix://{DEFAULT_SOCKET_PATH}"
DEFAULT_TCP_PORT = 2375
DEFAULT_TLS_PORT = 2376


def url_host(host: str) -> str:
    """Bracket IPv6 literals so they survive being joined with a port."""
    if ":" in host and not host.startswith("["):
        return f"[{host}]"
    return host


@dataclass(frozen=True)
class TlsConfig:
    """TLS material for a TCP connection.

    ``ca_cert`` is the trust root; ``client_cert``/``client_key`` are
    presented to the daemon when both are set.
    """

    ca_cert: str | None = None
    client_cert: str | None = None
    client_key: str | None = None
    verify: bool = True

    @classmethod
    def from_cert_path(cls, cert_path: str, *, verify: bool = True) -> "TlsConfig":
        def existing(name: str) -> str | None:
            candidate = os.path.join(cert_path, name)
            return candidate if os.path.exists(candidate) else None

        return cls(
            ca_cert=existing("ca.pem"),
            client_cert=existing("cert.pem"),
            client_key=existing("key.pem"),
            verify=verify,
        )


@dataclass(frozen=True)
class ConnectionConfig:
    kind: TransportKind
    host: str = "localhost"
    port: int | None = None
    socket_path: str | None = None
    tls: TlsConfig | None = None
    api_version: str | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.kind == "unix" and not self.socket_path:
            raise ValueError("A unix connection requires a socket path")
        if self.kind == "tcp" and self.port is None:
            raise ValueError("A tcp connection requires a port")
        if self.tls is not None and self.kind != "tcp":
            raise ValueError("TLS material only applies to tcp connections")

    @property
    def address(self) -> str:
        if self.kind == "unix":
            return f"unix://{self.socket_path}"
        scheme = "tls" if self.tls is not None else "tcp"
        return f"{scheme}://{url_host(self.host)}:{self.port}"

    def versioned(self, path: str) -> str:
        """Prefix *path* with the configured API version, if any."""
        if not path.startswith("/"):
            path = f"/{path}"
        if not self.api_version:
            return path
        return f"/v{self.api_version.lstrip('v')}{path}"

    @classmethod
    def from_url(
        cls,
        url: str = DEFAULT_URL,
        *,
        tls: TlsConfig | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
    ) -> "ConnectionConfig":
        if url.startswith("/"):
            return cls(kind="unix", socket_path=url, api_version=api_version, timeout=timeout)
        if "://" not in url:
            url = f"tcp://{url}"

        parsed = urlparse(url)
        scheme = parsed.scheme.lower()

        if scheme == "unix":
            path = parsed.path
            if parsed.netloc:
                # unix://var/run/docker.sock
                path = f"/{parsed.netloc}{parsed.path}"
            return cls(kind="unix", socket_path=path, api_version=api_version, timeout=timeout)

        if scheme in {"tcp", "http", "https", "tls"}:
            if scheme in {"https", "tls"} and tls is None:
                tls = TlsConfig()
            host = parsed.hostname or "localhost"
            port = parsed.port or (DEFAULT_TLS_PORT if tls is not None else DEFAULT_TCP_PORT)
            return cls(
                kind="tcp",
                host=host,
                port=port,
                tls=tls,
                api_version=api_version,
                timeout=timeout,
            )

        raise ValueError(f"Unsupported scheme: {scheme}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ConnectionConfig":
        env = os.environ if environ is None else environ
        url = env.get("DOCKER_HOST") or DEFAULT_URL
        verify = bool(env.get("DOCKER_TLS_VERIFY"))
        cert_path = env.get("DOCKER_CERT_PATH")
        api_version = env.get("DOCKER_API_VERSION") or None

        tls: TlsConfig | None = None
        if not url.startswith("unix:") and not url.startswith("/"):
            if cert_path:
                tls = TlsConfig.from_cert_path(cert_path, verify=verify)
            elif verify:
                tls = TlsConfig(verify=True)
        return cls.from_url(url, tls=tls, api_version=api_version)


__all__ = [
    "ConnectionConfig",
    "DEFAULT_SOCKET_PATH",
    "DEFAULT_URL",
    "TlsConfig",
    "TransportKind",
    "url_host",
]
