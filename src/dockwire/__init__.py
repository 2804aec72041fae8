"""Public surface for the dockwire client."""

from .archive import ArchiveEntry, archive_entries, build_context, iter_file, iter_gzip, iter_tar, walk_context
from .client import DockerClient, PingInfo
from .config import ConnectionConfig, TlsConfig
from .decoder import Document, EventStream, RawStream
from .demux import FrameDemuxer, FrameStream
from .errors import (
    ArchiveError,
    ConnectError,
    DecodeError,
    DockwireError,
    FrameError,
    RequestError,
)
from .pipeline import Pipeline, Request, ResponseShape
from .transport import TcpTransport, Transport, UnixTransport, connect
from .types import BodyKind, Frame, StreamState, StreamType
from .version import __version__

__all__ = [
    "__version__",
    "ArchiveEntry",
    "ArchiveError",
    "BodyKind",
    "ConnectError",
    "ConnectionConfig",
    "DecodeError",
    "DockerClient",
    "DockwireError",
    "Document",
    "EventStream",
    "Frame",
    "FrameDemuxer",
    "FrameError",
    "FrameStream",
    "PingInfo",
    "Pipeline",
    "RawStream",
    "Request",
    "RequestError",
    "ResponseShape",
    "StreamState",
    "StreamType",
    "TcpTransport",
    "TlsConfig",
    "Transport",
    "UnixTransport",
    "archive_entries",
    "build_context",
    "connect",
    "iter_file",
    "iter_gzip",
    "iter_tar",
    "walk_context",
]
