"""Custom exceptions raised by the dockwire client."""

from __future__ import annotations

from typing import Any


class DockwireError(Exception):
    """Base error for all client failures."""

    def __init__(self, message: str, *, context: Any | None = None) -> None:
        super().__init__(message)
        self.context = context


class ConnectError(DockwireError):
    """Raised when a connection to the daemon cannot be established."""


class RequestError(DockwireError):
    """Raised when the daemon answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        status: int,
        detail: Any | None = None,
        context: Any | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.status = status
        self.detail = detail

    def __str__(self) -> str:
        return f"{self.status}: {self.args[0]}"


class DecodeError(DockwireError):
    """Raised when a response body is malformed or ends prematurely."""


class FrameError(DockwireError):
    """Raised on a protocol violation in a multiplexed stream."""


class ArchiveError(DockwireError):
    """Raised when a build context cannot be archived faithfully."""


__all__ = [
    "ArchiveError",
    "ConnectError",
    "DecodeError",
    "DockwireError",
    "FrameError",
    "RequestError",
]
