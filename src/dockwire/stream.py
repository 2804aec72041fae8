"""Pull-based, single-pass stream base used by every lazy response shape."""

from __future__ import annotations

from types import TracebackType
from typing import Generic, TypeVar

from .errors import DockwireError
from .logger import BoundLogger, create_logger
from .types import StreamState

T = TypeVar("T")


class LazyStream(Generic[T]):
    """Explicit state machine around a pull operation.

    Subclasses implement ``_pull`` (return one item or raise
    ``StopAsyncIteration``) and ``_release`` (drop the underlying connection).
    Every exit from PENDING releases the connection exactly once.
    """

    def __init__(self, *, logger: BoundLogger | None = None) -> None:
        self._logger = logger or create_logger()
        self._state = StreamState.PENDING
        self._error: DockwireError | None = None
        self._released = False
        self.items_read = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def error(self) -> DockwireError | None:
        return self._error

    async def next(self) -> T:
        if self._state is StreamState.ERRORED:
            assert self._error is not None
            raise self._error
        if self._state is not StreamState.PENDING:
            raise StopAsyncIteration

        try:
            item = await self._pull()
        except StopAsyncIteration:
            self._state = StreamState.EXHAUSTED
            self._logger.trace("%s exhausted after %d items", type(self).__name__, self.items_read)
            await self._release_once()
            raise
        except DockwireError as exc:
            self._state = StreamState.ERRORED
            self._error = exc
            self._logger.debug("%s failed: %s", type(self).__name__, exc)
            await self._release_once()
            raise
        except BaseException:
            # Cancellation or a caller-side failure while suspended.
            self._state = StreamState.CLOSED
            await self._release_once()
            raise

        self.items_read += 1
        return item

    async def aclose(self) -> None:
        if self._state is StreamState.PENDING:
            self._state = StreamState.CLOSED
        await self._release_once()

    def __aiter__(self) -> "LazyStream[T]":
        return self

    async def __anext__(self) -> T:
        return await self.next()

    async def __aenter__(self) -> "LazyStream[T]":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _release_once(self) -> None:
        if self._released:
            return
        self._released = True
        await self._release()

    async def _pull(self) -> T:
        raise NotImplementedError

    async def _release(self) -> None:
        raise NotImplementedError


__all__ = ["LazyStream"]
