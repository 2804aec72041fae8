"""Logging wrapper handed explicitly to every dockwire component.

A ``BoundLogger`` pairs a sink with a level and a bound context. The context
(transport address, request id, stream kind) travels with every record: it
is appended to the rendered message and, for standard-library sinks, attached
to the ``LogRecord`` as ``record.dockwire`` so handlers can read it as data.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Mapping

LogLevel = Literal["trace", "debug", "info", "warn", "error"]

TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

CONTEXT_ATTR = "dockwire"

_LEVELS: dict[LogLevel, int] = {
    "trace": TRACE_LEVEL,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def format_context(context: Mapping[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in context.items())


class BoundLogger:
    """Level-filtered logger carrying structured context.

    The sink is a ``logging.Logger``, anything with ``log(level, msg, *args)``,
    or an object exposing per-level methods (``debug``, ``info``, ...).
    """

    def __init__(
        self,
        logger: Any | None = None,
        *,
        level: LogLevel = "info",
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self._logger = logger if logger is not None else _default_logger()
        self._level = level
        self._context: dict[str, Any] = dict(context or {})

    @property
    def level(self) -> LogLevel:
        return self._level

    @property
    def context(self) -> Mapping[str, Any]:
        return dict(self._context)

    def bind(self, **context: Any) -> "BoundLogger":
        """Return a logger whose records also carry *context*; None values are skipped."""
        merged = {**self._context, **{key: value for key, value in context.items() if value is not None}}
        return BoundLogger(self._logger, level=self._level, context=merged)

    def child(self, name: str) -> "BoundLogger":
        """Same context and level, recorded under ``<parent>.<name>``."""
        if isinstance(self._logger, logging.Logger):
            sink: Any = self._logger.getChild(name)
        else:
            sink = self._logger
        return BoundLogger(sink, level=self._level, context=self._context)

    def trace(self, msg: str, *args: Any) -> None:
        self._emit("trace", msg, args)

    def debug(self, msg: str, *args: Any) -> None:
        self._emit("debug", msg, args)

    def info(self, msg: str, *args: Any) -> None:
        self._emit("info", msg, args)

    def warn(self, msg: str, *args: Any) -> None:
        self._emit("warn", msg, args)

    def error(self, msg: str, *args: Any) -> None:
        self._emit("error", msg, args)

    def _emit(self, level: LogLevel, msg: str, args: tuple[Any, ...]) -> None:
        number = _LEVELS[level]
        if number < _LEVELS[self._level]:
            return
        if self._context:
            suffix = format_context(self._context)
            if args:
                # Context values are data, never format directives.
                suffix = suffix.replace("%", "%%")
            msg = f"{msg} [{suffix}]"

        try:
            if isinstance(self._logger, logging.Logger):
                self._logger.log(number, msg, *args, extra={CONTEXT_ATTR: dict(self._context)})
            elif hasattr(self._logger, "log"):
                self._logger.log(number, msg, *args)
            else:
                handler = getattr(self._logger, level, None)
                if handler is None and level == "warn":
                    handler = getattr(self._logger, "warning", None)
                if handler is not None:
                    handler(msg, *args)
        except Exception:
            # Sink failures stay out of client code
            pass


def _default_logger() -> logging.Logger:
    logger = logging.getLogger("dockwire")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
        logger.addHandler(handler)
        logger.setLevel(TRACE_LEVEL)
    return logger


def create_logger(
    *,
    logger: Any | None = None,
    level: LogLevel = "info",
    **context: Any,
) -> BoundLogger:
    if isinstance(logger, BoundLogger):
        return logger.bind(**context) if context else logger
    return BoundLogger(logger, level=level, context=context)


__all__ = ["BoundLogger", "CONTEXT_ATTR", "LogLevel", "TRACE_LEVEL", "create_logger", "format_context"]
