"""Central logging configuration utilities.

`configure_logging` is called once by the composition root. It routes
DEBUG/INFO to stdout and WARNING+ to stderr and stamps every record with a
correlation id. Adapters and domain code never touch handlers; they emit via
`LoggingPort` or standard module loggers. Uvicorn keeps this setup because
`main` passes `log_config=None`.

The correlation id is the request id inside HTTP handlers and the local
task id inside background workers, so one lifecycle can be grepped as a
whole. Use :func:`correlation_scope` to set it.
"""

from __future__ import annotations

import contextvars
import logging
import sys
from contextlib import contextmanager
from typing import IO, Iterator, Optional

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default="-"
)

DEFAULT_FORMAT = (
    "[%(asctime)s] %(levelname)s %(name)s %(correlation_id)s: %(message)s"
)

# Third-party loggers that are chatty at DEBUG
_QUIET_LOGGERS = ("aiohttp.access", "asyncio", "httpx")


def coerce_level(level: int | str | None) -> int:
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(str(level).upper().strip(), logging.INFO)


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind ``correlation_id`` to every record logged inside the block."""
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


class _CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


class _LevelRangeFilter(logging.Filter):
    """Pass records with ``low <= levelno <= high``."""

    def __init__(self, low: int = logging.NOTSET, high: int = logging.CRITICAL):
        super().__init__()
        self.low = low
        self.high = high

    def filter(self, record: logging.LogRecord) -> bool:
        return self.low <= record.levelno <= self.high


def _stream_handler(
    stream: IO[str],
    level_filter: _LevelRangeFilter,
    formatter: logging.Formatter,
) -> logging.Handler:
    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(level_filter.low)
    handler.addFilter(level_filter)
    handler.addFilter(_CorrelationIdFilter())
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    level: int | str | None = None,
    fmt: Optional[str] = None,
    disable_uvicorn_access: bool = False,
) -> None:
    """Install the stdout/stderr handlers on the root logger.

    Calling it again replaces the handlers instead of stacking them (uvicorn
    reload). ``disable_uvicorn_access`` raises ``uvicorn.access`` to WARNING.
    """
    numeric_level = coerce_level(level)
    formatter = logging.Formatter(fmt or DEFAULT_FORMAT)

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    root.addHandler(
        _stream_handler(sys.stdout, _LevelRangeFilter(logging.DEBUG, logging.INFO), formatter)
    )
    root.addHandler(
        _stream_handler(sys.stderr, _LevelRangeFilter(logging.WARNING), formatter)
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.INFO))
    if disable_uvicorn_access:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger("gentask").debug(
        "Logging configured level=%s disable_uvicorn_access=%s", numeric_level, disable_uvicorn_access
    )
