"""Shared structlog configuration for the API process and its background pipelines."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import IO

import structlog

from app.config import settings

# Third-party loggers that are noisy at INFO (SQL echo, per-request access lines)
_QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")


class _TeeWriter:
    """Mirror stdout into an append-only JSON-lines file.

    A log file that cannot be opened, or that later errors, is dropped
    and stdout keeps working.
    """

    def __init__(self, path: str) -> None:
        self._sink: IO[str] | None = None
        try:
            self._sink = open(path, "a")  # noqa: SIM115
        except OSError as exc:
            # structlog is not configured yet at this point
            print(
                f"WARNING: cannot open LOG_FILE {path!r} ({exc}); logging to stdout only.",
                file=sys.stderr,
            )

    def _to_sink(self, action: Callable[[IO[str]], object], op: str) -> None:
        if self._sink is None:
            return
        try:
            action(self._sink)
        except (OSError, ValueError):
            self._sink = None
            print(f"WARNING: LOG_FILE {op} failed; file logging disabled.", file=sys.stderr)

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        self._to_sink(lambda f: (f.write(data), f.flush()), "write")

    def flush(self) -> None:
        sys.stdout.flush()
        self._to_sink(lambda f: f.flush(), "flush")


def _resolve_level(name: str) -> int:
    return logging.getLevelNamesMapping().get(name.upper(), logging.INFO)


def configure_logging() -> None:
    """Configure structlog: console renderer in development, JSON elsewhere.

    Standard-library records (uvicorn, SQLAlchemy, httpx) are rendered by
    the same processor chain so every line shares one format. When
    LOG_FILE is set, output is also appended to that file.
    """
    level = _resolve_level(settings.log_level)
    if settings.environment == "development":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    # PrintLoggerFactory only calls write() and flush() on its file
    sink = _TeeWriter(settings.log_file) if settings.log_file else None
    factory = structlog.PrintLoggerFactory(file=sink)  # type: ignore[arg-type]

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.processors.format_exc_info, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=factory,
        cache_logger_on_first_use=True,
    )

    stdlib_handler = logging.StreamHandler(sys.stdout)
    stdlib_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers = [stdlib_handler]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
