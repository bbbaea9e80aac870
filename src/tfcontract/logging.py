"""Structured logging for harness runs.

Every event is one JSON object on stderr, stamped with the emitting logger's
name and, inside :func:`run_context`, the run ID and subcommand. stdout is left
to the console tables.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, cast

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

DEFAULT_LEVEL = "WARNING"


def configure_logging(level: str | None = None) -> None:
    """Configure structlog; unknown level names fall back to WARNING."""
    level_name = (level or DEFAULT_LEVEL).upper()
    numeric_level = logging._nameToLevel.get(level_name, logging.WARNING)

    logging.basicConfig(format="%(message)s", level=numeric_level, stream=sys.stderr)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def run_context(run_id: str, **fields: Any) -> Iterator[None]:
    """Bind ``run_id`` and extra fields to every event logged inside the block.

    Pool worker threads do not inherit context variables, so their events
    carry only the logger name.
    """
    bind_contextvars(run_id=run_id, **fields)
    try:
        yield
    finally:
        clear_contextvars()


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Return a structured logger."""
    return cast(structlog.BoundLogger, structlog.get_logger(name))
