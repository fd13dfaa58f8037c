"""Structured logging setup."""

import logging
import os
import sys
from typing import Optional

import structlog


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Log level name (defaults to NOTIFY_GUARD_LOG_LEVEL or WARNING)
        fmt: "json" or "console" (defaults to NOTIFY_GUARD_LOG_FORMAT or console)
    """
    level_name = (level or os.environ.get("NOTIFY_GUARD_LOG_LEVEL") or "WARNING").upper()
    log_level = getattr(logging, level_name, logging.WARNING)
    fmt = (fmt or os.environ.get("NOTIFY_GUARD_LOG_FORMAT") or "console").lower()

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Logs go to stderr so CLI tables on stdout stay clean.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )
