"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog


def setup_logging(debug: bool = False, level: str = "INFO") -> None:
    """Configure structlog and the standard library root logger.

    Args:
        debug: If True, use colored console output. Otherwise, use JSON lines.
        level: Minimum level name for emitted events.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    if debug:
        log_level = min(log_level, logging.DEBUG)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if debug:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # structlog renders the event; the root handler only writes it out.
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    logging.getLogger().setLevel(log_level)

    # boto3 is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a bound structlog logger, typically for ``__name__``."""
    return structlog.get_logger(name)
