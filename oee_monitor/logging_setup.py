"""Structured logging configuration."""

import logging
import sys

import structlog

from oee_monitor.config import settings


def setup_logging(log_level: str | None = None) -> None:
    """Configure structlog to emit JSON lines through stdlib logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR). Uses
            settings if not provided.
    """
    level_name = (log_level or settings.LOG_LEVEL).upper()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.INFO),
    )

    # Per-request logs from the HTTP client are noise next to delivery logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
