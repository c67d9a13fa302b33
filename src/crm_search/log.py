"""Structured logging setup.

Console rendering for interactive use, JSON lines when
``CRM_SEARCH_LOG_FORMAT=json``.
"""

from __future__ import annotations

import logging
import os

import structlog

ENV_LOG_LEVEL = "CRM_SEARCH_LOG_LEVEL"
ENV_LOG_FORMAT = "CRM_SEARCH_LOG_FORMAT"


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog and the stdlib root logger it writes through."""
    level_name = (level or os.getenv(ENV_LOG_LEVEL) or "INFO").upper()
    render_format = (fmt or os.getenv(ENV_LOG_FORMAT) or "console").lower()

    logging.basicConfig(format="%(message)s", level=level_name, force=True)

    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if render_format == "json":
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
