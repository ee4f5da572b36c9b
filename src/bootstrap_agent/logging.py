"""Structured logging for the agent process.

The agent runs unattended at boot, so everything it logs goes to stderr
where the init system's log collector picks it up.  Console status lines
from ``console_listener`` share the same stream.
"""

import logging
import sys
from typing import Any, TextIO

import structlog

from bootstrap_agent.config import Settings

# Every manifest poll and download would otherwise log each request
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _renderer(settings: Settings) -> Any:
    if settings.is_development:
        return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Settings, stream: TextIO | None = None) -> None:
    """Route structlog and stdlib logging to *stream* (stderr by default)."""
    stream = stream or sys.stderr
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _renderer(settings),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", stream=stream, level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
