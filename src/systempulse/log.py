"""Structured logging configuration using structlog."""

import atexit
import sys
from typing import TextIO

import structlog

from systempulse.config import PulseSettings

_LEVELS = {"debug": 10, "info": 20, "warning": 30, "warn": 30, "error": 40, "critical": 50}

# Log file opened by the last configure_logging() call
_log_file: TextIO | None = None


def _close_log_file() -> None:
    global _log_file
    if _log_file is not None:
        _log_file.close()
        _log_file = None


atexit.register(_close_log_file)


def configure_logging(settings: PulseSettings) -> None:
    """Configure structlog for systempulse.

    Uses console renderer for development, JSON for production. Output goes
    to ``settings.log_file`` when set, otherwise stderr. A file opened by an
    earlier call is closed, and the current one is closed at exit.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=settings.log_file is None)

    global _log_file
    previous = _log_file
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        stream: TextIO = settings.log_file.open("a", encoding="utf-8")
        _log_file = stream
    else:
        stream = sys.stderr
        _log_file = None

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _LEVELS.get(settings.log_level.lower(), 30)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        # Loggers cached against a file would outlive it on reconfigure
        cache_logger_on_first_use=_log_file is None,
    )
    if previous is not None:
        previous.close()


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, optionally bound to a component name."""
    # Initial values keep the proxy lazy, so module-level loggers pick up
    # configure_logging() even when it runs after import.
    if name:
        return structlog.get_logger(component=name)
    return structlog.get_logger()
