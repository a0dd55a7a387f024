"""Logging configuration for Coder Bot."""

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog

from coder_bot.config import get_config

_log_file: TextIO | None = None


def _open_log_file(path: Path | str | None) -> TextIO:
    """Return the stream log lines go to, closing a previously opened file."""
    global _log_file
    if _log_file is not None:
        _log_file.close()
        _log_file = None
    if not path:
        return sys.stderr
    log_path = Path(path).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    _log_file = open(log_path, "a", encoding="utf-8")
    return _log_file


def configure_logging(level: str | None = None, log_file: Path | str | None = None) -> None:
    """Configure structured logging for Coder Bot.

    Args:
        level: Overrides ``config.logging.level``
        log_file: Overrides ``config.logging.file``; an empty value logs to stderr
    """
    config = get_config()

    level_name = (level or config.logging.level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    stream = _open_log_file(log_file or config.logging.file)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.logging.format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=stream.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


log = get_logger(__name__)
