"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path

import structlog

from .config.models import LogLevel

_LOGGING_INITIALISED = False

_CONSOLE_LEVELS = {
    LogLevel.QUIET: "ERROR",
    LogLevel.NORMAL: "INFO",
    LogLevel.VERBOSE: "DEBUG",
}


def _default_log_dir() -> Path:
    return Path.cwd() / "logs"


def configure_logging(
    level: LogLevel | str = LogLevel.NORMAL,
    log_dir: Path | None = None,
    *,
    force: bool = False,
) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED
    if _LOGGING_INITIALISED and not force:
        return structlog.get_logger("feedsync")

    level = LogLevel(level)
    console_level = _CONSOLE_LEVELS[level]
    log_dir = log_dir or _default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    sync_log = log_dir / "feedsync.log"
    error_log = log_dir / "error.log"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "plain": {
                    "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": console_level,
                    "formatter": "plain",
                },
                "sync_file": {
                    "class": "logging.FileHandler",
                    "level": "DEBUG" if level is LogLevel.VERBOSE else "INFO",
                    "filename": str(sync_log),
                    "formatter": "plain",
                    "encoding": "utf-8",
                },
                "error_file": {
                    "class": "logging.FileHandler",
                    "level": "ERROR",
                    "filename": str(error_log),
                    "formatter": "plain",
                    "encoding": "utf-8",
                },
            },
            "loggers": {
                "feedsync": {
                    "handlers": ["console", "sync_file", "error_file"],
                    "level": "DEBUG" if level is LogLevel.VERBOSE else "INFO",
                    "propagate": False,
                },
            },
        }
    )

    # Forward structlog events to stdlib logging; JSON formatting happens at handler level.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _LOGGING_INITIALISED = True
    return structlog.get_logger("feedsync")


def component_logger(component: str) -> structlog.BoundLogger:
    """Return a logger under the ``feedsync`` namespace bound to a component."""

    return structlog.get_logger(f"feedsync.{component}").bind(component=component)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


__all__ = ["component_logger", "configure_logging", "tail_log"]
