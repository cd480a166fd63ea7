"""Logging configuration for DriveLink.

Human-readable coloured lines for development and JSON lines for
production. Structured context is passed through ``extra={...}`` and
rendered as ``key=value`` pairs (text) or top-level keys (json).
"""

import json
import logging
import os
import socket
import sys
import traceback
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import ClassVar

from .config import get_settings_instance

# Guard against double configuration when setup_logging() runs both at
# import-time of the app module and again during lifespan startup
_LOGGING_CONFIGURED = False

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_RECORD_ATTRS}


class ColoredFormatter(logging.Formatter):
    """Coloured formatter for human-readable logs."""

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """Format as ``timestamp - LEVEL - message | key=value ...``."""
        level_color = self.COLORS.get(record.levelname, "") if self.use_colors else ""
        reset_color = self.COLORS["RESET"] if self.use_colors else ""

        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%d %H:%M:%S")
        log_line = f"{timestamp} - {level_color}{record.levelname}{reset_color} - {record.getMessage()}"

        extra_fields = [
            f"{key}={value}"
            for key, value in _extra_fields(record).items()
            if value is not None and isinstance(value, (str, int, float, bool)) and len(str(value)) < 100
        ]
        if extra_fields:
            log_line += f" | {' '.join(extra_fields)}"

        if record.exc_info:
            exc_info = traceback.format_exception(*record.exc_info)
            log_line += f"\n{level_color}Exception:{reset_color}\n" + "".join(exc_info)

        return log_line


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging (production/monitoring)."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a single JSON line."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            exc_type = record.exc_info[0]
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type is not None else "Unknown",
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        log_data.update(_extra_fields(record))
        return json.dumps(log_data, default=str)


def setup_logging() -> None:
    """Configure root, application and uvicorn loggers from settings."""
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if _LOGGING_CONFIGURED:
        return

    settings = get_settings_instance()
    level = getattr(logging, settings.log_level)

    use_colors = settings.environment == "development" and sys.stdout.isatty()
    formatter = JSONFormatter() if settings.log_format == "json" else ColoredFormatter(use_colors=use_colors)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [console_handler]

    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        os.makedirs(log_dir, exist_ok=True)
        # Hostname in the filename so horizontally scaled replicas don't clobber each other
        log_file_path = log_dir / f"drivelink_{socket.gethostname()}.log"
        file_handler = RotatingFileHandler(log_file_path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        root_logger.addHandler(handler)

    # uvicorn installs its own handlers; route them through ours instead
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        uvicorn_log = logging.getLogger(name)
        uvicorn_log.handlers.clear()
        for handler in handlers:
            uvicorn_log.addHandler(handler)
        uvicorn_log.setLevel(min(level, logging.WARNING) if name == "uvicorn.access" else level)
        uvicorn_log.propagate = False

    # Request-level noise from HTTP clients
    for name in ("httpx", "httpcore", "urllib3", "redis"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logging.getLogger("drivelink").setLevel(level)

    logging.getLogger("drivelink.logging").info(
        "Logging configured",
        extra={
            "log_level": settings.log_level,
            "log_format": settings.log_format,
            "environment": settings.environment,
            "use_colors": use_colors,
        },
    )
    _LOGGING_CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``drivelink`` namespace."""
    if name.startswith("drivelink"):
        return logging.getLogger(name)
    return logging.getLogger(f"drivelink.{name}")
