"""Logging setup for SF Tree Migrate.

structlog events are rendered once and routed through the stdlib root
logger: a rich handler on stderr for people, and an optional JSON-lines file
for later inspection of a run.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, WrappedLogger

from sf_migration import __version__

APP_NAME = "sf-tree-migrate"

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Keys whose values never reach a log line.
SENSITIVE_FIELDS = ("token", "password", "secret", "authorization", "session_id")


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = APP_NAME
    event_dict["version"] = __version__
    return event_dict


class JSONLinesFormatter(logging.Formatter):
    """One JSON object per record, with color codes removed from the event text."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": _ANSI_PATTERN.sub("", record.getMessage()),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: str = "WARNING", log_file: str | None = None) -> None:
    """Install console and file handlers and configure structlog.

    Args:
        level: Console log level name
        log_file: JSON-lines log file, always written at DEBUG; None disables it
    """
    console_level = getattr(logging, level.upper(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(console_level)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONLinesFormatter())
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            add_app_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if log_file else console_level
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_api_request(
    logger: structlog.stdlib.BoundLogger,
    method: str,
    url: str,
    status_code: int,
    duration_ms: float,
) -> None:
    """Log a completed HTTP call; client errors at warning, the rest at debug."""
    level = logging.WARNING if 400 <= status_code < 500 else logging.DEBUG
    logger.log(
        level,
        "api_request",
        method=method,
        url=url,
        status_code=status_code,
        duration_ms=round(duration_ms, 2),
    )


def log_error(logger: structlog.stdlib.BoundLogger, error: Exception, context: str) -> None:
    logger.error(
        "error_occurred",
        error_type=type(error).__name__,
        error_message=str(error),
        context=context,
        exc_info=True,
    )


def sanitize_payload(payload: Any, max_depth: int = 10) -> Any:
    """Copy of ``payload`` with sensitive values replaced by ``[REDACTED]``."""
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"
    if isinstance(payload, dict):
        return {
            key: "[REDACTED]"
            if any(word in str(key).lower() for word in SENSITIVE_FIELDS)
            else sanitize_payload(value, max_depth - 1)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [sanitize_payload(item, max_depth - 1) for item in payload]
    return payload


def truncate_payload(payload: Any, max_size: int = 10000) -> str:
    """Render ``payload`` as JSON, cut to ``max_size`` characters."""
    text = json.dumps(payload, indent=2, default=str)
    if len(text) > max_size:
        return f"{text[:max_size]}\n... [TRUNCATED - {len(text)} total chars]"
    return text
