"""
Structured logging with JSON formatting and resolution-scoped context.

This module provides:
- JSON log formatting for structured logging
- A correlation ID per resolution or batch run, carried in a context variable
- The player ID currently being reconciled, stamped on every record
- Logger factory for consistent logger creation
"""
import logging
import json
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional
from contextvars import ContextVar

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
player_id_var: ContextVar[str] = ContextVar("player_id", default="")

_STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "message", "asctime", "taskName",
})


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Outputs one JSON object per record with timestamp, level, logger,
    message, correlation_id, player_id, exception details when present, and
    anything passed through ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get(),
        }

        player_id = player_id_var.get()
        if player_id:
            log_data["player_id"] = player_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Human-readable coloured console output for local runs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.COLORS.get(record.levelname, "")
        base_msg = f"{level_color}[{record.levelname}]{self.RESET} {record.name}: {record.getMessage()}"

        context = []
        if correlation_id_var.get():
            context.append(f"correlation_id={correlation_id_var.get()}")
        if player_id_var.get():
            context.append(f"player_id={player_id_var.get()}")
        if context:
            base_msg += " | " + " ".join(context)

        if record.exc_info:
            base_msg += "\n" + self.formatException(record.exc_info)

        return base_msg


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    handler: logging.Handler | None = None,
) -> None:
    """
    Configure logging for scripts and jobs.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, use JSON formatter. If False, use coloured console formatter.
        handler: Optional custom handler. If None, creates StreamHandler to stdout.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)

    handler.setFormatter(JSONFormatter() if json_output else ColoredFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically ``get_logger(__name__)``)."""
    return logging.getLogger(name)


def set_correlation_id(correlation_id: str) -> Any:
    """
    Set the correlation ID in the context.

    Returns:
        Token that can be used to reset the context variable
    """
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    return correlation_id_var.get()


def clear_correlation_id(token: Any) -> None:
    correlation_id_var.reset(token)


@contextmanager
def resolution_context(player_key: Optional[str] = None) -> Iterator[str]:
    """
    Scope log records to a single resolution.

    Reuses an outer correlation ID when one is already set (e.g. inside a
    leaderboard run) so per-player lines stay attached to the batch.

    Yields:
        The active correlation ID
    """
    correlation_token = None
    correlation_id = correlation_id_var.get()
    if not correlation_id:
        correlation_id = uuid.uuid4().hex[:12]
        correlation_token = correlation_id_var.set(correlation_id)
    player_token = player_id_var.set(player_key or "")
    try:
        yield correlation_id
    finally:
        player_id_var.reset(player_token)
        if correlation_token is not None:
            correlation_id_var.reset(correlation_token)
