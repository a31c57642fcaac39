"""
Miles logging infrastructure.

Provides unified logging for the server, the migration engine and the
generated frontend, with:
- Console output for human monitoring
- JSONL file output to .miles/logs/miles.log for tooling to tail
- Frontend error capture (fed by POST /_miles/log)

Each JSONL line is a complete JSON object with timestamp, level,
component, message and optional structured context.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOG_FILE_NAME = "miles.log"

# =============================================================================
# Terminal Colors (respects NO_COLOR)
# =============================================================================

_NO_COLOR = bool(os.environ.get("NO_COLOR")) or not sys.stdout.isatty()


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "" if _NO_COLOR else "\033[0m"
    DIM = "" if _NO_COLOR else "\033[2m"

    DEBUG = "" if _NO_COLOR else "\033[36m"
    INFO = "" if _NO_COLOR else "\033[32m"
    WARNING = "" if _NO_COLOR else "\033[33m"
    ERROR = "" if _NO_COLOR else "\033[31m"
    CRITICAL = "" if _NO_COLOR else "\033[35m"

    SERVER = "" if _NO_COLOR else "\033[34m"
    CLIENT = "" if _NO_COLOR else "\033[36m"
    MILES = "" if _NO_COLOR else "\033[35m"


# =============================================================================
# Formatters
# =============================================================================


class JSONLFormatter(logging.Formatter):
    """
    Formats log records as JSON Lines.

    Example output:
    {"timestamp":"2026-01-15T10:30:45.123456Z","level":"INFO","component":"DB","message":"Applied 2 migration steps","context":{"tables":["Todo"]}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "component": getattr(record, "component", "Miles"),
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.levelno >= logging.WARNING:
            source_info: dict[str, Any] = {}
            if record.pathname:
                source_info["file"] = record.pathname
            if record.lineno:
                source_info["line"] = record.lineno
            if record.funcName and record.funcName != "<module>":
                source_info["function"] = record.funcName
            if source_info:
                entry["source"] = source_info

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.DEBUG,
        logging.INFO: Colors.INFO,
        logging.WARNING: Colors.WARNING,
        logging.ERROR: Colors.ERROR,
        logging.CRITICAL: Colors.CRITICAL,
    }

    def format(self, record: logging.LogRecord) -> str:
        component = getattr(record, "component", "Miles")
        component_color = getattr(record, "component_color", Colors.MILES)
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        if _NO_COLOR:
            prefix = f"[{timestamp}] [{component}]"
        else:
            prefix = (
                f"{Colors.DIM}{timestamp}{Colors.RESET} "
                f"{component_color}[{component}]{Colors.RESET}"
            )

        if record.levelno != logging.INFO:
            level_name = record.levelname
            if not _NO_COLOR:
                level_name = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level_name}{Colors.RESET}"
            prefix = f"{prefix} {level_name}:"

        return f"{prefix} {record.getMessage()}"


# =============================================================================
# Logger Setup
# =============================================================================


_loggers: dict[str, logging.Logger] = {}
_log_dir: Path | None = None


def setup_logging(
    log_dir: Path | str = ".miles/logs",
    level: int | str = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """
    Initialize the logging infrastructure.

    Args:
        log_dir: Directory for log files
        level: Minimum log level (int or name such as "DEBUG")
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep
        console: Also log to stdout

    Returns:
        Path to the log directory
    """
    global _log_dir

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    _log_dir = Path(log_dir)
    _log_dir.mkdir(parents=True, exist_ok=True)

    log_file = _log_dir / LOG_FILE_NAME
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(JSONLFormatter())
    file_handler.setLevel(level)

    root_logger = logging.getLogger("miles")
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ConsoleFormatter())
        console_handler.setLevel(level)
        root_logger.addHandler(console_handler)

    root_logger.addHandler(file_handler)

    root_logger.info(
        "Miles logging initialized",
        extra={
            "component": "Miles",
            "context": {"log_format": "jsonl", "log_file": str(log_file)},
        },
    )

    return _log_dir


class _ComponentFilter(logging.Filter):
    def __init__(self, component: str, color: str):
        super().__init__()
        self.component = component
        self.color = color

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            record.component = self.component
        if not hasattr(record, "component_color"):
            record.component_color = self.color
        return True


def get_logger(component: str, color: str = Colors.MILES) -> logging.Logger:
    """
    Get a logger for a specific component.

    Args:
        component: Component name (e.g., "API", "DB", "Client")
        color: ANSI color code for the component tag

    Returns:
        Configured logger instance
    """
    if component in _loggers:
        return _loggers[component]

    logger = logging.getLogger(f"miles.{component.lower().replace(' ', '_')}")
    logger.addFilter(_ComponentFilter(component, color))
    _loggers[component] = logger
    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    **kwargs: Any,
) -> None:
    """
    Log a message with structured context data.

    Args:
        logger: Logger instance
        level: Logging level
        message: Human-readable message
        context: Structured context data (included in the JSONL entry)
        **kwargs: Additional context items
    """
    extra = {"context": {**(context or {}), **kwargs}} if (context or kwargs) else {}
    logger.log(level, message, extra=extra)


def get_server_logger() -> logging.Logger:
    """Logger for API requests and server lifecycle."""
    return get_logger("API", Colors.SERVER)


def get_db_logger() -> logging.Logger:
    """Logger for schema and migration work."""
    return get_logger("DB", Colors.SERVER)


def get_client_logger() -> logging.Logger:
    """Logger for frontend entries and the Python client."""
    return get_logger("Client", Colors.CLIENT)


# =============================================================================
# Frontend Error Logging
# =============================================================================


def log_frontend_entry(
    level: str,
    message: str,
    source: str | None = None,
    line: int | None = None,
    column: int | None = None,
    stack: str | None = None,
    url: str | None = None,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Log an entry reported by the generated frontend.

    Args:
        level: Log level (error, warn, info, debug)
        message: Error/log message
        source: Source file URL
        line: Line number
        column: Column number
        stack: Stack trace (for errors)
        url: Page URL where the entry occurred
        extra: Additional context
    """
    level_map = {
        "error": logging.ERROR,
        "warn": logging.WARNING,
        "warning": logging.WARNING,
        "info": logging.INFO,
        "debug": logging.DEBUG,
        "log": logging.INFO,
    }
    py_level = level_map.get(level.lower(), logging.INFO)

    context: dict[str, Any] = {}
    if source:
        context["source_file"] = source
    if line:
        context["line"] = line
    if column:
        context["column"] = column
    if url:
        context["page_url"] = url
    if stack:
        context["stack_trace"] = [s.strip() for s in stack.split("\n") if s.strip()]
    if extra:
        context.update(extra)

    log_with_context(get_client_logger(), py_level, message, context)


# =============================================================================
# Reading Logs Back
# =============================================================================


def get_log_file() -> Path | None:
    """Get the path to the main log file."""
    if _log_dir:
        return _log_dir / LOG_FILE_NAME
    return None


def get_recent_logs(count: int = 50, level: str | None = None) -> list[dict[str, Any]]:
    """
    Get recent log entries as parsed JSON.

    Args:
        count: Number of recent entries to return
        level: Optional filter by level (ERROR, WARNING, etc.)

    Returns:
        List of log entries (most recent last)
    """
    log_file = get_log_file()
    if not log_file or not log_file.exists():
        return []

    entries: list[dict[str, Any]] = []
    with open(log_file, encoding="utf-8") as f:
        for raw in f:
            raw = raw.strip()
            if not raw:
                continue
            try:
                entry = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if level and entry.get("level") != level.upper():
                continue
            entries.append(entry)

    return entries[-count:]
