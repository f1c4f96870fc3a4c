"""
Logger Utility
==============

Context-aware logging for the companion. Every component creates its own
Logger with a short context name so a single turn can be followed across
retrieval, the completion loop, tools, and the transport.

Features:
1. Log levels (DEBUG, INFO, WARNING, ERROR) filtered by LOG_LEVEL
2. Timestamped, color-coded terminal output
3. Child loggers for nested contexts ("Agent:Turn")
4. Bound fields attached to every line (channel, message id)

Usage:
    from medcompanion.utils.logger import Logger

    logger = Logger("Agent")
    logger.info("Turn started")

    turn_logger = logger.child("Turn").bind(channel="D123", message_id="171.2")
    turn_logger.debug("Round finished", {"tool_calls": 1})
"""

import json
import os
import sys
from datetime import datetime
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """
    Log levels with numeric values for comparison.
    Higher values = more severe = always shown.
    """
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


class Colors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    DEBUG = "\033[36m"    # Cyan
    INFO = "\033[32m"     # Green
    WARNING = "\033[33m"  # Yellow
    ERROR = "\033[31m"    # Red
    DIM = "\033[2m"


_LEVEL_NAMES = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARNING": LogLevel.WARNING,
    "WARN": LogLevel.WARNING,
    "ERROR": LogLevel.ERROR,
}


def _get_log_level_from_env() -> LogLevel:
    """Parse LOG_LEVEL, defaulting to INFO."""
    level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    return _LEVEL_NAMES.get(level_str, LogLevel.INFO)


class Logger:
    """
    A context-aware logger with colored output.

    Example:
        logger = Logger("Retriever")
        logger.warning("Embedding service failed, using zero vector")

        child = logger.child("Pinecone")
        child.debug("Query finished", {"matches": 5})
    """

    def __init__(self, context: str = "", fields: dict[str, Any] | None = None):
        """
        Initialize a logger.

        Args:
            context: Prefix shown on every line (e.g., "Agent", "Slack")
            fields: Key/value pairs appended to every line
        """
        self.context = context
        self.fields = dict(fields or {})
        self._min_level = _get_log_level_from_env()

    def child(self, child_context: str) -> "Logger":
        """
        Create a child logger with additional context.

        Bound fields are inherited by the child.

        Example:
            Logger("Agent").child("Turn")  # logs as [Agent:Turn]
        """
        new_context = f"{self.context}:{child_context}" if self.context else child_context
        return Logger(new_context, self.fields)

    def bind(self, **fields: Any) -> "Logger":
        """Return a logger that appends the given fields to every message."""
        merged = {**self.fields, **fields}
        return Logger(self.context, merged)

    def _format_message(self, level: str, message: str, color: str) -> str:
        """
        Format a log line.

        Output format: [TIMESTAMP] [LEVEL] [context] message key=value ...
        """
        timestamp = datetime.now().isoformat(timespec="seconds")
        context_str = f"[{self.context}] " if self.context else ""
        fields_str = ""
        if self.fields:
            fields_str = " " + " ".join(f"{k}={v}" for k, v in self.fields.items())

        return (
            f"{Colors.DIM}[{timestamp}]{Colors.RESET} "
            f"{color}[{level}]{Colors.RESET} "
            f"{context_str}{message}{Colors.DIM}{fields_str}{Colors.RESET}"
        )

    def _log(
        self,
        level: LogLevel,
        level_name: str,
        color: str,
        message: str,
        data: dict[str, Any] | None = None
    ) -> None:
        if level < self._min_level:
            return

        formatted = self._format_message(level_name, message, color)

        stream = sys.stderr if level >= LogLevel.ERROR else sys.stdout
        print(formatted, file=stream)

        if data:
            data_str = json.dumps(data, indent=2, default=str)
            print(f"{Colors.DIM}{data_str}{Colors.RESET}", file=stream)

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log a debug message. Only shown when LOG_LEVEL=DEBUG."""
        self._log(LogLevel.DEBUG, "DEBUG", Colors.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log an info message."""
        self._log(LogLevel.INFO, "INFO", Colors.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        """
        Log a warning message.

        Used for recovered degradations: a failed geocode, an empty
        embedding, a search provider error.
        """
        self._log(LogLevel.WARNING, "WARN", Colors.WARNING, message, data)

    def error(self, message: str, error: Exception | None = None) -> None:
        """
        Log an error message, optionally with exception details.

        Args:
            message: The error message
            error: Optional exception to include details from
        """
        data = None
        if error:
            data = {
                "error_type": type(error).__name__,
                "error_message": str(error),
            }
        self._log(LogLevel.ERROR, "ERROR", Colors.ERROR, message, data)


# Default logger instance for general use
logger = Logger("MedCompanion")
