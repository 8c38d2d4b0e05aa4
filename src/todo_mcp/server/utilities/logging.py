"""Logging utilities for the todo MCP server."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def get_logger(name: str) -> logging.Logger:
    """Logger for a module of this package, usually called with ``__name__``."""
    return logging.getLogger(name)


def configure_logging(level: LogLevel = "INFO") -> None:
    """Send log records to stderr through rich.

    SQL statements are only shown at DEBUG.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if level == "DEBUG" else logging.WARNING)
