"""Logging utilities for toolbridge."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

# MCP logging levels (RFC 5424) mapped onto the standard library's
SERVER_LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the toolbridge namespace.

    Args:
        name: the name of the logger, which will be prefixed with 'toolbridge.'

    Returns:
        a configured logger instance
    """
    return logging.getLogger(f"toolbridge.{name}")


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
) -> None:
    """Configure logging for toolbridge.

    Output goes to stderr so it never mixes with a stdio transport.

    Args:
        level: the log level to use
    """
    handlers: list[logging.Handler] = [RichHandler(console=Console(stderr=True), rich_tracebacks=True)]

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=handlers,
    )
