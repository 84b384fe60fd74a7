# callfabric/log_config.py
"""Logging configuration for the callfabric library using Loguru.

This module provides a centralized function to configure the Loguru logger
with a standardized format, level, and sink, so that the orchestration
pipeline, its plugins and the applications built on it log consistently.
"""

import sys

from loguru import logger


def configure_logging(level: str = "INFO", sink=sys.stderr):
    """
    Configures Loguru logger.

    Removes default handlers and adds a new one with the specified level and sink.

    Args:
        level: The minimum logging level (e.g., "DEBUG", "INFO", "WARNING").
        sink: The output sink (e.g., sys.stderr, "file.log").
    """
    logger.remove()  # Remove default handler
    logger.add(
        sink,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=sink is sys.stderr,  # Only colorize if writing to stderr
        backtrace=True,
        diagnose=True,
    )
    logger.info(
        f"Loguru logger configured with level={level.upper()} writing to {sink}"
    )


def disable_logging() -> None:
    """Silences every log record emitted from the callfabric package."""
    logger.disable("callfabric")


def enable_logging() -> None:
    """Re-enables log records emitted from the callfabric package."""
    logger.enable("callfabric")
