"""
Logging configuration for SqlGate.

Uses loguru for enhanced logging with automatic formatting,
file rotation, and structured output. Console output goes to stderr
because stdout carries the stdio protocol stream.
"""

from __future__ import annotations

import sys
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger

REDACTED = "***"


def setup_logging(
    level: str = "INFO",
    log_file: str | Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional)
        rotation: Log file rotation size
        retention: Log file retention period
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_file,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
            rotation=rotation,
            retention=retention,
            encoding="utf-8",
        )


def get_logger(name: str | None = None) -> Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (module name)

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger


def redact(text: str, secrets: Iterable[str | None]) -> str:
    """
    Mask every occurrence of the given secret values in a message.

    Args:
        text: Message that may contain secrets (e.g. a driver error)
        secrets: Secret values such as passwords; empty values are ignored

    Returns:
        The message with each secret replaced by ``***``
    """
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def preview(sql: str, length: int = 100) -> str:
    """Single-line, truncated view of a query for log lines."""
    flat = " ".join(sql.split())
    return flat if len(flat) <= length else f"{flat[:length]}..."
