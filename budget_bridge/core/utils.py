"""Shared utility functions for the Budget Bridge project."""

import logging
from datetime import UTC, datetime
from pathlib import Path

import colorlog

ROOT_LOGGER = "budget-bridge"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a colorized format for the project.

    Handlers live on the `budget-bridge` logger; named loggers below it propagate to it, so
    the file handler added by `setup_logging` sees every record.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    logger.propagate = False
    return logging.getLogger(name)


def ensure_dir(path: str | Path) -> None:
    """Ensure a directory exists (like mkdir -p)."""
    Path(path).mkdir(parents=True, exist_ok=True)


def utcnow() -> datetime:
    """Get the current UTC time as an aware datetime."""
    return datetime.now(UTC)


def truncate(text: str, limit: int) -> str:
    """Cut text to at most `limit` characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
