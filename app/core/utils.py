"""Shared utility functions for the AI categorization engine."""

import logging
import uuid
from datetime import UTC, datetime

import colorlog

LOGGER_NAME = "ai-categorizer"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a colorized format for the project.

    Only the project logger owns handlers; ``ai-categorizer.*`` children propagate to it.
    """
    logger = logging.getLogger(name)
    if name != LOGGER_NAME:
        return logger
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
    logger.propagate = False
    return logger


def utcnow_iso() -> str:
    """Get the current UTC time as an ISO8601 string."""
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    """Return a fresh string uuid4."""
    return str(uuid.uuid4())


def batch_count(total: int, size: int) -> int:
    """Number of fixed-size batches needed to cover ``total`` items."""
    if total <= 0:
        return 0
    return -(-total // size)
