"""Structured logging utilities with context management."""

import contextvars
import sys
from typing import Any

from loguru import logger

# Context variables for maintaining rule/trigger/entity context
evaluation_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "evaluation_context", default={}
)

_CONTEXT_KEYS = ("rule", "trigger", "entity")


class LoggingContext:
    """
    Context manager for structured logging with automatic context injection.

    Example:
        with LoggingContext(rule="interface-errors", entity=("ge-0/0/0", 0)):
            logger.info("Evaluating")  # Will include rule and entity
    """

    def __init__(self, **context_data):
        self.context_data = context_data
        self.token = None

    def __enter__(self):
        current = evaluation_context.get().copy()
        current.update(self.context_data)
        self.token = evaluation_context.set(current)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token:
            evaluation_context.reset(self.token)


def _context_filter(record) -> bool:
    """Copy context variables into the record extras, with placeholders for missing keys."""
    context = evaluation_context.get()
    for key in _CONTEXT_KEYS:
        record["extra"].setdefault(key, "-")
    for key, value in context.items():
        record["extra"][key] = value
    return True


def configure_structured_logging(
    level: str = "INFO",
    file: str | None = None,
    rotation: str = "100 MB",
    retention: str = "30 days",
) -> None:
    """
    Configure loguru to include the evaluation context in all log messages.

    This should be called once at application startup.
    """
    logger.remove()

    logger.add(
        sink=sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[rule]}</cyan>:<cyan>{extra[trigger]}</cyan>:<cyan>{extra[entity]}</cyan> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        filter=_context_filter,
        level=level,
        colorize=True,
    )

    if file:
        logger.add(
            sink=file,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra} | {name}:{function}:{line} | {message}",
            filter=_context_filter,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
        )
