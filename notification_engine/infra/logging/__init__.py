"""Structured logging for the notification engine.

Usage:
    from notification_engine.infra.logging import configure_logging, get_lazy_logger

    configure_logging()
    logger = get_lazy_logger(__name__)
"""

from __future__ import annotations

from .config import configure_logging, shutdown
from .context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)
from .formatters import JSONFormatter
from .lazy import LazyLoggerAdapter, get_lazy_logger

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "clear_log_context",
    "configure_logging",
    "get_lazy_logger",
    "get_log_context",
    "log_context",
    "set_log_context",
    "shutdown",
]
