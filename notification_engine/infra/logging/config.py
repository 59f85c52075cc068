"""Logging configuration setup.

- QueueHandler + QueueListener so emitting a record never blocks the event loop
- ContextInjectingFilter for contextvars propagation
- All handlers hang off the root logger (child loggers propagate)
- JSONL format for machine parsing
"""

from __future__ import annotations

import atexit
import logging
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from queue import Queue
from typing import TYPE_CHECKING

from notification_engine.infra.logging.context import ContextInjectingFilter
from notification_engine.infra.logging.formatters import JSONFormatter

if TYPE_CHECKING:
    from notification_engine.core.settings.logs import LoggingSettings

_listener: QueueListener | None = None
_installed: list[logging.Handler] = []
logger = logging.getLogger(__name__)

_TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def shutdown() -> None:
    """Flush queued records and detach the handlers installed by configure_logging."""
    global _listener

    if _listener is not None:
        _listener.stop()
        _listener = None

    root = logging.getLogger()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()


def _build_handlers(settings: LoggingSettings) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    def _formatter() -> logging.Formatter:
        if settings.json_logs:
            return JSONFormatter(static={"service": settings.service_name})
        return logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT)

    if settings.console_enabled:
        console = logging.StreamHandler()
        console.setFormatter(_formatter())
        handlers.append(console)

    file_path = settings.effective_file_path
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=settings.file_max_bytes,
            backupCount=settings.file_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(_formatter())
        handlers.append(file_handler)

    return handlers


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Configure root logging from LoggingSettings.

    Safe to call more than once; a previous configuration is torn down first.

    Example:
        from notification_engine.infra.logging import configure_logging

        configure_logging()  # reads LOG_* environment variables
    """
    global _listener

    if settings is None:
        from notification_engine.core.settings import get_logging_settings

        settings = get_logging_settings()

    shutdown()

    root = logging.getLogger()
    root.setLevel(settings.level_int)
    handlers = _build_handlers(settings)

    if settings.use_queue and handlers:
        queue: Queue[logging.LogRecord] = Queue()
        _listener = QueueListener(queue, *handlers, respect_handler_level=True)
        _listener.start()
        front: list[logging.Handler] = [QueueHandler(queue)]
    else:
        front = handlers

    for handler in front:
        if settings.include_context:
            handler.addFilter(ContextInjectingFilter())
        root.addHandler(handler)
        _installed.append(handler)

    logging.captureWarnings(settings.capture_warnings)
    logger.info(
        "Logging configured",
        extra={
            "level": settings.level,
            "json": settings.json_logs,
            "queue": settings.use_queue,
            "file": str(settings.effective_file_path) if settings.effective_file_path else None,
        },
    )


atexit.register(shutdown)
