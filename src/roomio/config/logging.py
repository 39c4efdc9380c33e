"""Structured logging configuration using structlog."""
import logging
import sys
from typing import Any, Optional

import structlog
from pythonjsonlogger import jsonlogger

from roomio.config.settings import settings

# Third-party loggers that chatter at INFO during normal operation
QUIET_LOGGERS = (
    "google.api_core",
    "google.auth",
    "google.cloud.firestore_v1.watch",
    "grpc",
    "uvicorn.access",
)


def add_room_prefix(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Prefix the event with ``[room]`` when a room number is bound.

    Portal components bind ``room_number`` on their loggers, so every line
    a guest's portal emits can be grepped by room.

    Args:
        logger: The logger instance
        method_name: The name of the method being called
        event_dict: The event dictionary containing log data

    Returns:
        Event dictionary with the prefixed event
    """
    room_number = event_dict.get("room_number")
    if room_number:
        event_dict["event"] = f"[{room_number}] {event_dict.get('event', '')}"
    return event_dict


def _build_handler(log_format: str, log_level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(jsonlogger.JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
        )
    handler.setLevel(log_level)
    return handler


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure stdlib logging and structlog for the portal.

    Args:
        level: Overrides ``LOG_LEVEL`` (e.g. from the command line)
        log_format: Overrides ``LOG_FORMAT`` ("json" or "console")
    """
    log_format = log_format or settings.logging.format
    log_level = getattr(logging, (level or settings.logging.level).upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_build_handler(log_format, log_level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=settings.environment == "dev")
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_room_prefix,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for a module, typically called with ``__name__``."""
    return structlog.get_logger(name)
