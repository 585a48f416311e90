"""Structured JSON logging.

Every record carries ``service`` and ``request_id`` next to the usual
timestamp, level, logger and message fields. The request id lives in a
``ContextVar`` that the HTTP middleware in ``mindwell.main`` sets per request.

Usage::

    configure_logging(level="INFO")      # once, at startup
    logger = logging.getLogger(__name__)
    logger.info("Session confirmed", extra={"session_id": 42})
"""

from __future__ import annotations

import logging
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from mindwell.config import SERVICE_NAME

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

LOG_FIELDS = ("asctime", "levelname", "name", "message", "request_id", "service")

FIELD_RENAME_MAP = {
    "levelname": "level",
    "name": "logger",
}

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestContextFilter(logging.Filter):
    """Adds ``service`` and ``request_id`` to each record."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        # keep an explicit request_id passed through `extra`
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get()
        record.service = self._service_name
        return True


def create_json_formatter() -> JsonFormatter:
    return JsonFormatter(
        " ".join(f"%({field})s" for field in LOG_FIELDS),
        rename_fields=FIELD_RENAME_MAP,
    )


def configure_logging(level: str = "INFO", service_name: str = SERVICE_NAME) -> None:
    """Install a single JSON handler on the root logger.

    Raises:
        ValueError: if ``level`` is not a standard logging level name.
    """
    level_upper = level.upper()
    if level_upper not in VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level: {level}. Valid: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )

    handler = logging.StreamHandler()
    handler.setLevel(level_upper)
    handler.setFormatter(create_json_formatter())
    handler.addFilter(RequestContextFilter(service_name))

    root = logging.getLogger()
    root.setLevel(level_upper)
    root.handlers = [handler]
