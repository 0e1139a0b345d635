"""Logging configuration for the assistant.

Single-line, pipe-separated records that always carry the id of the
HTTP request being served (or "-" outside of a request).
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from logging.config import dictConfig

from scgpt.core.config import get_settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Ensure `request_id` is always present in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


def configure_logging() -> None:
    settings = get_settings()

    log_level = settings.log_level.upper()

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIdFilter},
        },
        "formatters": {
            "structured": {
                "format": (
                    "%(asctime)s | %(levelname)s | %(name)s | "
                    "%(message)s | request_id=%(request_id)s"
                )
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "filters": ["request_id"],
            }
        },
        "root": {
            "level": log_level,
            "handlers": ["default"],
        },
    }

    dictConfig(config)
