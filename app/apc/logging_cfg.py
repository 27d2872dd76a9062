"""
Logging setup shared by the app factory and the scripts.

All logs go to stdout (container/gunicorn friendly). Records emitted inside a
request carry its request_id so audit rows and log lines can be correlated.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig

from flask import g, has_request_context

_configured = False


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        rid = None
        if has_request_context():
            rid = getattr(g, "request_id", None)
        record.request_id = rid or "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once per process."""
    global _configured
    if _configured:
        logging.getLogger().setLevel(level)
        return

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "request_id": {"()": RequestIdFilter},
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s (rid=%(request_id)s): %(message)s",
                },
            },
            "handlers": {
                "wsgi": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["request_id"],
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {
                "level": level,
                "handlers": ["wsgi"],
            },
            "loggers": {
                "sqlalchemy.engine": {"level": "WARNING"},
                "alembic": {"level": "INFO"},
            },
        }
    )
    _configured = True
    logging.getLogger(__name__).info("Logging configured (level=%s)", level)
