"""
Logging setup.

Plain stdlib logging configured through dictConfig. Messages are written as
`event_name key=value ...` so they stay grep-able; set LOG_JSON=true to emit
one JSON object per line instead.
"""

from __future__ import annotations

import logging.config

from .settings import Settings


def build_logging_config(settings: Settings) -> dict:
    formatter = "json" if settings.log_json else "structured"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "format": "timestamp=%(asctime)s level=%(levelname)s module=%(name)s message=\"%(message)s\"",
                "style": "%",
            },
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
            },
        },
        "loggers": {
            "skycast": {
                "handlers": ["console"],
                "level": settings.log_level.upper(),
                "propagate": False,
            },
            "uvicorn.error": {"level": "INFO"},
        },
    }


def configure_logging(settings: Settings) -> None:
    logging.config.dictConfig(build_logging_config(settings))
