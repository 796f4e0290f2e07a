"""
Process-wide logging setup.
"""
from __future__ import annotations

from logging.config import dictConfig
from typing import Optional

from .config import get_config


def setup_logging(level: Optional[str] = None) -> None:
    """
    Initialise console logging for the whole process.

    Third-party HTTP and SDK loggers are held at WARNING so that a grading
    run's own milestones stay readable.
    """
    level = (level or get_config().server.log_level).upper()

    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "default",
            },
        },
        "loggers": {
            "": {"handlers": ["console"], "level": level},
            "urllib3": {"level": "WARNING"},
            "openai": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
            "werkzeug": {"level": "WARNING"},
        },
    })
