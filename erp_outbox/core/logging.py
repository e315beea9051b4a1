from __future__ import annotations

import logging.config
import sys


def configure_logging(log_level: str = "INFO") -> None:
    """Configure process-wide logging for the API and the dispatcher workers."""

    level = (log_level or "INFO").upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "detailed": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": level,
                    "formatter": "detailed",
                    "stream": sys.stdout,
                }
            },
            "loggers": {
                "": {"level": level, "handlers": ["console"]},
                # SQL echo is far too chatty at INFO.
                "sqlalchemy.engine": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
            },
        }
    )
