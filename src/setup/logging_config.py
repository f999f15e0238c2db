import logging
import os
from logging.config import dictConfig

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install a console handler on the root logger at ``LOG_LEVEL``."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                },
            },
            "root": {"handlers": ["console"], "level": level},
            "loggers": {
                # Request lines from httpx duplicate our own API logging.
                "httpx": {"level": "WARNING"},
            },
        }
    )
    logging.getLogger(__name__).debug("Logging configured", extra={"level": level})
