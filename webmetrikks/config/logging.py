"""Process-wide logging configuration."""
from __future__ import annotations

import logging.config
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from webmetrikks.config.settings import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def logging_config(level: str) -> dict[str, Any]:
    """Build a dictConfig mapping with a single console handler."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": LOG_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {"level": level, "handlers": ["console"]},
    }


def configure_logging(settings: "Settings") -> None:
    """Apply the logging configuration for the given settings."""
    level = "DEBUG" if settings.debug else settings.log_level
    logging.config.dictConfig(logging_config(level))
