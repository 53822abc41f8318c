"""
Console logging shared by the command line and the uvicorn server.

Lines are rendered as ``[info] message`` so the bind and run commands and
uvicorn's own startup/shutdown lines look alike.
"""

import logging
import logging.config
from typing import Any, Dict

from destination_proxy.vars import LOG_LEVEL


class LowercaseLevelFormatter(logging.Formatter):
    """Formatter that prefixes each message with its lower-case level name."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        return f"[{record.levelname.lower()}] {message}"


def build_logging_config(level: str = LOG_LEVEL) -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "()": LowercaseLevelFormatter,
                "format": "%(message)s",
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": level, "propagate": False},
            "uvicorn.error": {"level": level},
            # per-request access lines are replaced by the --log option
            "uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": False},
        },
    }


def configure_logging(level: str = LOG_LEVEL) -> Dict[str, Any]:
    config = build_logging_config(level)
    logging.config.dictConfig(config)
    return config
