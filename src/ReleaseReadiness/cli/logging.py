"""Logging utilities for release readiness tooling."""

from __future__ import annotations

import logging
import logging.config
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "ReleaseReadiness"


def configure_logging(log_format: str = "text", verbose: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """Configure console (and optional file) logging for the ``ReleaseReadiness`` loggers."""

    formatter = "json" if log_format == "json" else "text"
    level = "DEBUG" if verbose else "INFO"
    handlers: dict[str, dict[str, object]] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": sys.stderr,
            "formatter": formatter,
            "level": level,
        }
    }
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": str(log_path),
            "mode": "a",
            "encoding": "utf-8",
            "formatter": formatter,
        }

    formatters = {
        "text": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": formatters,
            "handlers": handlers,
            "loggers": {
                LOGGER_NAME: {
                    "handlers": list(handlers.keys()),
                    "level": level,
                    "propagate": False,
                }
            },
        }
    )
    logger = logging.getLogger(LOGGER_NAME)
    logger.debug("Logging configured", extra={"log_format": log_format, "log_path": str(log_path or "")})
    return logger
