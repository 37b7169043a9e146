from __future__ import annotations

import logging.config
from typing import Any

from .settings import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_logging_config(level: str | None = None, log_file: str | None = None) -> dict[str, Any]:
    level = (level or settings.log_level).upper()
    log_file = log_file if log_file is not None else settings.log_file

    handlers: dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": level,
            # docker-proxy's stdout is not ours to write to.
            "stream": "ext://sys.stderr",
        },
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": log_file,
            "formatter": "default",
            "level": level,
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": LOG_FORMAT}},
        "handlers": handlers,
        "root": {"handlers": list(handlers), "level": level},
    }


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    logging.config.dictConfig(build_logging_config(level, log_file))
