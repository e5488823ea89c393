"""Logging setup, applied by create_app() before anything else is built."""
import logging.config
import os
from pathlib import Path
from typing import Any, Dict, Optional

from infrapulse.core.config import Settings, settings as default_settings

CONSOLE_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# library loggers that drown the sampler and alert logs at INFO
QUIET_LOGGERS = {
    "sqlalchemy.engine": "WARNING",
    "aiosqlite": "WARNING",
    "apscheduler": "WARNING",
}

def build_logging_config(settings: Settings) -> Dict[str, Any]:
    """dictConfig for the console plus, when LOG_FILE is set, a rotating file"""
    # DEBUG=true wins over LOG_LEVEL
    level = "DEBUG" if os.getenv("DEBUG", "").lower() == "true" else settings.LOG_LEVEL.upper()

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "console",
            "stream": "ext://sys.stdout",
        },
    }
    if settings.LOG_FILE:
        Path(settings.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "file",
            "filename": settings.LOG_FILE,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf8",
        }
    handler_names = list(handlers)

    loggers: Dict[str, Dict[str, Any]] = {
        name: {"level": quiet_level, "handlers": handler_names, "propagate": False}
        for name, quiet_level in QUIET_LOGGERS.items()
    }
    loggers["uvicorn"] = {"level": "INFO", "handlers": handler_names, "propagate": False}
    loggers["infrapulse"] = {"level": level}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": CONSOLE_FORMAT, "datefmt": DATE_FORMAT},
            "file": {"format": FILE_FORMAT, "datefmt": DATE_FORMAT},
        },
        "handlers": handlers,
        "root": {"level": level, "handlers": handler_names},
        "loggers": loggers,
    }

def setup_logging(settings: Optional[Settings] = None):
    logging.config.dictConfig(build_logging_config(settings or default_settings))
