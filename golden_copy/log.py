import logging
from logging.config import dictConfig
from pathlib import Path

from pythonjsonlogger.json import JsonFormatter

from .config import LOG_FILE, data_dir


def configure_logging(level: str = "INFO", log_dir: Path | None = None) -> logging.Logger:
    """Install console and JSON-lines file handlers for the ``golden_copy`` logger."""
    level = level.upper()
    log_path = (log_dir or data_dir()) / LOG_FILE
    log_path.parent.mkdir(parents=True, exist_ok=True)

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JsonFormatter,
                "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
            "standard": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
        },
        "handlers": {
            "file": {
                "class": "logging.FileHandler",
                "filename": str(log_path),
                "formatter": "json",
                "level": level,
                "encoding": "utf-8",
            },
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": level,
            },
        },
        "loggers": {
            "golden_copy": {
                "handlers": ["file", "console"],
                "level": level,
                "propagate": False,
            },
        },
    }

    dictConfig(config)
    logger = logging.getLogger("golden_copy")
    logger.debug("Logging initialized (file: %s)", log_path)
    return logger
