"""
Logging setup shared by the CLI, the HTTP server and the sync job.

One dictConfig call installs a stdout handler on the root logger and,
when a log file is given, a size-rotated file handler next to it. The
HTTP client used for the remote archive logs every request at INFO, so
its loggers never go below WARNING.

Environment Variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (any case).
               Unset or unrecognised values mean INFO.
    PHONE_ARCHIVE_LOG_FILE: Optional log file, used when setup_logging()
               gets no explicit log_file.

Usage:
    from phone_archive.logger_config import setup_logging
    setup_logging()
    setup_logging(level=logging.DEBUG, log_file="/var/log/phone-archive.log")
"""

import logging
import logging.config
import os
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Rotation for the optional file handler
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Third-party loggers that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore")


def get_log_level() -> int:
    """Resolve LOG_LEVEL to a logging constant, INFO when unset or unknown."""
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def build_logging_config(level: int, log_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the dictConfig mapping.

    Args:
        level: Level for the root logger and every handler.
        log_file: Optional path for a rotating file handler.

    Returns:
        Mapping accepted by logging.config.dictConfig.
    """
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        },
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "standard",
            "filename": log_file,
            "maxBytes": LOG_FILE_MAX_BYTES,
            "backupCount": LOG_FILE_BACKUPS,
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"standard": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT}},
        "handlers": handlers,
        "loggers": {name: {"level": max(level, logging.WARNING)} for name in QUIET_LOGGERS},
        "root": {"level": level, "handlers": list(handlers)},
    }


def setup_logging(level: Optional[int] = None, log_file: Optional[str] = None) -> None:
    """
    Configure logging for the process.

    Calling it again replaces the previous handlers.

    Args:
        level: Logging level; defaults to LOG_LEVEL.
        log_file: Optional log file; defaults to PHONE_ARCHIVE_LOG_FILE.
    """
    if level is None:
        level = get_log_level()
    if log_file is None:
        log_file = os.getenv("PHONE_ARCHIVE_LOG_FILE") or None

    logging.config.dictConfig(build_logging_config(level, log_file))
