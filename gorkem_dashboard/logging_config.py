"""Central logging configuration used by the API server and the Sheets storage modules."""

from __future__ import annotations

import logging
from datetime import datetime, timezone as dt_timezone
from logging.config import dictConfig
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# googleapiclient logs a warning per client build about the file cache.
QUIET_LOGGERS = ("googleapiclient.discovery_cache",)
# uvicorn runs with log_config=None, so its loggers only reach stdout through root.
SERVER_LOGGERS = ("uvicorn", "uvicorn.error")
ACCESS_LOGGER = "uvicorn.access"


class _TimezoneFormatter(logging.Formatter):
    """Formatter that applies an optional IANA timezone to timestamps."""

    def __init__(self, fmt: str, datefmt: Optional[str] = None, timezone: Optional[str] = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.tzinfo = ZoneInfo(timezone) if timezone else None

    def formatTime(self, record, datefmt=None):  # noqa: N802 - override signature
        dt = self._to_datetime(record.created, self.tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat()

    @staticmethod
    def _to_datetime(timestamp, tzinfo):
        base_dt = datetime.fromtimestamp(timestamp, tz=dt_timezone.utc)
        return base_dt.astimezone(tzinfo) if tzinfo else base_dt


def _logger_levels(normalized_level: int, access_log: bool) -> Dict[str, Dict[str, Any]]:
    levels: Dict[str, Dict[str, Any]] = {name: {"level": "ERROR"} for name in QUIET_LOGGERS}
    for name in SERVER_LOGGERS:
        levels[name] = {"level": normalized_level, "handlers": [], "propagate": True}
    levels[ACCESS_LOGGER] = {
        "level": normalized_level if access_log else logging.WARNING,
        "handlers": [],
        "propagate": True,
    }
    return levels


def configure_logging(
    log_level: str = "INFO", timezone: Optional[str] = None, access_log: bool = True
) -> None:
    """Configure consistent console logging for the API server and storage layer.

    This function is safe to call multiple times. It resets existing handlers to
    avoid duplicate output, configures a single stream handler with a
    timezone-aware formatter, and captures warnings so they appear in the same
    output stream. uvicorn's loggers are stripped of their own handlers and
    propagate to the same stream; ``access_log=False`` keeps per-request access
    lines out of it.
    """

    normalized_level = getattr(logging, log_level.upper(), logging.INFO)
    formatter_factory = {
        "()": _TimezoneFormatter,
        "fmt": DEFAULT_FORMAT,
        "datefmt": DEFAULT_DATE_FORMAT,
    }
    if timezone:
        formatter_factory["timezone"] = timezone

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"standard": formatter_factory},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": normalized_level,
                    "stream": "ext://sys.stdout",
                }
            },
            "loggers": _logger_levels(normalized_level, access_log),
            "root": {
                "handlers": ["console"],
                "level": normalized_level,
            },
        }
    )

    logging.captureWarnings(True)
