"""Structured logging configuration.

All loggers returned by :func:`get_logger` live under the ``bivalve_meta``
namespace and share one stdout handler attached to the package logger, so
the CLI can switch level or format for the whole run in one call.
"""

import logging
import json
import sys
from typing import Any, Dict, Optional

from ..config.settings import settings

PACKAGE_LOGGER = "bivalve_meta"


class JSONFormatter(logging.Formatter):
    """Format logs as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # values passed as ``extra={"context": {...}}``
        context = getattr(record, "context", None)
        if isinstance(context, dict):
            log_data.update(context)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def _make_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JSONFormatter()
    return logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> logging.Logger:
    """(Re)configure the package logger; defaults come from settings."""
    level = level or settings.log_level
    log_format = log_format or settings.log_format
    root = logging.getLogger(PACKAGE_LOGGER)
    if not root.handlers:
        root.addHandler(logging.StreamHandler(sys.stdout))
    for handler in root.handlers:
        handler.setFormatter(_make_formatter(log_format))
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    if not logging.getLogger(PACKAGE_LOGGER).handlers:
        configure_logging()
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
