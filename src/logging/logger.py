# src/logging/logger.py — v1
"""Logging setup for the docdedup logger tree.

Every record passing through a docdedup handler is stamped with the
current check context (tenant, stage, file, extraction) by CheckContextFilter.
Detectors attach verdict details as ``extra={"data": {...}}``; the JSON
formatter emits them under "data", the text formatter appends them as
key=value pairs.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from docdedup.logging.context import get_context

if TYPE_CHECKING:
    from docdedup.config.settings import Settings

ROOT_LOGGER = "docdedup"
_CONTEXT_FIELDS = ("tenant_id", "stage", "file_id", "extraction_id")


class CheckContextFilter(logging.Filter):
    """Copy the active check context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_context()
        for name in _CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, getattr(ctx, name))
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, context fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name, value in _context_of(record).items():
            entry[name] = value

        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line human-readable output for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        ctx = _context_of(record)
        line = f"{stamp:%Y-%m-%d %H:%M:%S} {record.levelname:<7} {record.name}"
        if "tenant_id" in ctx:
            line += f" [tenant={ctx['tenant_id']}]"
        if "stage" in ctx:
            line += f" ({ctx['stage']})"
        line += f": {record.getMessage()}"

        data = getattr(record, "data", None)
        if data:
            line += " " + " ".join(f"{k}={v}" for k, v in data.items())
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def get_logger(name: str) -> logging.Logger:
    """Logger under the docdedup tree. Configuration is applied by setup_logging()."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> logging.Logger:
    """(Re)configure the docdedup root logger and return it.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.
        log_format: "json" or "text".
        log_file: Optional path of a rotating log file, in addition to stdout.
        rotation: Size at which the log file rotates, e.g. "10MB".
        retention: Rotated files kept next to the active one.
    """
    if log_format not in ("json", "text"):
        raise ValueError(f"Unknown log format {log_format!r}")
    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        from docdedup.logging.handlers import create_rotating_handler

        handlers.append(
            create_rotating_handler(log_file, rotation=rotation, retention=retention)
        )
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(CheckContextFilter())
        root.addHandler(handler)
    return root


def setup_logging_from_settings(settings: Settings) -> logging.Logger:
    """Apply the LOG_* settings."""
    return setup_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    """Context fields set on *record*, falling back to the live context."""
    live = get_context()
    out = {}
    for name in _CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is None:
            value = getattr(live, name)
        if value is not None:
            out[name] = value
    return out
