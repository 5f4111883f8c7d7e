"""Logging utilities for Knowledge Hub.

Structured fields travel through ``extra`` under ``ctx_`` names (see
``log_context``). The JSON formatter nests them under ``context``; the plain
formatter appends them as ``key=value`` pairs.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("KH_LOG_LEVEL", "INFO")
_CONTEXT_PREFIX = "ctx_"


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key[len(_CONTEXT_PREFIX) :]: value
        for key, value in record.__dict__.items()
        if key.startswith(_CONTEXT_PREFIX)
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line; worker thread names identify the queue lane."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        context = _context_of(record)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


class PlainFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context_of(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{line} | {pairs}"


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Install a single stdout handler on the root logger."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if use_json else PlainFormatter())
    root.handlers = [handler]


def get_logger(name: str = "knowledge_hub") -> logging.Logger:
    """Return a named logger, configuring the root logger on first use."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


def log_context(**fields: Any) -> dict[str, Any]:
    """``extra`` mapping for structured fields; ``None`` values are dropped."""
    return {f"{_CONTEXT_PREFIX}{key}": value for key, value in fields.items() if value is not None}


__all__ = ["configure_logging", "get_logger", "log_context", "JsonFormatter", "PlainFormatter"]
