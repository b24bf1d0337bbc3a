"""
Structured logging for InstallHub.

``setup_logging`` wires console and rotating-file handlers onto the Flask
application logger and the ``installhub`` package logger. It is safe to call
more than once; handlers installed by a previous call are replaced.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from flask import Flask

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_HANDLER_MARKER = "_installhub_handler"

_RESERVED_LOG_RECORD_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "asctime",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields are carried through as keys."""

    def __init__(self, app_name: str | None = None, app_version: str | None = None):
        super().__init__()
        self.app_name = app_name
        self.app_version = app_version

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.app_name:
            payload["app"] = self.app_name
        if self.app_version:
            payload["version"] = self.app_version
        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_RECORD_FIELDS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def _build_formatter(app: Flask) -> logging.Formatter:
    if str(app.config.get("LOG_FORMAT", "json")).lower() == "json":
        return JSONFormatter(app.config.get("APP_NAME"), app.config.get("APP_VERSION"))
    return logging.Formatter(TEXT_FORMAT)


def _resolve_level(value) -> int:
    level_name = str(value or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    return level if isinstance(level, int) else logging.INFO


def _remove_managed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def _build_handlers(app: Flask, level: int) -> list[logging.Handler]:
    formatter = _build_formatter(app)
    handlers: list[logging.Handler] = []

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console = logging.StreamHandler(stream=sys.stdout)
        handlers.append(console)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, app.config.get("LOG_FILE_NAME", "installhub.log")),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
    return handlers


def setup_logging(app: Flask) -> None:
    """Configure application and package loggers from ``LOG_*`` settings."""
    level = _resolve_level(app.config.get("LOG_LEVEL"))
    handlers = _build_handlers(app, level)

    package_logger = logging.getLogger("installhub")
    for logger in (app.logger, package_logger):
        _remove_managed_handlers(logger)
        for handler in handlers:
            logger.addHandler(handler)
        logger.setLevel(level)
    package_logger.propagate = False

    app.logger.debug(
        "Logging configured",
        extra={
            "log_format": app.config.get("LOG_FORMAT"),
            "file_logging": bool(app.config.get("ENABLE_FILE_LOGGING")),
            "console_logging": bool(app.config.get("ENABLE_CONSOLE_LOGGING")),
        },
    )
