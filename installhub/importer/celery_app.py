"""
Celery wiring for background partner imports.

Without ``CELERY_BROKER_URL``/``CELERY_RESULT_BACKEND`` the worker talks to a
SQLite file in the Flask instance folder, which is enough for a single-host
deployment. Imports are long-running and write heavily, so each worker takes
one task at a time and acknowledges it only after the run finishes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "partner_imports"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
PARTNER_IMPORT_TASK = "importer.partner_import.run"
TASK_MODULES = ("installhub.importer.tasks",)


@dataclass(frozen=True)
class CeleryTransport:
    broker_url: str
    result_backend: str


def _sqlite_transport_file(app: Flask) -> Path:
    location = Path(app.config.get("CELERY_SQLITE_PATH") or DEFAULT_SQLITE_FILENAME)
    if not location.is_absolute():
        location = Path(app.instance_path) / location
    location.parent.mkdir(parents=True, exist_ok=True)
    return location


def resolve_transport(app: Flask) -> CeleryTransport:
    """Explicit URLs win; whichever is missing falls back to the instance SQLite file."""
    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if not (broker_url and result_backend):
        sqlite_file = _sqlite_transport_file(app).as_posix()
        broker_url = broker_url or f"sqla+sqlite:///{sqlite_file}"
        result_backend = result_backend or f"db+sqlite:///{sqlite_file}"
    return CeleryTransport(broker_url=broker_url, result_backend=result_backend)


def _config_overrides(app: Flask) -> dict[str, Any]:
    """``CELERY_CONFIG`` may be a mapping or a JSON object string."""
    raw: Mapping[str, Any] | str | None = app.config.get("CELERY_CONFIG")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            app.logger.warning("Ignoring CELERY_CONFIG: not valid JSON", exc_info=True)
            return {}
    if not isinstance(raw, Mapping):
        return {}
    return dict(raw)


def _worker_settings(app: Flask) -> dict[str, Any]:
    return {
        "task_default_queue": DEFAULT_QUEUE_NAME,
        "task_default_exchange": DEFAULT_QUEUE_NAME,
        "task_default_routing_key": DEFAULT_QUEUE_NAME,
        "task_queues": [Queue(DEFAULT_QUEUE_NAME)],
        "task_acks_late": True,
        "task_track_started": True,
        "worker_prefetch_multiplier": 1,
        "result_extended": True,
        "broker_connection_retry_on_startup": True,
        "task_time_limit": app.config.get("IMPORTER_TASK_TIME_LIMIT", 15 * 60),
        "task_soft_time_limit": app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT", 12 * 60),
        "worker_hijack_root_logger": False,
    }


def _bind_app_context(celery_app: Celery, app: Flask) -> None:
    base_task = celery_app.Task

    class FlaskContextTask(base_task):  # type: ignore[misc, valid-type]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]


def create_celery_app(app: Flask) -> Celery:
    """Build a Celery app whose tasks execute inside ``app``'s application context."""
    transport = resolve_transport(app)
    celery_app = Celery(
        app.import_name,
        broker=transport.broker_url,
        backend=transport.result_backend,
        include=TASK_MODULES,
    )
    celery_app.conf.update(_worker_settings(app))

    overrides = _config_overrides(app)
    if overrides:
        celery_app.conf.update(overrides)

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)

    _bind_app_context(celery_app, app)
    celery_app.loader.import_default_modules()

    app.logger.info(
        "Importer Celery app created",
        extra={
            "importer_celery_broker_url": transport.broker_url,
            "importer_celery_result_backend": transport.result_backend,
            "importer_celery_overrides": sorted(overrides),
        },
    )
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Create the Celery app once and cache it in the importer extension state."""
    if state.get("celery_app") is None:
        state["celery_app"] = create_celery_app(app)
    return state["celery_app"]


def get_celery_app(app: Flask) -> Celery | None:
    """Return the importer's Celery app, or ``None`` when the importer is not enabled."""
    state: dict[str, Any] | None = app.extensions.get("importer")
    if not state:
        return None
    if state.get("celery_app") is None and state.get("enabled"):
        return ensure_celery_app(app, state)
    return state.get("celery_app")
