"""Feature flags gating the partner importer surfaces."""

from __future__ import annotations

from flask import Flask, current_app

IMPORTER_FLAG = "IMPORTER_ENABLED"
WORKER_FLAG = "IMPORTER_WORKER_ENABLED"


def _flag(name: str, app: Flask | None) -> bool:
    config = app.config if app is not None else current_app.config
    return bool(config.get(name, False))


def is_importer_enabled(app: Flask | None = None) -> bool:
    return _flag(IMPORTER_FLAG, app)


def is_importer_worker_enabled(app: Flask | None = None) -> bool:
    """Queued imports need both flags; inline runs only need ``IMPORTER_ENABLED``."""
    return is_importer_enabled(app) and _flag(WORKER_FLAG, app)
