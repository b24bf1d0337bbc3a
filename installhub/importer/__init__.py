"""
Partner job importer.

``init_importer`` mounts the HTTP blueprint, the ``flask importer`` command
group and the Celery app when ``IMPORTER_ENABLED`` is set. With the flag off
only a stub command group is installed so ``flask importer`` explains why
nothing happens.
"""

from __future__ import annotations

from typing import Any

from flask import Flask

from installhub.utils.importer import is_importer_enabled, is_importer_worker_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .metrics import record_importer_enabled
from .pipeline.run_service import ImportRequest, run_partner_import
from .views import importer_blueprint

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "init_importer",
    "IMPORTER_EXTENSION_KEY",
    "ImportRequest",
    "get_celery_app",
    "run_partner_import",
]


def _importer_state(app: Flask) -> dict[str, Any]:
    state = app.extensions.get(IMPORTER_EXTENSION_KEY)
    if state is None:
        state = {"enabled": False, "worker_enabled": False, "celery_app": None}
        app.extensions[IMPORTER_EXTENSION_KEY] = state
    return state


def _install_command_group(app: Flask, group) -> None:
    # Replaces whichever importer group an earlier init call installed.
    app.cli.commands.pop(group.name, None)
    app.cli.add_command(group)


def _mount_blueprint(app: Flask) -> None:
    if importer_blueprint.name in app.blueprints:
        return
    if getattr(app, "_got_first_request", False):
        app.logger.warning("Importer blueprint not mounted: the app is already serving requests.")
        return
    app.register_blueprint(importer_blueprint)


def init_importer(app: Flask) -> None:
    """Wire the importer into ``app`` according to its feature flags."""
    enabled = is_importer_enabled(app)
    state = _importer_state(app)
    state["enabled"] = enabled
    state["worker_enabled"] = is_importer_worker_enabled(app)
    record_importer_enabled(enabled)

    if not enabled:
        _install_command_group(app, get_disabled_importer_group())
        app.logger.info("Partner importer disabled (IMPORTER_ENABLED is off)")
        return

    ensure_celery_app(app, state)
    _mount_blueprint(app)
    _install_command_group(app, importer_cli)
    app.logger.info(
        "Partner importer enabled",
        extra={
            "importer_worker_enabled": state["worker_enabled"],
            "importer_max_workers": app.config.get("PARTNER_IMPORT_MAX_WORKERS"),
        },
    )
