"""
Importer blueprint endpoints: trigger partner imports, health and run history.
"""

from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request

from installhub.models import ImportProfile, db
from installhub.utils.importer import is_importer_enabled, is_importer_worker_enabled

from .celery_app import DEFAULT_QUEUE_NAME, PARTNER_IMPORT_TASK, get_celery_app
from .errors import ImportConfigError, ProfileNotFoundError
from .pipeline.run_service import ImportRequest, list_profile_runs, run_partner_import

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


def _ensure_importer_enabled_api():
    if not is_importer_enabled(current_app):
        return _json_error("Importer is disabled.", HTTPStatus.NOT_FOUND)
    return None


@importer_blueprint.get("/health")
def importer_healthcheck():
    """Lightweight health endpoint proving the importer blueprint mounted correctly."""
    importer_state = current_app.extensions.get("importer", {})
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": importer_state.get("enabled", False),
                "worker_enabled": importer_state.get("worker_enabled", False),
                "queue": DEFAULT_QUEUE_NAME,
                "max_workers": current_app.config.get("PARTNER_IMPORT_MAX_WORKERS"),
            }
        ),
        200,
    )


@importer_blueprint.post("/partner-import")
def trigger_partner_import():
    """
    Run a partner import for the profile named in the JSON body.

    ``runInBackground`` queues the run on the importer worker and answers 202
    with the task id instead of the summary.
    """
    disabled = _ensure_importer_enabled_api()
    if disabled is not None:
        return disabled

    payload = request.get_json(silent=True)
    try:
        import_request = ImportRequest.from_payload(payload, triggered_by=request.remote_addr or "http")
    except ImportConfigError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    if payload.get("runInBackground") or payload.get("run_in_background"):
        return _enqueue_partner_import(import_request)

    try:
        summary = run_partner_import(import_request)
    except ImportConfigError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    return jsonify({"summary": summary.as_dict()}), HTTPStatus.OK


def _enqueue_partner_import(import_request: ImportRequest):
    if not is_importer_worker_enabled(current_app):
        return _json_error("Background imports require IMPORTER_WORKER_ENABLED=true.", HTTPStatus.BAD_REQUEST)
    celery_app = get_celery_app(current_app)
    if celery_app is None:
        return _json_error("Importer worker is unavailable.", HTTPStatus.SERVICE_UNAVAILABLE)

    async_result = celery_app.send_task(
        PARTNER_IMPORT_TASK,
        kwargs={"payload": import_request.as_payload(), "triggered_by": import_request.triggered_by},
    )
    current_app.logger.info(
        "Partner import queued",
        extra={"importer_task_id": async_result.id, "importer_profile_id": import_request.profile_id},
    )
    return jsonify({"taskId": async_result.id, "status": "queued"}), HTTPStatus.ACCEPTED


@importer_blueprint.get("/profiles/<int:profile_id>/runs")
def profile_runs(profile_id: int):
    """Recent run ledger entries for an import profile, newest first."""
    disabled = _ensure_importer_enabled_api()
    if disabled is not None:
        return disabled

    if db.session.get(ImportProfile, profile_id) is None:
        return _json_error(str(ProfileNotFoundError(profile_id)), HTTPStatus.NOT_FOUND)

    limit = request.args.get("limit", type=int)
    runs = list_profile_runs(profile_id, limit=limit)
    return jsonify({"profileId": profile_id, "runs": [run.as_dict() for run in runs]}), HTTPStatus.OK
