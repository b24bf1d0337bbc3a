"""
Importer Celery tasks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from installhub.importer.celery_app import PARTNER_IMPORT_TASK
from installhub.importer.pipeline.run_service import ImportRequest, run_partner_import


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """Heartbeat task used by ``flask importer worker ping``."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name=PARTNER_IMPORT_TASK, bind=True)
def run_partner_import_task(self, *, payload: dict[str, Any], triggered_by: str | None = None) -> dict[str, Any]:
    """
    Execute a partner import on the worker and return the camelCase summary.

    ``payload`` uses the same keys as the HTTP request body.
    """

    request = ImportRequest.from_payload(payload, triggered_by=triggered_by or f"celery:{self.request.id}")
    summary = run_partner_import(request)
    current_app.logger.info(
        "Partner import task finished",
        extra={
            "importer_task_id": self.request.id,
            "importer_run_uid": summary.run_id,
            "importer_dry_run": summary.dry_run,
        },
    )
    return summary.as_dict()
