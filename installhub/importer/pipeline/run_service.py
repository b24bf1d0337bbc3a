"""
Partner import orchestration.

``run_partner_import`` is the single entry point used by the HTTP view, the
CLI and the Celery task. Configuration and source failures raise an
``ImportConfigError`` before any row is processed; everything after that is
reported through the returned ``RunSummary``.
"""

from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from installhub.importer.adapters.csv_rows import PartnerCSVAdapter, SheetValuesAdapter, TabularRowAdapter
from installhub.importer.adapters.spreadsheet import GoogleSheetsClient
from installhub.importer.errors import ImportConfigError, MappingValidationError, RowError, RowParseError, SourceReadError
from installhub.importer.metrics import record_partner_import_run, record_row_outcome
from installhub.importer.profile import DEFAULT_IMPORT_STATUS, PartnerImportConfig, load_import_config
from installhub.models import ImportProfile, ImportRunStatus, ImportSourceType, PartnerImportRun, db

from .engineers import apply_engineer_resolution
from .mapper import CandidateRecord, map_row
from .reconcile import OrderReconciler
from .status import apply_status_translation
from .summary import RunSummary, SummaryBuilder

DEFAULT_MAX_WORKERS = 4
DEFAULT_RUN_HISTORY_LIMIT = 20

PreparedRow = CandidateRecord | RowParseError | MappingValidationError

_TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "f", "no", "n", "off"}


def _coerce_flag(value: Any, *, name: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    token = str(value).strip().lower()
    if token in _TRUE_VALUES:
        return True
    if token in _FALSE_VALUES:
        return False
    raise ImportConfigError(f"{name} must be true or false.")


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


@dataclass(frozen=True)
class ImportRequest:
    """Parameters for one partner import run."""

    profile_id: int
    dry_run: bool = True
    create_missing_orders: bool = True
    csv_data: str | None = None
    triggered_by: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None, *, triggered_by: str | None = None) -> "ImportRequest":
        """Build a request from a JSON body; camelCase and snake_case keys are both accepted."""

        if not isinstance(payload, Mapping):
            raise ImportConfigError("Request body must be a JSON object.")

        raw_profile_id = _first_present(payload, "profileId", "profile_id")
        if raw_profile_id is None or raw_profile_id == "":
            raise ImportConfigError("profileId is required.")
        if isinstance(raw_profile_id, bool):
            raise ImportConfigError("profileId must be an integer.")
        try:
            profile_id = int(raw_profile_id)
        except (TypeError, ValueError) as exc:
            raise ImportConfigError("profileId must be an integer.") from exc

        csv_data = _first_present(payload, "csvData", "csv_data")
        if csv_data is not None and not isinstance(csv_data, str):
            raise ImportConfigError("csvData must be a string.")

        return cls(
            profile_id=profile_id,
            dry_run=_coerce_flag(_first_present(payload, "dryRun", "dry_run"), name="dryRun", default=True),
            create_missing_orders=_coerce_flag(
                _first_present(payload, "createMissingOrders", "create_missing_orders"),
                name="createMissingOrders",
                default=True,
            ),
            csv_data=csv_data,
            triggered_by=triggered_by,
        )

    def as_payload(self) -> dict[str, Any]:
        return {
            "profileId": self.profile_id,
            "dryRun": self.dry_run,
            "createMissingOrders": self.create_missing_orders,
            "csvData": self.csv_data,
        }


def prepare_row(item: Any, config: PartnerImportConfig) -> PreparedRow:
    """Map, translate and resolve one source row. Pure; safe to run on worker threads."""

    if isinstance(item, RowParseError):
        return item
    mapped = map_row(item, config)
    if isinstance(mapped, MappingValidationError):
        return mapped
    apply_status_translation(mapped, config.status_mappings)
    apply_engineer_resolution(mapped, config.engineer_rules)
    return mapped


def prepare_rows(items: Sequence[Any], config: PartnerImportConfig, *, max_workers: int = DEFAULT_MAX_WORKERS) -> list[PreparedRow]:
    """Prepare rows concurrently; results keep source row order."""

    if max_workers <= 1 or len(items) < 2:
        return [prepare_row(item, config) for item in items]
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="partner-import") as executor:
        return list(executor.map(lambda item: prepare_row(item, config), items))


def _open_row_source(
    config: PartnerImportConfig,
    request: ImportRequest,
    spreadsheet_client: GoogleSheetsClient | None,
) -> TabularRowAdapter:
    if request.csv_data is not None:
        return PartnerCSVAdapter(request.csv_data)
    if config.source_type is ImportSourceType.SPREADSHEET and config.spreadsheet is not None:
        client = spreadsheet_client or GoogleSheetsClient.from_config(current_app.config)
        values = client.fetch_values(config.spreadsheet.spreadsheet_id, config.spreadsheet.sheet_name)
        return SheetValuesAdapter(values)
    raise SourceReadError("No data source available: provide csvData or link a spreadsheet to the profile.")


def _resolve_max_workers(max_workers: int | None) -> int:
    if max_workers is not None:
        return max(1, int(max_workers))
    configured = current_app.config.get("PARTNER_IMPORT_MAX_WORKERS", DEFAULT_MAX_WORKERS)
    try:
        return max(1, int(configured))
    except (TypeError, ValueError):
        return DEFAULT_MAX_WORKERS


def run_partner_import(
    request: ImportRequest,
    *,
    spreadsheet_client: GoogleSheetsClient | None = None,
    max_workers: int | None = None,
) -> RunSummary:
    """
    Execute a partner import and return its summary.

    Raises:
        ImportConfigError: the profile is missing, inactive or invalid, or the
            row source could not be read. Nothing is written in that case.
    """

    started = time.perf_counter()
    mode = "dry_run" if request.dry_run else "apply"
    logger = current_app.logger

    try:
        profile = db.session.get(ImportProfile, request.profile_id)
        config = load_import_config(
            profile,
            profile_id=request.profile_id,
            fallback_default_status=current_app.config.get("PARTNER_IMPORT_DEFAULT_STATUS") or DEFAULT_IMPORT_STATUS,
        )
        source = _open_row_source(config, request, spreadsheet_client)
        rows = list(source.iter_rows())
    except ImportConfigError as exc:
        record_partner_import_run(mode=mode, outcome="config_error", duration_seconds=time.perf_counter() - started)
        logger.warning(
            "Partner import aborted before row processing",
            extra={
                "importer_profile_id": request.profile_id,
                "importer_dry_run": request.dry_run,
                "importer_error": str(exc),
                "importer_error_type": type(exc).__name__,
            },
        )
        raise

    run = PartnerImportRun(
        run_uid=uuid.uuid4().hex,
        partner_id=config.partner_id,
        profile_id=config.profile_id,
        status=ImportRunStatus.RUNNING,
        dry_run=request.dry_run,
        create_missing_orders=request.create_missing_orders,
        source_type=config.source_type.value,
        started_at=datetime.now(timezone.utc),
        profile_checksum=config.checksum,
        triggered_by=request.triggered_by,
    )
    db.session.add(run)
    db.session.flush()
    run_uid = run.run_uid

    try:
        prepared = prepare_rows(rows, config, max_workers=_resolve_max_workers(max_workers))
        builder = SummaryBuilder()
        reconciler = OrderReconciler(
            config,
            partner_id=config.partner_id,
            run_uid=run_uid,
            dry_run=request.dry_run,
            create_missing_orders=request.create_missing_orders,
        )
        for item in prepared:
            if isinstance(item, RowError):
                builder.record_row_error(item)
                continue
            for issue in item.warnings():
                builder.record_warning(item.row_index, issue.message)
            outcome = reconciler.reconcile(item)
            builder.record_outcome(outcome)
            record_row_outcome(action=outcome.action, mode=mode)

        duration_seconds = time.perf_counter() - started
        summary = builder.build(
            run_id=run_uid,
            dry_run=request.dry_run,
            partner_name=config.partner_name,
            duration_ms=int(duration_seconds * 1000),
        )
        _finalize_run(run, summary)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        _record_failed_run(request, config, run_uid=run_uid, error=exc)
        record_partner_import_run(mode=mode, outcome="failed", duration_seconds=time.perf_counter() - started)
        logger.exception(
            "Partner import failed",
            extra={"importer_run_uid": run_uid, "importer_error": str(exc)},
        )
        raise

    outcome_label = "succeeded" if not summary.errors else "partially_failed"
    record_partner_import_run(mode=mode, outcome=outcome_label, duration_seconds=duration_seconds)
    logger.info(
        "Partner import completed",
        extra={
            "importer_run_uid": summary.run_id,
            "importer_profile_id": config.profile_id,
            "importer_partner": config.partner_name,
            "importer_dry_run": summary.dry_run,
            "importer_rows_processed": summary.processed,
            "importer_rows_inserted": summary.inserted_count,
            "importer_rows_updated": summary.updated_count,
            "importer_rows_skipped": summary.skipped_count,
            "importer_row_errors": summary.error_count,
            "importer_row_warnings": len(summary.warnings),
            "importer_source_rows_read": source.statistics.rows_read,
            "importer_source_rows_blank": source.statistics.rows_skipped_blank,
            "importer_source_rows_rejected": source.statistics.rows_rejected,
            "importer_duration_ms": summary.duration_ms,
        },
    )
    return summary


def _finalize_run(run: PartnerImportRun, summary: RunSummary) -> None:
    run.status = ImportRunStatus.SUCCEEDED if not summary.errors else ImportRunStatus.PARTIALLY_FAILED
    run.finished_at = datetime.now(timezone.utc)
    run.total_rows = summary.processed
    run.inserted_count = summary.inserted_count
    run.updated_count = summary.updated_count
    run.skipped_count = summary.skipped_count
    run.errors_json = [entry.as_dict() for entry in summary.errors]
    run.warnings_json = [entry.as_dict() for entry in summary.warnings]


def _record_failed_run(request: ImportRequest, config: PartnerImportConfig, *, run_uid: str, error: Exception) -> None:
    now = datetime.now(timezone.utc)
    failed = PartnerImportRun(
        run_uid=run_uid,
        partner_id=config.partner_id,
        profile_id=config.profile_id,
        status=ImportRunStatus.FAILED,
        dry_run=request.dry_run,
        create_missing_orders=request.create_missing_orders,
        source_type=config.source_type.value,
        started_at=now,
        finished_at=now,
        profile_checksum=config.checksum,
        triggered_by=request.triggered_by,
        errors_json=[{"rowIndex": None, "message": str(error)}],
    )
    try:
        db.session.add(failed)
        db.session.commit()
    except SQLAlchemyError:
        # The caller re-raises the original failure; this one is only logged.
        db.session.rollback()
        current_app.logger.exception(
            "Could not record failed partner import run",
            extra={"importer_run_uid": run_uid, "importer_error": str(error)},
        )


def list_profile_runs(profile_id: int, *, limit: int | None = None) -> list[PartnerImportRun]:
    """Return the most recent ledger entries for a profile, newest first."""

    if limit is None:
        limit = int(current_app.config.get("PARTNER_IMPORT_RUN_HISTORY_LIMIT", DEFAULT_RUN_HISTORY_LIMIT))
    return (
        db.session.query(PartnerImportRun)
        .filter(PartnerImportRun.profile_id == profile_id)
        .order_by(PartnerImportRun.started_at.desc(), PartnerImportRun.id.desc())
        .limit(max(1, limit))
        .all()
    )
