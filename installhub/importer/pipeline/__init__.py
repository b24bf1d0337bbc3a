"""Partner import pipeline stages."""

from __future__ import annotations

from .engineers import apply_engineer_resolution, resolve_engineer
from .mapper import CandidateRecord, ClientHints, FieldIssue, map_row, parse_amount, parse_scheduled_date
from .overrides import status_update_allowed
from .reconcile import OrderReconciler, OrderSnapshot, build_patch
from .run_service import ImportRequest, list_profile_runs, prepare_rows, run_partner_import
from .status import apply_status_translation, translate_status
from .summary import RowMessage, RowOutcome, RunSummary, SummaryBuilder

__all__ = [
    "CandidateRecord",
    "ClientHints",
    "FieldIssue",
    "ImportRequest",
    "OrderReconciler",
    "OrderSnapshot",
    "RowMessage",
    "RowOutcome",
    "RunSummary",
    "SummaryBuilder",
    "apply_engineer_resolution",
    "apply_status_translation",
    "build_patch",
    "list_profile_runs",
    "map_row",
    "parse_amount",
    "parse_scheduled_date",
    "prepare_rows",
    "resolve_engineer",
    "run_partner_import",
    "status_update_allowed",
    "translate_status",
]
