"""
Per-row outcomes and the aggregate run summary returned to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from installhub.importer.errors import RowError

RowAction = Literal["inserted", "updated", "skipped", "error"]

ACTION_INSERTED: RowAction = "inserted"
ACTION_UPDATED: RowAction = "updated"
ACTION_SKIPPED: RowAction = "skipped"
ACTION_ERROR: RowAction = "error"


@dataclass(frozen=True)
class RowOutcome:
    """Classification of one reconciled row."""

    row_index: int
    action: RowAction
    message: str | None = None
    order_id: int | None = None
    changes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RowMessage:
    row_index: int
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {"rowIndex": self.row_index, "message": self.message}


@dataclass(frozen=True)
class RunSummary:
    """Final, immutable result of a partner import run."""

    processed: int
    inserted_count: int
    updated_count: int
    skipped_count: int
    errors: tuple[RowMessage, ...]
    warnings: tuple[RowMessage, ...] = ()
    run_id: str | None = None
    dry_run: bool = True
    partner_name: str = ""
    duration_ms: int = 0

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "insertedCount": self.inserted_count,
            "updatedCount": self.updated_count,
            "skippedCount": self.skipped_count,
            "errors": [entry.as_dict() for entry in self.errors],
            "warnings": [entry.as_dict() for entry in self.warnings],
            "runId": self.run_id,
            "dryRun": self.dry_run,
            "partnerName": self.partner_name,
            "durationMs": self.duration_ms,
        }


class SummaryBuilder:
    """
    Accumulate row outcomes and row-level failures into a ``RunSummary``.

    ``processed`` counts rows that reached reconciliation; parse and identifier
    failures only contribute to ``errors``.
    """

    def __init__(self) -> None:
        self.processed = 0
        self.inserted_count = 0
        self.updated_count = 0
        self.skipped_count = 0
        self._errors: list[RowMessage] = []
        self._warnings: list[RowMessage] = []
        self.outcomes: list[RowOutcome] = []

    def record_outcome(self, outcome: RowOutcome) -> None:
        self.processed += 1
        self.outcomes.append(outcome)
        if outcome.action == ACTION_INSERTED:
            self.inserted_count += 1
        elif outcome.action == ACTION_UPDATED:
            self.updated_count += 1
        elif outcome.action == ACTION_SKIPPED:
            self.skipped_count += 1
        else:
            self._errors.append(RowMessage(outcome.row_index, outcome.message or "unknown error"))

    def record_row_error(self, error: RowError) -> None:
        self._errors.append(RowMessage(error.row_index, error.message))

    def record_warning(self, row_index: int, message: str) -> None:
        self._warnings.append(RowMessage(row_index, message))

    def build(
        self,
        *,
        run_id: str | None,
        dry_run: bool,
        partner_name: str,
        duration_ms: int,
    ) -> RunSummary:
        return RunSummary(
            processed=self.processed,
            inserted_count=self.inserted_count,
            updated_count=self.updated_count,
            skipped_count=self.skipped_count,
            errors=tuple(sorted(self._errors, key=lambda entry: entry.row_index)),
            warnings=tuple(sorted(self._warnings, key=lambda entry: entry.row_index)),
            run_id=run_id,
            dry_run=dry_run,
            partner_name=partner_name,
            duration_ms=duration_ms,
        )
