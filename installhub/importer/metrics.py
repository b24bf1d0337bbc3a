"""Prometheus metrics helpers for the partner importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_importer_enabled_gauge = Gauge(
    "installhub_partner_importer_enabled",
    "Whether the partner importer is enabled (1) or disabled (0).",
)
_partner_import_runs = Counter(
    "installhub_partner_import_runs_total",
    "Partner import runs by mode and outcome.",
    ["mode", "outcome"],
)
_partner_import_rows = Counter(
    "installhub_partner_import_rows_total",
    "Reconciled partner import rows by mode and action.",
    ["mode", "action"],
)
_partner_import_duration = Histogram(
    "installhub_partner_import_duration_seconds",
    "Wall-clock duration of partner import runs in seconds.",
    ["mode"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)


def record_importer_enabled(enabled: bool) -> None:
    _importer_enabled_gauge.set(1 if enabled else 0)


def record_partner_import_run(
    *,
    mode: Literal["dry_run", "apply"],
    outcome: str,
    duration_seconds: float,
) -> None:
    """Count a finished (or aborted) run and observe its duration."""

    _partner_import_runs.labels(mode=mode, outcome=outcome).inc()
    _partner_import_duration.labels(mode=mode).observe(max(0.0, duration_seconds))


def record_row_outcome(*, action: str, mode: Literal["dry_run", "apply"]) -> None:
    _partner_import_rows.labels(mode=mode, action=action).inc()
