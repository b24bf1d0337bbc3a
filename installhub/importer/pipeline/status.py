"""Partner status text to internal status translation."""

from __future__ import annotations

from typing import Mapping

from installhub.importer import contracts
from installhub.importer.profile import normalize_match_text
from installhub.models import OrderStatusEnhanced

from .mapper import CandidateRecord


def translate_status(
    raw_status: str | None,
    status_mappings: Mapping[str, OrderStatusEnhanced],
) -> OrderStatusEnhanced | None:
    """Exact (trimmed, case-folded) lookup; no fuzzy matching."""

    key = normalize_match_text(raw_status)
    if not key:
        return None
    return status_mappings.get(key)


def apply_status_translation(
    record: CandidateRecord,
    status_mappings: Mapping[str, OrderStatusEnhanced],
) -> CandidateRecord:
    record.resolved_status = translate_status(record.raw_status, status_mappings)
    if record.resolved_status is None and record.raw_status:
        record.add_issue(contracts.STATUS, f"unmapped status: {record.raw_status}")
    return record
