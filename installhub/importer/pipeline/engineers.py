"""Engineer resolution against a profile's ordered mapping rules."""

from __future__ import annotations

from typing import Sequence

from installhub.importer import contracts
from installhub.importer.profile import EngineerRule, normalize_match_text

from .mapper import ISSUE_INFO, CandidateRecord


def resolve_engineer(hint: str | None, rules: Sequence[EngineerRule]) -> int | None:
    """
    Return the engineer id of the first rule matching ``hint``.

    Rules are scanned in configuration order; a later rule for the same
    identifier never wins.
    """

    key = normalize_match_text(hint)
    if not key:
        return None
    for rule in rules:
        if rule.match_key == key:
            return rule.engineer_id
    return None


def apply_engineer_resolution(record: CandidateRecord, rules: Sequence[EngineerRule]) -> CandidateRecord:
    record.resolved_engineer_id = resolve_engineer(record.engineer_hint, rules)
    if record.resolved_engineer_id is None and record.engineer_hint:
        record.add_issue(
            contracts.ENGINEER,
            f"no engineer mapping for: {record.engineer_hint}",
            severity=ISSUE_INFO,
        )
    return record
