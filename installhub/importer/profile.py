"""Loading and validating partner import profiles.

Profiles are stored as free-form JSON by the configuration screens. Before a
run touches any row the stored payload is validated against a fixed schema and
turned into an immutable ``PartnerImportConfig``; invalid profiles are rejected
here instead of surfacing as odd per-row behaviour later.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml
from sqlalchemy import func

from installhub.models import Engineer, ImportProfile, ImportSourceType, OrderStatusEnhanced, Partner, db

from .contracts import ORDER_NUMBER, PARTNER_EXTERNAL_ID, resolve_target
from .errors import ProfileNotFoundError, ProfileValidationError

DEFAULT_IMPORT_STATUS = OrderStatusEnhanced.AWAITING_INSTALL_BOOKING

_SOURCE_TYPE_ALIASES = {
    "csv": ImportSourceType.CSV,
    "spreadsheet": ImportSourceType.SPREADSHEET,
    "gsheet": ImportSourceType.SPREADSHEET,
    "google_sheets": ImportSourceType.SPREADSHEET,
}


def normalize_match_text(value: object | None) -> str:
    """Trim and case-fold free text before exact-match lookups."""

    if value is None:
        return ""
    return str(value).strip().casefold()


@dataclass(frozen=True)
class EngineerRule:
    partner_identifier: str
    engineer_id: int

    @property
    def match_key(self) -> str:
        return normalize_match_text(self.partner_identifier)


@dataclass(frozen=True)
class SpreadsheetRef:
    spreadsheet_id: str
    sheet_name: str


@dataclass(frozen=True)
class PartnerImportConfig:
    """Validated, immutable view of an import profile used for one run."""

    name: str
    source_type: ImportSourceType
    column_mappings: Mapping[str, str]
    status_mappings: Mapping[str, OrderStatusEnhanced]
    engineer_rules: tuple[EngineerRule, ...]
    status_override_rules: Mapping[OrderStatusEnhanced, bool]
    default_status: OrderStatusEnhanced
    checksum: str
    profile_id: int | None = None
    partner_id: int | None = None
    partner_name: str = ""
    spreadsheet: SpreadsheetRef | None = None

    def source_column(self, target: str) -> str | None:
        return self.column_mappings.get(target)

    def override_allows(self, status: OrderStatusEnhanced) -> bool:
        return self.status_override_rules.get(status) is True


@dataclass
class ProfileDocument:
    """A profile definition read from YAML, prior to persistence."""

    partner_slug: str
    name: str
    payload: dict[str, Any]
    engineer_emails: list[tuple[str, str]] = field(default_factory=list)
    path: Path | None = None


def _coerce_status(value: Any, *, context: str, problems: list[str]) -> OrderStatusEnhanced | None:
    try:
        return OrderStatusEnhanced.parse(value)
    except ValueError:
        problems.append(f"{context} references unknown status {value!r}.")
        return None


def _validate_column_mappings(raw: Any, problems: list[str]) -> dict[str, str]:
    if not isinstance(raw, Mapping):
        problems.append("column_mappings must be an object of target field to source column.")
        return {}

    resolved: dict[str, str] = {}
    for key, column in raw.items():
        target = resolve_target(str(key))
        if target is None:
            problems.append(f"column_mappings has unknown target field {key!r}.")
            continue
        if not isinstance(column, str) or not column.strip():
            problems.append(f"column_mappings[{key!r}] must name a source column.")
            continue
        if target in resolved:
            problems.append(f"column_mappings maps target '{target}' more than once.")
            continue
        resolved[target] = column.strip()

    if raw and PARTNER_EXTERNAL_ID not in resolved and ORDER_NUMBER not in resolved:
        problems.append("column_mappings must map partner_external_id or order_number so rows can be matched.")
    elif not raw:
        problems.append("column_mappings cannot be empty.")
    return resolved


def _validate_status_mappings(raw: Any, problems: list[str]) -> dict[str, OrderStatusEnhanced]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        problems.append("status_mappings must be an object of partner status to internal status.")
        return {}

    resolved: dict[str, OrderStatusEnhanced] = {}
    for partner_text, internal in raw.items():
        key = normalize_match_text(partner_text)
        if not key:
            problems.append("status_mappings contains an empty partner status.")
            continue
        status = _coerce_status(internal, context=f"status_mappings[{partner_text!r}]", problems=problems)
        if status is None:
            continue
        existing = resolved.get(key)
        if existing is not None and existing != status:
            problems.append(
                f"status_mappings maps {partner_text!r} to both '{existing.value}' and '{status.value}'."
            )
            continue
        resolved[key] = status
    return resolved


def _validate_engineer_rules(raw: Any, problems: list[str]) -> tuple[EngineerRule, ...]:
    if raw is None:
        return ()
    if isinstance(raw, Mapping):
        # Older profiles stored {identifier: engineer_id}; insertion order is the rule order.
        raw = [{"partner_identifier": key, "engineer_id": value} for key, value in raw.items()]
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        problems.append("engineer_mapping_rules must be a list of rules.")
        return ()

    rules: list[EngineerRule] = []
    for position, entry in enumerate(raw, start=1):
        if not isinstance(entry, Mapping):
            problems.append(f"engineer_mapping_rules[{position}] must be an object, got {entry!r}.")
            continue
        identifier = entry.get("partner_identifier")
        if not isinstance(identifier, str) or not identifier.strip():
            problems.append(f"engineer_mapping_rules[{position}] is missing partner_identifier.")
            continue
        engineer_id = entry.get("engineer_id")
        if isinstance(engineer_id, bool):
            engineer_id = None
        try:
            engineer_id = int(engineer_id)
        except (TypeError, ValueError):
            problems.append(f"engineer_mapping_rules[{position}] has invalid engineer_id {entry.get('engineer_id')!r}.")
            continue
        rules.append(EngineerRule(partner_identifier=identifier.strip(), engineer_id=engineer_id))
    return tuple(rules)


def _validate_override_rules(raw: Any, problems: list[str]) -> dict[OrderStatusEnhanced, bool]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        problems.append("status_override_rules must be an object of internal status to true/false.")
        return {}

    resolved: dict[OrderStatusEnhanced, bool] = {}
    for key, allowed in raw.items():
        status = _coerce_status(key, context="status_override_rules", problems=problems)
        if status is None:
            continue
        if not isinstance(allowed, bool):
            problems.append(f"status_override_rules[{key!r}] must be true or false.")
            continue
        resolved[status] = allowed
    return resolved


def _compute_checksum(payload: Mapping[str, Any]) -> str:
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def build_import_config(
    payload: Mapping[str, Any],
    *,
    profile_id: int | None = None,
    partner_id: int | None = None,
    partner_name: str = "",
    fallback_default_status: OrderStatusEnhanced | str = DEFAULT_IMPORT_STATUS,
) -> PartnerImportConfig:
    """
    Validate a raw profile payload and return the typed configuration.

    Every problem found is collected and raised together as a
    ``ProfileValidationError``.
    """

    problems: list[str] = []

    name = str(payload.get("name") or "").strip() or "unnamed profile"
    raw_source = normalize_match_text(payload.get("source_type") or "csv")
    source_type = _SOURCE_TYPE_ALIASES.get(raw_source)
    if source_type is None:
        problems.append(f"source_type {payload.get('source_type')!r} is not one of csv, spreadsheet.")

    spreadsheet = None
    if source_type is ImportSourceType.SPREADSHEET:
        sheet_id = str(payload.get("gsheet_id") or "").strip()
        sheet_name = str(payload.get("gsheet_sheet_name") or "").strip()
        if not sheet_id or not sheet_name:
            problems.append("spreadsheet profiles require gsheet_id and gsheet_sheet_name.")
        else:
            spreadsheet = SpreadsheetRef(spreadsheet_id=sheet_id, sheet_name=sheet_name)

    column_mappings = _validate_column_mappings(payload.get("column_mappings"), problems)
    status_mappings = _validate_status_mappings(payload.get("status_mappings"), problems)
    engineer_rules = _validate_engineer_rules(payload.get("engineer_mapping_rules"), problems)
    override_rules = _validate_override_rules(payload.get("status_override_rules"), problems)

    raw_default = payload.get("default_status") or fallback_default_status
    default_status = _coerce_status(raw_default, context="default_status", problems=problems)

    if problems:
        raise ProfileValidationError(problems)

    return PartnerImportConfig(
        name=name,
        source_type=source_type,
        column_mappings=column_mappings,
        status_mappings=status_mappings,
        engineer_rules=engineer_rules,
        status_override_rules=override_rules,
        default_status=default_status,
        checksum=_compute_checksum(payload),
        profile_id=profile_id,
        partner_id=partner_id,
        partner_name=partner_name,
        spreadsheet=spreadsheet,
    )


def profile_payload(profile: ImportProfile) -> dict[str, Any]:
    return {
        "name": profile.name,
        "source_type": profile.source_type,
        "gsheet_id": profile.gsheet_id,
        "gsheet_sheet_name": profile.gsheet_sheet_name,
        "column_mappings": profile.column_mappings or {},
        "status_mappings": profile.status_mappings or {},
        "engineer_mapping_rules": profile.engineer_mapping_rules or [],
        "status_override_rules": profile.status_override_rules or {},
        "default_status": profile.default_status,
    }


def _ensure_engineers_exist(config: PartnerImportConfig) -> None:
    """Reject rules pointing at engineers that do not exist, in one query."""

    wanted = {rule.engineer_id for rule in config.engineer_rules}
    if not wanted:
        return
    found = set(db.session.scalars(db.select(Engineer.id).where(Engineer.id.in_(wanted))))
    problems = [
        f"engineer_mapping_rules['{rule.partner_identifier}'] references unknown engineer_id {rule.engineer_id}."
        for rule in config.engineer_rules
        if rule.engineer_id not in found
    ]
    if problems:
        raise ProfileValidationError(problems)


def load_import_config(
    profile: ImportProfile | None,
    *,
    profile_id: object = None,
    fallback_default_status: OrderStatusEnhanced | str = DEFAULT_IMPORT_STATUS,
) -> PartnerImportConfig:
    """Turn a stored profile row into a ``PartnerImportConfig`` or raise an ``ImportConfigError``."""

    if profile is None or not profile.is_active:
        raise ProfileNotFoundError(profile_id if profile is None else profile.id)
    partner = profile.partner
    config = build_import_config(
        profile_payload(profile),
        profile_id=profile.id,
        partner_id=profile.partner_id,
        partner_name=partner.name if partner is not None else "",
        fallback_default_status=fallback_default_status,
    )
    _ensure_engineers_exist(config)
    return config


def load_profile_document(path: str | Path) -> ProfileDocument:
    """
    Load a YAML profile definition.

    Engineer rules may name an ``engineer_email`` instead of an ``engineer_id``;
    those are returned separately for the caller to resolve against the
    engineers table before saving.
    """

    path = Path(path)
    if not path.exists():
        raise ProfileValidationError([f"Profile file not found at {path}."])

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - YAML parser errors
        raise ProfileValidationError([f"Failed to parse profile YAML at {path}: {exc}"]) from exc

    if not isinstance(raw, Mapping):
        raise ProfileValidationError([f"Profile document at {path} must be a mapping."])

    partner_slug = str(raw.get("partner") or "").strip()
    name = str(raw.get("name") or "").strip()
    problems = []
    if not partner_slug:
        problems.append("Profile document is missing 'partner'.")
    if not name:
        problems.append("Profile document is missing 'name'.")

    spreadsheet = raw.get("spreadsheet") or {}
    rules: list[dict[str, Any]] = []
    engineer_emails: list[tuple[str, str]] = []
    for entry in raw.get("engineer_mapping_rules") or []:
        if isinstance(entry, Mapping) and entry.get("engineer_email") and entry.get("engineer_id") is None:
            engineer_emails.append((str(entry.get("partner_identifier") or ""), str(entry["engineer_email"])))
            rules.append({"partner_identifier": entry.get("partner_identifier"), "engineer_email": entry["engineer_email"]})
        else:
            rules.append(entry)

    if problems:
        raise ProfileValidationError(problems)

    payload = {
        "name": name,
        "source_type": raw.get("source_type", "csv"),
        "gsheet_id": spreadsheet.get("id") if isinstance(spreadsheet, Mapping) else None,
        "gsheet_sheet_name": spreadsheet.get("sheet") if isinstance(spreadsheet, Mapping) else None,
        "column_mappings": raw.get("column_mappings") or {},
        "status_mappings": raw.get("status_mappings") or {},
        "engineer_mapping_rules": rules,
        "status_override_rules": raw.get("status_override_rules") or {},
        "default_status": raw.get("default_status"),
        "is_active": bool(raw.get("is_active", True)),
    }
    return ProfileDocument(
        partner_slug=partner_slug,
        name=name,
        payload=payload,
        engineer_emails=engineer_emails,
        path=path,
    )


def _resolve_engineer_emails(payload: dict[str, Any]) -> dict[str, Any]:
    problems = []
    resolved_rules = []
    for entry in payload.get("engineer_mapping_rules") or []:
        email = entry.get("engineer_email") if isinstance(entry, Mapping) else None
        if not email:
            resolved_rules.append(entry)
            continue
        engineer = Engineer.query.filter(func.lower(Engineer.email) == str(email).strip().lower()).first()
        if engineer is None:
            problems.append(f"engineer_mapping_rules references unknown engineer '{email}'.")
            continue
        resolved_rules.append({"partner_identifier": entry.get("partner_identifier"), "engineer_id": engineer.id})
    if problems:
        raise ProfileValidationError(problems)
    return {**payload, "engineer_mapping_rules": resolved_rules}


def validate_profile_document(document: ProfileDocument) -> tuple[Partner, dict[str, Any], PartnerImportConfig]:
    """
    Resolve a profile document against the database and validate it.

    Returns the partner, the payload with engineer emails replaced by ids and
    the resulting configuration. Nothing is written.
    """

    partner = Partner.find_by_slug(document.partner_slug)
    if partner is None:
        raise ProfileValidationError([f"Unknown partner '{document.partner_slug}'."])

    payload = dict(document.payload)
    if document.engineer_emails:
        payload = _resolve_engineer_emails(payload)

    config = build_import_config(payload, partner_id=partner.id, partner_name=partner.name)
    _ensure_engineers_exist(config)
    return partner, payload, config


def upsert_profile(document: ProfileDocument) -> ImportProfile:
    """
    Validate a profile document and create or update the stored profile.

    Profiles are keyed by ``(partner, name)``. The caller owns the commit.
    """

    partner, payload, config = validate_profile_document(document)

    profile = ImportProfile.query.filter_by(partner_id=partner.id, name=document.name).first()
    if profile is None:
        profile = ImportProfile(partner_id=partner.id, name=document.name)
        db.session.add(profile)

    profile.source_type = config.source_type.value
    profile.gsheet_id = config.spreadsheet.spreadsheet_id if config.spreadsheet else None
    profile.gsheet_sheet_name = config.spreadsheet.sheet_name if config.spreadsheet else None
    profile.column_mappings = dict(payload.get("column_mappings") or {})
    profile.status_mappings = dict(payload.get("status_mappings") or {})
    profile.engineer_mapping_rules = [
        {"partner_identifier": rule.partner_identifier, "engineer_id": rule.engineer_id}
        for rule in config.engineer_rules
    ]
    profile.status_override_rules = dict(payload.get("status_override_rules") or {})
    profile.default_status = config.default_status.value if payload.get("default_status") else None
    profile.is_active = bool(payload.get("is_active", True))
    db.session.flush()
    return profile
