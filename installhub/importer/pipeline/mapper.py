"""
Translate header-keyed source rows into candidate order records.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from installhub.importer import contracts
from installhub.importer.adapters.csv_rows import RawRow
from installhub.importer.errors import MappingValidationError
from installhub.importer.profile import PartnerImportConfig
from installhub.models import OrderStatusEnhanced

ISSUE_WARNING = "warning"
ISSUE_INFO = "info"

_DAY_FIRST_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_FORMATS = ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S")
_AMOUNT_NOISE = re.compile(r"[£$€,\s]")
_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class FieldIssue:
    """Non-fatal problem with one field of a row."""

    field: str
    message: str
    severity: str = ISSUE_WARNING


@dataclass(frozen=True)
class ClientHints:
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    @property
    def usable(self) -> bool:
        return bool(self.name or self.email)


@dataclass
class CandidateRecord:
    """Mapped, typed view of one source row, prior to reconciliation."""

    row_index: int
    partner_external_id: str | None = None
    order_number: str | None = None
    client: ClientHints = field(default_factory=ClientHints)
    scheduled_date: date | None = None
    raw_status: str | None = None
    resolved_status: OrderStatusEnhanced | None = None
    engineer_hint: str | None = None
    resolved_engineer_id: int | None = None
    job_address: str | None = None
    postcode: str | None = None
    sub_partner: str | None = None
    total_amount: Decimal | None = None
    installation_notes: str | None = None
    issues: list[FieldIssue] = field(default_factory=list)

    @property
    def has_identifier(self) -> bool:
        return bool(self.partner_external_id or self.order_number)

    def add_issue(self, field_name: str, message: str, *, severity: str = ISSUE_WARNING) -> None:
        self.issues.append(FieldIssue(field=field_name, message=message, severity=severity))

    def warnings(self) -> list[FieldIssue]:
        return [issue for issue in self.issues if issue.severity == ISSUE_WARNING]


def parse_scheduled_date(value: str) -> date | None:
    """Parse DD/MM/YYYY first, then ISO dates and timestamps; ``None`` when unparseable."""

    token = value.strip()
    match = _DAY_FIRST_DATE.match(token)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None

    for fmt in _ISO_FORMATS:
        try:
            return datetime.strptime(token, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(token.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def parse_amount(value: str) -> Decimal | None:
    token = _AMOUNT_NOISE.sub("", value)
    if not token:
        return None
    try:
        amount = Decimal(token)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def _read_field(row: RawRow, config: PartnerImportConfig, target: str, record: CandidateRecord) -> str | None:
    column = config.source_column(target)
    if column is None:
        return None
    if not row.has_column(column):
        record.add_issue(target, f"column '{column}' not found for {target}")
        return None
    value = (row.get(column) or "").strip()
    return value or None


def map_row(row: RawRow, config: PartnerImportConfig) -> CandidateRecord | MappingValidationError:
    """
    Apply the profile's column mappings to ``row``.

    Returns a ``MappingValidationError`` instead of a record when the row has
    neither a partner external id nor an order number.
    """

    record = CandidateRecord(row_index=row.row_index)
    values: dict[str, Any] = {
        target: _read_field(row, config, target, record) for target in config.column_mappings
    }

    record.partner_external_id = values.get(contracts.PARTNER_EXTERNAL_ID)
    record.order_number = values.get(contracts.ORDER_NUMBER)
    if not record.has_identifier:
        return MappingValidationError(
            row.row_index,
            "no matching identifier: partner_external_id or order_number is required",
        )

    email = values.get(contracts.CLIENT_EMAIL)
    record.client = ClientHints(
        name=values.get(contracts.CLIENT_NAME),
        email=email.lower() if email else None,
        phone=values.get(contracts.CLIENT_PHONE),
    )
    record.raw_status = values.get(contracts.STATUS)
    record.engineer_hint = values.get(contracts.ENGINEER)
    record.job_address = values.get(contracts.JOB_ADDRESS)
    record.postcode = values.get(contracts.POSTCODE)
    record.sub_partner = values.get(contracts.SUB_PARTNER)
    record.installation_notes = values.get(contracts.INSTALLATION_NOTES)

    raw_date = values.get(contracts.SCHEDULED_DATE)
    if raw_date:
        record.scheduled_date = parse_scheduled_date(raw_date)
        if record.scheduled_date is None:
            record.add_issue(contracts.SCHEDULED_DATE, f"unparseable date: {raw_date}")

    raw_amount = values.get(contracts.TOTAL_AMOUNT)
    if raw_amount:
        record.total_amount = parse_amount(raw_amount)
        if record.total_amount is None:
            record.add_issue(contracts.TOTAL_AMOUNT, f"invalid amount: {raw_amount}")

    return record
