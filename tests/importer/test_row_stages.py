from datetime import date
from decimal import Decimal

import pytest

from installhub.importer.adapters import RawRow
from installhub.importer.errors import MappingValidationError
from installhub.importer.pipeline import (
    apply_engineer_resolution,
    apply_status_translation,
    map_row,
    parse_amount,
    parse_scheduled_date,
    resolve_engineer,
    status_update_allowed,
    translate_status,
)
from installhub.importer.pipeline.mapper import ISSUE_INFO
from installhub.importer.profile import EngineerRule, build_import_config
from installhub.models import OrderStatusEnhanced


def _config(**overrides):
    payload = {
        "name": "Weekly jobs",
        "column_mappings": {
            "externalId": "JobRef",
            "orderNumber": "Order",
            "status": "Status",
            "engineer": "Engineer",
            "scheduledDate": "Install Date",
            "clientName": "Customer",
            "clientEmail": "Email",
            "clientPhone": "Phone",
            "jobAddress": "Address",
            "postcode": "Postcode",
            "subPartner": "Account",
            "totalAmount": "Quote",
            "installationNotes": "Notes",
        },
        "status_mappings": {"Awaiting Install": "awaiting_install_booking", "BOOKED": "scheduled"},
        "engineer_mapping_rules": [
            {"partner_identifier": "Dave S", "engineer_id": 11},
            {"partner_identifier": "DAVE S", "engineer_id": 12},
            {"partner_identifier": "Priya", "engineer_id": 13},
        ],
        "status_override_rules": {"completed": True, "awaiting_install_booking": False},
    }
    payload.update(overrides)
    return build_import_config(payload)


def _row(row_index=1, **values):
    base = {
        "JobRef": "J-100",
        "Order": "",
        "Status": "BOOKED",
        "Engineer": "Dave S",
        "Install Date": "03/04/2025",
        "Customer": "Jane Doe",
        "Email": "Jane.Doe@Example.COM ",
        "Phone": "07700 900123",
        "Address": "1 High St",
        "Postcode": "LS1 1AA",
        "Account": "North",
        "Quote": "£1,250.5",
        "Notes": "  side gate  ",
    }
    base.update(values)
    return RawRow(row_index=row_index, values=base)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("03/04/2025", date(2025, 4, 3)),
        ("3/4/2025", date(2025, 4, 3)),
        ("2025-04-03", date(2025, 4, 3)),
        ("2025-04-03T09:30:00", date(2025, 4, 3)),
        ("2025-04-03T09:30:00Z", date(2025, 4, 3)),
        ("31/02/2025", None),
        ("next tuesday", None),
    ],
)
def test_parse_scheduled_date(raw, expected):
    assert parse_scheduled_date(raw) == expected


def test_parse_amount_strips_currency_noise():
    assert parse_amount("£1,250.5") == Decimal("1250.50")
    assert parse_amount("$ 99") == Decimal("99.00")
    assert parse_amount("12.345") == Decimal("12.35")
    assert parse_amount("about 10") is None
    assert parse_amount("NaN") is None


def test_map_row_populates_candidate_record():
    record = map_row(_row(), _config())

    assert record.row_index == 1
    assert record.partner_external_id == "J-100"
    assert record.order_number is None
    assert record.client.name == "Jane Doe"
    assert record.client.email == "jane.doe@example.com"
    assert record.client.phone == "07700 900123"
    assert record.scheduled_date == date(2025, 4, 3)
    assert record.raw_status == "BOOKED"
    assert record.engineer_hint == "Dave S"
    assert record.total_amount == Decimal("1250.50")
    assert record.installation_notes == "side gate"
    assert record.sub_partner == "North"
    assert record.issues == []


def test_map_row_records_field_issues_without_failing():
    record = map_row(_row(**{"Install Date": "soon", "Quote": "TBC"}), _config())

    assert record.scheduled_date is None
    assert record.total_amount is None
    assert [issue.message for issue in record.warnings()] == ["unparseable date: soon", "invalid amount: TBC"]


def test_map_row_reports_missing_columns():
    row = RawRow(row_index=2, values={"JobRef": "J-1", "Status": "BOOKED"})
    config = _config(column_mappings={"externalId": "JobRef", "status": "Status", "postcode": "Post Code"})

    record = map_row(row, config)

    assert record.postcode is None
    assert [issue.message for issue in record.issues] == ["column 'Post Code' not found for postcode"]


def test_map_row_without_identifier_is_a_validation_error():
    result = map_row(_row(row_index=5, JobRef=" ", Order=""), _config())

    assert isinstance(result, MappingValidationError)
    assert result.row_index == 5
    assert "no matching identifier" in result.message


def test_map_row_falls_back_to_order_number():
    record = map_row(_row(JobRef="", Order="ORD2024-0007"), _config())

    assert record.partner_external_id is None
    assert record.order_number == "ORD2024-0007"


def test_translate_status_is_exact_after_normalization():
    mappings = _config().status_mappings

    assert translate_status("  awaiting INSTALL ", mappings) is OrderStatusEnhanced.AWAITING_INSTALL_BOOKING
    assert translate_status("booked", mappings) is OrderStatusEnhanced.SCHEDULED
    assert translate_status("BOOKED!", mappings) is None
    assert translate_status("", mappings) is None


def test_unmapped_status_is_a_warning_and_empty_status_is_not():
    config = _config()
    unmapped = apply_status_translation(map_row(_row(Status="ON HOLD X"), config), config.status_mappings)
    empty = apply_status_translation(map_row(_row(Status=""), config), config.status_mappings)

    assert unmapped.resolved_status is None
    assert [issue.message for issue in unmapped.warnings()] == ["unmapped status: ON HOLD X"]
    assert empty.resolved_status is None
    assert empty.issues == []


def test_first_matching_engineer_rule_wins():
    rules = (
        EngineerRule("Dave S", 11),
        EngineerRule("dave s", 12),
        EngineerRule("Priya", 13),
    )

    assert resolve_engineer(" DAVE s", rules) == 11
    assert resolve_engineer("priya", rules) == 13
    assert resolve_engineer("Sam", rules) is None
    assert resolve_engineer(None, rules) is None


def test_unmatched_engineer_is_informational_only():
    config = _config()
    record = apply_engineer_resolution(map_row(_row(Engineer="Sam"), config), config.engineer_rules)

    assert record.resolved_engineer_id is None
    assert [(issue.message, issue.severity) for issue in record.issues] == [("no engineer mapping for: Sam", ISSUE_INFO)]
    assert record.warnings() == []


def test_status_update_allowed_respects_manual_override():
    config = _config()

    assert status_update_allowed(False, OrderStatusEnhanced.SCHEDULED, config) is True
    assert status_update_allowed(True, OrderStatusEnhanced.COMPLETED, config) is True
    assert status_update_allowed(True, OrderStatusEnhanced.AWAITING_INSTALL_BOOKING, config) is False
    assert status_update_allowed(True, OrderStatusEnhanced.SCHEDULED, config) is False
    assert status_update_allowed(False, None, config) is False
