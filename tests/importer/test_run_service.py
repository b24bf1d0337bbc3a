import logging
from unittest.mock import Mock

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from installhub.importer.adapters import CSVHeaderError, RawRow
from installhub.importer.errors import ImportConfigError, ProfileNotFoundError, ProfileValidationError, SourceReadError
from installhub.importer.pipeline import ImportRequest, OrderReconciler, list_profile_runs, prepare_rows, run_partner_import
from installhub.importer.pipeline.mapper import CandidateRecord
from installhub.importer.profile import load_import_config
from installhub.models import Client, ImportRunStatus, Order, OrderStatusEnhanced, PartnerImportRun, db

SCENARIO_CSV = "JobRef,Status\nJ-100,AWAITING INSTALL\n"

FULL_PROFILE = {
    "name": "Full layout",
    "column_mappings": {
        "externalId": "JobRef",
        "status": "Status",
        "engineer": "Engineer",
        "scheduledDate": "Install Date",
        "clientName": "Customer",
        "clientEmail": "Email",
        "postcode": "Postcode",
        "totalAmount": "Quote",
    },
    "status_mappings": {"AWAITING INSTALL": "awaiting_install_booking", "BOOKED": "scheduled"},
}

FULL_CSV = (
    "JobRef,Status,Engineer,Install Date,Customer,Email,Postcode,Quote\n"
    "J-1,BOOKED,Dave S,03/04/2025,Jane Doe,jane@example.com,LS1 1AA,£1250\n"
    "J-2,AWAITING INSTALL,,,Sam Roe,SAM@example.com,LS2 2BB,\n"
    "J-1,BOOKED,Dave S,03/04/2025,Jane Doe,jane@example.com,LS1 1AA,£1250\n"
    "J-3,ON HOLD X,Nobody,31/02/2025,,,LS3 3CC,TBC\n"
    ",BOOKED,,,,,,\n"
    "J-4,BOOKED,Dave S\n"
    "J-1,BOOKED,Dave S,04/04/2025,Jane Doe,jane@example.com,LS1 1AA,£1250\n"
)


def _run(profile, csv_data=SCENARIO_CSV, **kwargs):
    return run_partner_import(ImportRequest(profile_id=profile.id, csv_data=csv_data, **kwargs))


def _counts(summary):
    return (summary.processed, summary.inserted_count, summary.updated_count, summary.skipped_count)


def test_scenario_a_inserts_missing_order(profile):
    summary = _run(profile, dry_run=False)

    assert _counts(summary) == (1, 1, 0, 0)
    assert summary.errors == ()
    order = Order.query.filter_by(partner_external_id="J-100").one()
    assert order.status_enhanced is OrderStatusEnhanced.AWAITING_INSTALL_BOOKING
    assert order.partner_status == "AWAITING INSTALL"


def test_scenario_b_manual_override_keeps_status(profile_factory, order_factory):
    profile = profile_factory(name="Protected", status_override_rules={"awaiting_install_booking": False})
    existing = order_factory(
        partner_external_id="J-100",
        status=OrderStatusEnhanced.SCHEDULED,
        manual_status_override=True,
    )

    first = _run(profile, dry_run=False)
    second = _run(profile, dry_run=False)

    assert _counts(first) == (1, 0, 1, 0)
    assert _counts(second) == (1, 0, 0, 1)
    order = db.session.get(Order, existing.id)
    assert order.status_enhanced is OrderStatusEnhanced.SCHEDULED
    assert order.partner_status == "AWAITING INSTALL"
    assert order.manual_status_override is True


def test_scenario_c_column_mismatch_is_reported_not_processed(profile):
    summary = _run(profile, csv_data="JobRef,Status\nJ-100,AWAITING INSTALL,extra\nJ-101,AWAITING INSTALL\n", dry_run=False)

    assert _counts(summary) == (1, 1, 0, 0)
    assert [entry.as_dict() for entry in summary.errors] == [
        {"rowIndex": 1, "message": "Row 1: expected 2 columns, found 3."}
    ]


def test_scenario_d_unmapped_status_defaults_on_insert_and_is_kept_on_update(profile, order_factory):
    existing = order_factory(partner_external_id="J-200", status=OrderStatusEnhanced.SCHEDULED)
    csv_data = "JobRef,Status\nJ-100,ON HOLD X\nJ-200,ON HOLD X\n"

    summary = _run(profile, csv_data=csv_data, dry_run=False)

    assert summary.errors == ()
    assert [entry.as_dict() for entry in summary.warnings] == [
        {"rowIndex": 1, "message": "unmapped status: ON HOLD X"},
        {"rowIndex": 2, "message": "unmapped status: ON HOLD X"},
    ]
    inserted = Order.query.filter_by(partner_external_id="J-100").one()
    assert inserted.status_enhanced is OrderStatusEnhanced.AWAITING_INSTALL_BOOKING
    updated = db.session.get(Order, existing.id)
    assert updated.status_enhanced is OrderStatusEnhanced.SCHEDULED
    assert updated.partner_status == "ON HOLD X"


def test_default_status_falls_back_to_application_setting(profile, app, monkeypatch):
    monkeypatch.setitem(app.config, "PARTNER_IMPORT_DEFAULT_STATUS", "needs_scheduling")

    _run(profile, csv_data="JobRef,Status\nJ-100,ON HOLD X\n", dry_run=False)

    assert Order.query.one().status_enhanced is OrderStatusEnhanced.NEEDS_SCHEDULING


def test_full_layout_run(profile_factory, engineer_factory, client_record):
    engineer = engineer_factory(name="Dave Smith")
    profile = profile_factory(
        **FULL_PROFILE,
        engineer_mapping_rules=[{"partner_identifier": "dave s", "engineer_id": engineer.id}],
    )

    summary = _run(profile, csv_data=FULL_CSV, dry_run=False)

    assert _counts(summary) == (5, 3, 1, 1)
    assert [entry.as_dict() for entry in summary.errors] == [
        {"rowIndex": 5, "message": "no matching identifier: partner_external_id or order_number is required"},
        {"rowIndex": 6, "message": "Row 6: expected 8 columns, found 3."},
    ]
    assert [entry.message for entry in summary.warnings] == [
        "unparseable date: 31/02/2025",
        "invalid amount: TBC",
        "unmapped status: ON HOLD X",
    ]

    j1 = Order.query.filter_by(partner_external_id="J-1").one()
    assert j1.engineer_id == engineer.id
    assert j1.client_id == client_record.id
    assert str(j1.scheduled_install_date) == "2025-04-04"
    assert j1.status_enhanced is OrderStatusEnhanced.SCHEDULED

    j2 = Order.query.filter_by(partner_external_id="J-2").one()
    assert j2.client.email == "sam@example.com"
    assert j2.client.full_name == "Sam Roe"

    j3 = Order.query.filter_by(partner_external_id="J-3").one()
    assert j3.engineer_id is None
    assert j3.client_id is None
    assert j3.total_amount is None


def test_rerunning_an_applied_import_changes_nothing(profile_factory, client_record):
    profile = profile_factory(**FULL_PROFILE)
    csv_data = "\n".join(FULL_CSV.splitlines()[:3] + FULL_CSV.splitlines()[4:5]) + "\n"

    first = _run(profile, csv_data=csv_data, dry_run=False)
    metadata = {order.id: order.partner_metadata for order in Order.query.all()}
    second = _run(profile, csv_data=csv_data, dry_run=False)

    assert _counts(first) == (3, 3, 0, 0)
    assert _counts(second) == (3, 0, 0, 3)
    assert {order.id: order.partner_metadata for order in Order.query.all()} == metadata
    assert all(entry["import_run_id"] == first.run_id for entry in metadata.values())


def test_dry_run_matches_apply_and_writes_no_orders(profile_factory, client_record, order_factory):
    profile = profile_factory(**FULL_PROFILE)
    order_factory(partner_external_id="J-2", status=OrderStatusEnhanced.SCHEDULED)

    dry = _run(profile, csv_data=FULL_CSV, dry_run=True)

    assert Order.query.count() == 1
    assert Client.query.count() == 1

    applied = _run(profile, csv_data=FULL_CSV, dry_run=False)

    assert _counts(dry) == _counts(applied)
    assert dry.errors == applied.errors
    assert dry.warnings == applied.warnings
    assert dry.dry_run is True
    assert applied.dry_run is False


def test_creation_disabled_skips_unknown_rows(profile):
    summary = _run(profile, dry_run=False, create_missing_orders=False)

    assert _counts(summary) == (1, 0, 0, 1)
    assert Order.query.count() == 0


def test_order_number_fallback_matching(profile_factory, order_factory):
    profile = profile_factory(
        name="By order number",
        column_mappings={"orderNumber": "Order", "status": "Status"},
    )
    existing = order_factory(order_number="ORD2024-0042", status=OrderStatusEnhanced.AWAITING_INSTALL_BOOKING)

    summary = _run(profile, csv_data="Order,Status\nORD2024-0042,BOOKED\n", dry_run=False)

    assert _counts(summary) == (1, 0, 1, 0)
    assert db.session.get(Order, existing.id).partner_status == "BOOKED"


ORDER_NUMBER_PROFILE = {
    "name": "With order numbers",
    "column_mappings": {"externalId": "JobRef", "orderNumber": "Order", "status": "Status"},
}


def _outcome(summary):
    return _counts(summary), [(error.row_index, error.message) for error in summary.errors]


def test_repeated_order_number_classifies_the_same_in_both_modes(profile_factory):
    profile = profile_factory(**ORDER_NUMBER_PROFILE)
    csv_data = "JobRef,Order,Status\nJ-1,ACME-1,AWAITING INSTALL\nJ-2,ACME-1,AWAITING INSTALL\n"

    dry = _run(profile, csv_data=csv_data, dry_run=True)
    applied = _run(profile, csv_data=csv_data, dry_run=False)

    assert _outcome(dry) == _outcome(applied) == ((2, 1, 0, 0), [(2, "order number ACME-1 already in use")])
    assert Order.query.one().partner_external_id == "J-1"


def test_order_number_of_another_partner_classifies_the_same_in_both_modes(
    profile_factory, partner_factory, order_factory
):
    profile = profile_factory(**ORDER_NUMBER_PROFILE)
    order_factory(partner_obj=partner_factory(name="Other Co"), order_number="ACME-1")
    csv_data = "JobRef,Order,Status\nJ-1,ACME-1,AWAITING INSTALL\n"

    dry = _run(profile, csv_data=csv_data, dry_run=True)
    applied = _run(profile, csv_data=csv_data, dry_run=False)

    assert _outcome(dry) == _outcome(applied) == ((1, 0, 0, 0), [(1, "order number ACME-1 already in use")])
    assert Order.query.count() == 1


def test_profile_with_unknown_engineer_is_rejected_before_rows(profile_factory):
    profile = profile_factory(
        name="Stale engineers",
        column_mappings={"externalId": "JobRef", "engineer": "Eng"},
        engineer_mapping_rules=[{"partner_identifier": "bob", "engineer_id": 9999}],
    )

    with pytest.raises(ProfileValidationError, match="unknown engineer_id 9999"):
        _run(profile, csv_data="JobRef,Eng\nJ-1,Bob\n", dry_run=False)

    assert PartnerImportRun.query.count() == 0
    assert Order.query.count() == 0


def test_summary_payload_uses_camel_case(profile, partner):
    payload = _run(profile).as_dict()

    assert payload["processed"] == 1
    assert payload["insertedCount"] == 1
    assert payload["updatedCount"] == 0
    assert payload["skippedCount"] == 0
    assert payload["errors"] == []
    assert payload["warnings"] == []
    assert payload["dryRun"] is True
    assert payload["partnerName"] == partner.name
    assert isinstance(payload["runId"], str)
    assert payload["durationMs"] >= 0


def test_every_run_that_reaches_rows_is_recorded(profile):
    dry = _run(profile)
    applied = _run(profile, csv_data="JobRef,Status\nJ-100,AWAITING INSTALL\nJ-101,AWAITING INSTALL,x\n", dry_run=False)

    runs = list_profile_runs(profile.id)

    assert [run.run_uid for run in runs] == [applied.run_id, dry.run_id]
    latest = runs[0].as_dict()
    assert latest["status"] == ImportRunStatus.PARTIALLY_FAILED.value
    assert latest["dryRun"] is False
    assert latest["processed"] == 1
    assert latest["insertedCount"] == 1
    assert latest["errors"] == [{"rowIndex": 2, "message": "Row 2: expected 2 columns, found 3."}]
    assert runs[1].status is ImportRunStatus.SUCCEEDED
    assert runs[1].dry_run is True
    assert runs[1].triggered_by is None
    assert list_profile_runs(profile.id, limit=1)[0].run_uid == applied.run_id


def test_config_errors_abort_before_anything_is_written(profile_factory):
    inactive = profile_factory(name="Archived", is_active=False)

    with pytest.raises(ProfileNotFoundError):
        run_partner_import(ImportRequest(profile_id=9999, csv_data=SCENARIO_CSV))
    with pytest.raises(ProfileNotFoundError):
        _run(inactive)
    with pytest.raises(CSVHeaderError):
        _run(profile_factory(name="Empty"), csv_data="\n\n")
    with pytest.raises(SourceReadError, match="No data source available"):
        _run(profile_factory(name="No data"), csv_data=None)

    assert PartnerImportRun.query.count() == 0
    assert Order.query.count() == 0


def test_spreadsheet_profiles_read_through_the_client(profile_factory):
    profile = profile_factory(name="Sheet", source_type="spreadsheet", gsheet_id="sheet-123", gsheet_sheet_name="Jobs")
    sheets = Mock()
    sheets.fetch_values.return_value = [["JobRef", "Status"], ["J-100", "AWAITING INSTALL"], ["J-101"]]

    summary = run_partner_import(ImportRequest(profile_id=profile.id, dry_run=False), spreadsheet_client=sheets)

    sheets.fetch_values.assert_called_once_with("sheet-123", "Jobs")
    assert _counts(summary) == (2, 2, 0, 0)
    assert Order.query.filter_by(partner_external_id="J-101").one().partner_status is None


def test_inline_csv_takes_precedence_over_spreadsheet(profile_factory):
    profile = profile_factory(name="Sheet", source_type="spreadsheet", gsheet_id="sheet-123", gsheet_sheet_name="Jobs")
    sheets = Mock()

    summary = run_partner_import(ImportRequest(profile_id=profile.id, csv_data=SCENARIO_CSV), spreadsheet_client=sheets)

    sheets.fetch_values.assert_not_called()
    assert summary.inserted_count == 1


def test_unexpected_failure_rolls_back_and_records_failed_run(profile, monkeypatch):
    def explode(self, candidate):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(OrderReconciler, "reconcile", explode)

    with pytest.raises(RuntimeError, match="disk on fire"):
        _run(profile, dry_run=False)

    run = PartnerImportRun.query.one()
    assert run.status is ImportRunStatus.FAILED
    assert run.errors_json == [{"rowIndex": None, "message": "disk on fire"}]
    assert Order.query.count() == 0


def test_failed_run_ledger_write_does_not_mask_the_original_error(profile, monkeypatch):
    def explode(self, candidate):
        raise RuntimeError("disk on fire")

    def connection_lost(self):
        raise OperationalError("COMMIT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(OrderReconciler, "reconcile", explode)
    monkeypatch.setattr(Session, "commit", connection_lost)

    with pytest.raises(RuntimeError, match="disk on fire"):
        _run(profile, dry_run=False)

    monkeypatch.undo()
    assert PartnerImportRun.query.count() == 0


def test_completion_log_reports_source_row_statistics(app, profile, caplog):
    caplog.set_level(logging.INFO, logger=app.logger.name)

    _run(profile, csv_data="JobRef,Status\nJ-100,AWAITING INSTALL\n,\nJ-101,AWAITING INSTALL\n")

    record = next(item for item in caplog.records if item.getMessage() == "Partner import completed")
    assert record.importer_source_rows_read == 2
    assert record.importer_source_rows_blank == 1
    assert record.importer_source_rows_rejected == 0


def test_run_metrics_are_recorded(profile):
    labels = {"mode": "apply", "outcome": "succeeded"}
    before = REGISTRY.get_sample_value("installhub_partner_import_runs_total", labels) or 0.0
    rows_before = (
        REGISTRY.get_sample_value("installhub_partner_import_rows_total", {"mode": "apply", "action": "inserted"}) or 0.0
    )

    _run(profile, dry_run=False)

    assert REGISTRY.get_sample_value("installhub_partner_import_runs_total", labels) == before + 1
    assert (
        REGISTRY.get_sample_value("installhub_partner_import_rows_total", {"mode": "apply", "action": "inserted"})
        == rows_before + 1
    )


def test_prepare_rows_keeps_source_order_on_the_pool(profile):
    config = load_import_config(profile)
    rows = [RawRow(row_index=index, values={"JobRef": f"J-{index}", "Status": "AWAITING INSTALL"}) for index in range(1, 41)]

    prepared = prepare_rows(rows, config, max_workers=4)

    assert all(isinstance(item, CandidateRecord) for item in prepared)
    assert [item.row_index for item in prepared] == list(range(1, 41))
    assert prepared[0].resolved_status is OrderStatusEnhanced.AWAITING_INSTALL_BOOKING


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"profileId": "5"}, ImportRequest(profile_id=5)),
        (
            {"profile_id": 5, "dry_run": "false", "create_missing_orders": 0, "csv_data": "a"},
            ImportRequest(profile_id=5, dry_run=False, create_missing_orders=False, csv_data="a"),
        ),
        (
            {"profileId": 5, "dryRun": False, "createMissingOrders": True, "csvData": "x"},
            ImportRequest(profile_id=5, dry_run=False, create_missing_orders=True, csv_data="x"),
        ),
    ],
)
def test_import_request_from_payload(payload, expected):
    assert ImportRequest.from_payload(payload) == expected


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        (None, "JSON object"),
        ({}, "profileId is required"),
        ({"profileId": "abc"}, "profileId must be an integer"),
        ({"profileId": True}, "profileId must be an integer"),
        ({"profileId": 1, "dryRun": "maybe"}, "dryRun must be true or false"),
        ({"profileId": 1, "csvData": ["a"]}, "csvData must be a string"),
    ],
)
def test_import_request_rejects_bad_payloads(payload, message):
    with pytest.raises(ImportConfigError, match=message):
        ImportRequest.from_payload(payload)
