"""
Idempotent order upserts for partner import rows.

Orders are matched on ``(partner_id, partner_external_id)`` and fall back to
``(partner_id, order_number)`` when a row carries no external id. Every order
touched by an earlier row in the same run is tracked as an ``OrderSnapshot`` so
that a dry run classifies repeated keys exactly as an apply run would.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from installhub.importer.profile import PartnerImportConfig
from installhub.models import Client, Order, db

from .mapper import CandidateRecord
from .overrides import status_update_allowed
from .summary import ACTION_ERROR, ACTION_INSERTED, ACTION_SKIPPED, ACTION_UPDATED, RowOutcome

PATCHABLE_FIELDS: tuple[str, ...] = (
    "status_enhanced",
    "partner_status",
    "engineer_id",
    "scheduled_install_date",
    "job_address",
    "postcode",
    "sub_partner",
    "total_amount",
    "installation_notes",
)

MESSAGE_NO_CHANGES = "no changes"
MESSAGE_CREATION_DISABLED = "no matching order and creation disabled"
MESSAGE_ORDER_NUMBER_TAKEN = "order number {} already in use"
UNKNOWN_CLIENT_NAME = "Unknown"

MatchKey = tuple[str, str]


def match_key(candidate: CandidateRecord) -> MatchKey:
    if candidate.partner_external_id:
        return ("partner_external_id", candidate.partner_external_id)
    return ("order_number", candidate.order_number or "")


def format_order_number(order_id: int, *, now: datetime | None = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    return f"ORD{year}-{order_id:04d}"


@dataclass
class OrderSnapshot:
    """Run-local view of an order's patchable state."""

    order_id: int | None
    partner_external_id: str | None
    order_number: str | None
    manual_status_override: bool
    values: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_order(cls, order: Order) -> "OrderSnapshot":
        return cls(
            order_id=order.id,
            partner_external_id=order.partner_external_id,
            order_number=order.order_number,
            manual_status_override=bool(order.manual_status_override),
            values={name: getattr(order, name) for name in PATCHABLE_FIELDS},
        )

    def keys(self) -> list[MatchKey]:
        keys: list[MatchKey] = []
        if self.partner_external_id:
            keys.append(("partner_external_id", self.partner_external_id))
        if self.order_number:
            keys.append(("order_number", self.order_number))
        return keys


def desired_values(candidate: CandidateRecord) -> dict[str, Any]:
    """Mapped field values a row asserts; unset fields are left out, never cleared."""

    values: dict[str, Any] = {
        "partner_status": candidate.raw_status,
        "engineer_id": candidate.resolved_engineer_id,
        "scheduled_install_date": candidate.scheduled_date,
        "job_address": candidate.job_address,
        "postcode": candidate.postcode,
        "sub_partner": candidate.sub_partner,
        "total_amount": candidate.total_amount,
        "installation_notes": candidate.installation_notes,
    }
    return {name: value for name, value in values.items() if value is not None}


def build_patch(
    candidate: CandidateRecord,
    snapshot: OrderSnapshot,
    config: PartnerImportConfig,
) -> dict[str, Any]:
    """Return the fields whose incoming value differs from the order's current value."""

    desired = desired_values(candidate)
    if status_update_allowed(snapshot.manual_status_override, candidate.resolved_status, config):
        desired["status_enhanced"] = candidate.resolved_status
    return {name: value for name, value in desired.items() if snapshot.values.get(name) != value}


class OrderReconciler:
    """Classify and apply candidate records against existing orders, one row at a time."""

    def __init__(
        self,
        config: PartnerImportConfig,
        *,
        partner_id: int,
        run_uid: str,
        dry_run: bool = True,
        create_missing_orders: bool = True,
        session: Session | None = None,
    ) -> None:
        self.config = config
        self.partner_id = partner_id
        self.run_uid = run_uid
        self.dry_run = dry_run
        self.create_missing_orders = create_missing_orders
        self.session = session or db.session
        self._shadow: dict[MatchKey, OrderSnapshot] = {}

    def reconcile(self, candidate: CandidateRecord) -> RowOutcome:
        try:
            return self._reconcile(candidate)
        except SQLAlchemyError as exc:
            message = str(getattr(exc, "orig", None) or exc)
            self._log_warning(
                "Importer run %s failed to persist row %s: %s",
                self.run_uid,
                candidate.row_index,
                message,
            )
            return RowOutcome(row_index=candidate.row_index, action=ACTION_ERROR, message=message)

    # Internal helpers -----------------------------------------------------------

    def _reconcile(self, candidate: CandidateRecord) -> RowOutcome:
        key = match_key(candidate)
        snapshot = self._shadow.get(key)
        order: Order | None = None
        if snapshot is None:
            order = self._find_order(candidate)
            if order is not None:
                snapshot = self._remember(OrderSnapshot.from_order(order))

        if snapshot is not None:
            return self._update(candidate, snapshot, order)
        if not self.create_missing_orders:
            return RowOutcome(row_index=candidate.row_index, action=ACTION_SKIPPED, message=MESSAGE_CREATION_DISABLED)
        if self._order_number_taken(candidate.order_number):
            return RowOutcome(
                row_index=candidate.row_index,
                action=ACTION_ERROR,
                message=MESSAGE_ORDER_NUMBER_TAKEN.format(candidate.order_number),
            )
        return self._insert(candidate)

    def _find_order(self, candidate: CandidateRecord) -> Order | None:
        query = self.session.query(Order).filter(Order.partner_id == self.partner_id)
        if candidate.partner_external_id:
            query = query.filter(Order.partner_external_id == candidate.partner_external_id)
        else:
            query = query.filter(Order.order_number == candidate.order_number)
        return query.order_by(Order.id).first()

    def _order_number_taken(self, order_number: str | None) -> bool:
        """Order numbers are unique across partners; earlier rows of this run count too."""
        if not order_number:
            return False
        if ("order_number", order_number) in self._shadow:
            return True
        return self.session.query(Order.id).filter(Order.order_number == order_number).first() is not None

    def _remember(self, snapshot: OrderSnapshot) -> OrderSnapshot:
        for key in snapshot.keys():
            self._shadow[key] = snapshot
        return snapshot

    def _update(
        self,
        candidate: CandidateRecord,
        snapshot: OrderSnapshot,
        order: Order | None,
    ) -> RowOutcome:
        patch = build_patch(candidate, snapshot, self.config)
        if not patch:
            return RowOutcome(
                row_index=candidate.row_index,
                action=ACTION_SKIPPED,
                message=MESSAGE_NO_CHANGES,
                order_id=snapshot.order_id,
            )

        if not self.dry_run:
            if order is None:
                order = self.session.get(Order, snapshot.order_id)
            with self.session.begin_nested():
                for name, value in patch.items():
                    setattr(order, name, value)
                order.partner_metadata = self._metadata(order.partner_metadata, candidate)
                self.session.flush()

        snapshot.values.update(patch)
        return RowOutcome(
            row_index=candidate.row_index,
            action=ACTION_UPDATED,
            order_id=snapshot.order_id,
            changes=patch,
        )

    def _insert(self, candidate: CandidateRecord) -> RowOutcome:
        values = desired_values(candidate)
        values["status_enhanced"] = candidate.resolved_status or self.config.default_status

        if self.dry_run:
            snapshot = self._remember(
                OrderSnapshot(
                    order_id=None,
                    partner_external_id=candidate.partner_external_id,
                    order_number=candidate.order_number,
                    manual_status_override=False,
                    values=dict(values),
                )
            )
            return RowOutcome(row_index=candidate.row_index, action=ACTION_INSERTED, changes=values)

        try:
            with self.session.begin_nested():
                order = Order(
                    partner_id=self.partner_id,
                    partner_external_id=candidate.partner_external_id,
                    order_number=candidate.order_number,
                    is_partner_job=True,
                    manual_status_override=False,
                    client=self._resolve_client(candidate),
                    partner_metadata=self._metadata(None, candidate),
                    **values,
                )
                self.session.add(order)
                self.session.flush()
                if not order.order_number:
                    order.order_number = format_order_number(order.id)
                    self.session.flush()
        except IntegrityError as exc:
            existing = self._find_order(candidate)
            if existing is None:
                raise
            self._log_info(
                "Importer run %s row %s lost an insert race for %s; updating instead (%s)",
                self.run_uid,
                candidate.row_index,
                match_key(candidate)[1],
                getattr(exc, "orig", exc),
            )
            snapshot = self._remember(OrderSnapshot.from_order(existing))
            return self._update(candidate, snapshot, existing)

        snapshot = self._remember(OrderSnapshot.from_order(order))
        return RowOutcome(
            row_index=candidate.row_index,
            action=ACTION_INSERTED,
            order_id=snapshot.order_id,
            changes=values,
        )

    def _resolve_client(self, candidate: CandidateRecord) -> Client | None:
        hints = candidate.client
        if hints.email:
            existing = Client.find_by_email(hints.email)
            if existing is not None:
                return existing
        if not hints.usable:
            return None
        client = Client(
            full_name=hints.name or UNKNOWN_CLIENT_NAME,
            email=hints.email,
            phone=hints.phone,
            address=candidate.job_address,
            postcode=candidate.postcode,
        )
        self.session.add(client)
        return client

    def _metadata(self, current: Mapping[str, Any] | None, candidate: CandidateRecord) -> dict[str, Any]:
        metadata = dict(current or {})
        metadata.update(
            {
                "import_run_id": self.run_uid,
                "original_status": candidate.raw_status,
                "row_index": candidate.row_index,
            }
        )
        if candidate.sub_partner:
            metadata["sub_partner"] = candidate.sub_partner
        return metadata

    def _log_info(self, message: str, *args: Any) -> None:
        if has_app_context():
            current_app.logger.info(message, *args)

    def _log_warning(self, message: str, *args: Any) -> None:
        if has_app_context():
            current_app.logger.warning(message, *args)
