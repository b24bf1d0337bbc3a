"""
SQLAlchemy models backing the partner job importer.

``ImportProfile`` rows are owned by the profile configuration screens and are
read-only to an import run. ``PartnerImportRun`` is the audit ledger written
once per run that reaches row processing.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImportSourceType(str, enum.Enum):
    """Where an import profile reads its rows from."""

    CSV = "csv"
    SPREADSHEET = "spreadsheet"


class ImportRunStatus(str, enum.Enum):
    """Lifecycle states for a partner import run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


class ImportProfile(BaseModel):
    """Partner-specific translation rules for job imports."""

    __tablename__ = "import_profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    partner_id: Mapped[int] = mapped_column(ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    source_type: Mapped[str] = mapped_column(db.String(30), nullable=False, default=ImportSourceType.CSV.value)
    gsheet_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    gsheet_sheet_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    column_mappings: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    status_mappings: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    engineer_mapping_rules: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    status_override_rules: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    default_status: Mapped[str | None] = mapped_column(
        db.String(50),
        nullable=True,
        comment="Status applied to inserted orders whose partner status is unmapped.",
    )
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    partner = relationship("Partner", back_populates="import_profiles")
    runs = relationship(
        "PartnerImportRun",
        back_populates="profile",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PartnerImportRun.id.desc()",
    )

    __table_args__ = (UniqueConstraint("partner_id", "name", name="uq_import_profiles_partner_name"),)

    def __repr__(self) -> str:
        return f"<ImportProfile {self.id} partner={self.partner_id} {self.name!r}>"


class PartnerImportRun(BaseModel):
    """Ledger entry describing a single partner import execution."""

    __tablename__ = "partner_import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_uid: Mapped[str] = mapped_column(db.String(64), nullable=False, unique=True)
    partner_id: Mapped[int] = mapped_column(ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True)
    profile_id: Mapped[int | None] = mapped_column(
        ForeignKey("import_profiles.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus, name="partner_import_run_status_enum"),
        nullable=False,
        default=ImportRunStatus.RUNNING,
        index=True,
    )
    dry_run: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    create_missing_orders: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    source_type: Mapped[str] = mapped_column(db.String(30), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    total_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    inserted_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    updated_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    errors_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    warnings_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    profile_checksum: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    triggered_by: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    profile = relationship("ImportProfile", back_populates="runs")
    partner = relationship("Partner")

    __table_args__ = (Index("idx_partner_import_runs_partner_started", "partner_id", "started_at"),)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "runId": self.run_uid,
            "partnerId": self.partner_id,
            "profileId": self.profile_id,
            "status": self.status.value if self.status else None,
            "dryRun": self.dry_run,
            "createMissingOrders": self.create_missing_orders,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.total_rows,
            "insertedCount": self.inserted_count,
            "updatedCount": self.updated_count,
            "skippedCount": self.skipped_count,
            "errors": list(self.errors_json or []),
            "warnings": list(self.warnings_json or []),
        }
