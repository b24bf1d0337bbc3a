# installhub/models/order.py

import enum

from sqlalchemy import Enum, Index

from .base import BaseModel, db


class OrderStatusEnhanced(str, enum.Enum):
    """Lifecycle statuses an order can hold."""

    QUOTE_ACCEPTED = "quote_accepted"
    AWAITING_PAYMENT = "awaiting_payment"
    PAYMENT_RECEIVED = "payment_received"
    AWAITING_AGREEMENT = "awaiting_agreement"
    AGREEMENT_SIGNED = "agreement_signed"
    AWAITING_INSTALL_BOOKING = "awaiting_install_booking"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    INSTALL_COMPLETED_PENDING_QA = "install_completed_pending_qa"
    COMPLETED = "completed"
    REVISIT_REQUIRED = "revisit_required"
    CANCELLED = "cancelled"
    NEEDS_SCHEDULING = "needs_scheduling"
    DATE_OFFERED = "date_offered"
    DATE_ACCEPTED = "date_accepted"
    DATE_REJECTED = "date_rejected"
    OFFER_EXPIRED = "offer_expired"
    ON_HOLD_PARTS_DOCS = "on_hold_parts_docs"
    AWAITING_FINAL_PAYMENT = "awaiting_final_payment"
    AWAITING_SURVEY_SUBMISSION = "awaiting_survey_submission"
    AWAITING_SURVEY_REVIEW = "awaiting_survey_review"
    SURVEY_APPROVED = "survey_approved"
    SURVEY_REWORK_REQUESTED = "survey_rework_requested"
    AWAITING_PARTS_ORDER = "awaiting_parts_order"
    AWAITING_MANUAL_SCHEDULING = "awaiting_manual_scheduling"

    @classmethod
    def parse(cls, value):
        """Return the member for ``value`` (member, value or name), or raise ValueError."""
        if isinstance(value, cls):
            return value
        token = str(value or "").strip().lower()
        for member in cls:
            if member.value == token:
                return member
        raise ValueError(f"Unknown order status: {value!r}")


class Order(BaseModel):
    """Installation order. Only the columns the partner importer touches live here."""

    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(50), unique=True, nullable=True, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    engineer_id = db.Column(db.Integer, db.ForeignKey("engineers.id"), nullable=True, index=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=True, index=True)
    partner_external_id = db.Column(db.String(255), nullable=True)
    is_partner_job = db.Column(db.Boolean, default=False, nullable=False)

    status_enhanced = db.Column(
        Enum(OrderStatusEnhanced, name="order_status_enhanced_enum"),
        default=OrderStatusEnhanced.AWAITING_INSTALL_BOOKING,
        nullable=False,
        index=True,
    )
    manual_status_override = db.Column(db.Boolean, default=False, nullable=False)
    partner_status = db.Column(db.String(255), nullable=True)

    scheduled_install_date = db.Column(db.Date, nullable=True)
    job_address = db.Column(db.String(500), nullable=True)
    postcode = db.Column(db.String(20), nullable=True)
    sub_partner = db.Column(db.String(200), nullable=True)
    total_amount = db.Column(db.Numeric(12, 2), nullable=True)
    installation_notes = db.Column(db.Text, nullable=True)
    partner_metadata = db.Column(db.JSON, nullable=True)

    client = db.relationship("Client", back_populates="orders")
    engineer = db.relationship("Engineer", back_populates="orders")
    partner = db.relationship("Partner")

    __table_args__ = (
        db.UniqueConstraint("partner_id", "partner_external_id", name="uq_orders_partner_external_id"),
        Index("idx_orders_partner_status", "partner_id", "status_enhanced"),
    )

    def __repr__(self):
        return f"<Order {self.order_number or self.id}>"
