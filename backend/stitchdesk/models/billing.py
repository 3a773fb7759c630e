from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Invoice(db.Model):
    """
    Invoice for an order (one per order).

    WHY: Payments attach to the invoice, not to garments. amount_cents is
    re-synced from the order's active total whenever services change.
    """
    __tablename__ = "invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)

    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    deposit_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending, partially_paid, paid

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "invoice_number": self.invoice_number,
            "amount_cents": self.amount_cents,
            "deposit_amount_cents": self.deposit_amount_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "version_id": self.version_id,
        }


class Payment(db.Model):
    """
    Payment attempt against an invoice.

    STATUS LIFECYCLE:
    - pending -> completed | failed | cancelled (processor callback)
    - completed -> partially_refunded -> refunded (refunds applied)

    Payments are never deleted; refunds only raise refunded_amount_cents.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    payment_type = db.Column(db.String(16), nullable=False, default="payment")  # payment, deposit
    payment_method = db.Column(db.String(32), nullable=False, index=True)  # cash, card, check, external_pos, other

    amount_cents = db.Column(db.Integer, nullable=False)
    refunded_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)

    external_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "type": "payment",
            "payment_type": self.payment_type,
            "payment_method": self.payment_method,
            "amount_cents": self.amount_cents,
            "refunded_amount_cents": self.refunded_amount_cents,
            "status": self.status,
            "external_reference": self.external_reference,
            "notes": self.notes,
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "version_id": self.version_id,
        }


class Refund(db.Model):
    """
    One refund applied to a payment.

    IMMUTABLE: the running total lives on Payment.refunded_amount_cents.
    """
    __tablename__ = "refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    refund_type = db.Column(db.String(16), nullable=False)  # full, partial
    refund_method = db.Column(db.String(32), nullable=False, default="cash")  # cash, external_pos, other
    status = db.Column(db.String(16), nullable=False, default="succeeded")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment = db.relationship("Payment", backref=db.backref("refunds", lazy=True, order_by="Refund.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "type": "refund",
            "amount_cents": -self.amount_cents,
            "reason": self.reason,
            "refund_type": self.refund_type,
            "refund_method": self.refund_method,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
