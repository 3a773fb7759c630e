from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order (one drop-off, one invoice).

    WHY: Discount and tax live on the order; the billable total is always
    derived from the active services of its garments, never stored here.
    """
    __tablename__ = "orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD-000123")
    order_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    # Client contact (identity lives with the external auth/CRM provider)
    client_name = db.Column(db.String(255), nullable=False)
    client_email = db.Column(db.String(255), nullable=True)
    client_phone = db.Column(db.String(64), nullable=True)

    # Adjustments (all amounts in cents)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    # Workflow status: new, in_progress, ready_for_pickup, completed, cancelled
    # Derived from garment stages except cancelled, which only cancel/restore set
    status = db.Column(db.String(32), nullable=False, default="new", index=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_phone": self.client_phone,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "status": self.status,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class Garment(db.Model):
    """
    One item of clothing on an order.

    STAGE is derived from service completion (New, In Progress,
    Ready For Pickup) except Done, which only the pickup action sets.
    """
    __tablename__ = "garments"
    __table_args__ = (
        db.Index("ix_garments_order_stage", "order_id", "stage"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    stage = db.Column(db.String(32), nullable=False, default="New", index=True)
    notes = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    event_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("garments", lazy=True, order_by="Garment.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_services: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "name": self.name,
            "stage": self.stage,
            "notes": self.notes,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "event_date": self.event_date.isoformat() if self.event_date else None,
            "created_at": to_utc_z(self.created_at),
            "picked_up_at": to_utc_z(self.picked_up_at) if self.picked_up_at else None,
            "version_id": self.version_id,
        }
        if include_services:
            data["services"] = [s.to_dict() for s in self.services]
        return data


class GarmentService(db.Model):
    """
    Billable service line on a garment.

    SOFT DELETE: removed lines keep their row (is_removed=True) so invoices
    and history stay explainable; they never count toward totals.
    """
    __tablename__ = "garment_services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    garment_id = db.Column(db.Integer, db.ForeignKey("garments.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="flat_rate")  # flat_rate, hour, day

    quantity = db.Column(db.Numeric(10, 2), nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=True)

    # Completion
    is_done = db.Column(db.Boolean, nullable=False, default=False)
    done_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Soft delete
    is_removed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    removal_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    garment = db.relationship("Garment", backref=db.backref("services", lazy=True, order_by="GarmentService.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "garment_id": self.garment_id,
            "name": self.name,
            "description": self.description,
            "unit": self.unit,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "is_done": self.is_done,
            "done_at": to_utc_z(self.done_at) if self.done_at else None,
            "is_removed": self.is_removed,
            "removed_at": to_utc_z(self.removed_at) if self.removed_at else None,
            "removal_reason": self.removal_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "version_id": self.version_id,
        }


class GarmentHistory(db.Model):
    """
    Append-only log of garment changes.

    IMMUTABLE: rows are never updated or deleted.
    """
    __tablename__ = "garment_history"
    __table_args__ = (
        db.Index("ix_garment_history_garment_changed", "garment_id", "changed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    garment_id = db.Column(db.Integer, db.ForeignKey("garments.id"), nullable=False, index=True)
    related_service_id = db.Column(db.Integer, db.ForeignKey("garment_services.id"), nullable=True)

    change_type = db.Column(db.String(32), nullable=False, index=True)
    field_name = db.Column(db.String(64), nullable=False)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    garment = db.relationship("Garment", backref=db.backref("history", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "garment_id": self.garment_id,
            "related_service_id": self.related_service_id,
            "change_type": self.change_type,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "notes": self.notes,
            "changed_at": to_utc_z(self.changed_at),
        }
