# Overview: Service-layer operations for garments and their service lines; stage recalculation, pickup, and history.

"""
Garment Service

WHY: Service lines are what the shop bills and what drives the garment
stage. Every change to a line must keep three things consistent in one
transaction: the stored line total, the garment stage, and the invoice total.

DESIGN PRINCIPLES:
- Soft delete only: removed lines keep their row and their history
- Completed lines are frozen (no edit, no removal) until reopened
- Stage is derived by garment_stage.resolve_stage; only pickup sets Done
- Every change appends a garment history event
- Services on a cancelled order are frozen until the order is restored
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Garment, GarmentService, Order
from ..time_utils import utcnow
from ..validation import (
    GARMENT_POLICY,
    SERVICE_POLICY,
    SERVICE_EDIT_POLICY,
    ValidationError,
    validate_payload,
    enforce_rules_service,
)
from . import history_service as history
from . import payment_service
from .concurrency import lock_for_update, run_with_retry
from .garment_stage import (
    ORDER_STATUS_CANCELLED,
    STAGE_DONE,
    STAGE_READY_FOR_PICKUP,
    calculate_order_status,
    can_confirm_pickup,
    completion_progress,
    resolve_stage,
)
from .payment_calculations import calculate_line_total, format_cents


class GarmentError(Exception):
    """Raised for garment and service-line operation errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


# =============================================================================
# LOOKUPS
# =============================================================================

def get_garment(garment_id: int) -> Garment:
    garment = db.session.get(Garment, garment_id)
    if not garment:
        raise GarmentError(f"Garment {garment_id} not found", status_code=404)
    return garment


def _lock_garment(garment_id: int) -> Garment:
    garment = lock_for_update(db.session.query(Garment).filter_by(id=garment_id)).first()
    if not garment:
        raise GarmentError(f"Garment {garment_id} not found", status_code=404)
    return garment


def _lock_service(garment: Garment, service_id: int) -> GarmentService:
    service = lock_for_update(
        db.session.query(GarmentService).filter_by(id=service_id, garment_id=garment.id)
    ).first()
    if not service:
        raise GarmentError(f"Service {service_id} not found on garment {garment.id}", status_code=404)
    return service


def _ensure_order_open(garment: Garment) -> None:
    """Service lines and garment fields are frozen while the order is cancelled."""
    order = garment.order
    if order.status == ORDER_STATUS_CANCELLED:
        raise GarmentError(
            f"Order {order.order_number} is cancelled; restore it before changing garments",
            status_code=409,
            details={"order_status": order.status},
        )


# =============================================================================
# SERVICE LINES
# =============================================================================

def validate_service_payload(data: dict | None) -> dict:
    """Validated create patch for a service line (defaults applied)."""
    patch = validate_payload(model=GarmentService, payload=data, policy=SERVICE_POLICY, partial=False)
    patch.setdefault("unit", "flat_rate")
    patch.setdefault("quantity", Decimal("1"))
    enforce_rules_service(patch)
    return patch


def build_service(garment: Garment, patch: dict) -> GarmentService:
    """Add a validated service line to the session and flush it (no commit)."""
    service = GarmentService(
        garment_id=garment.id,
        name=patch["name"],
        description=patch.get("description"),
        unit=patch["unit"],
        quantity=patch["quantity"],
        unit_price_cents=patch["unit_price_cents"],
        line_total_cents=calculate_line_total(patch["quantity"], patch["unit_price_cents"]),
        is_done=False,
        is_removed=False,
    )
    db.session.add(service)
    db.session.flush()

    history.record_garment_event(
        garment_id=garment.id,
        change_type=history.CHANGE_SERVICE_ADDED,
        field_name="service",
        new_value=history.service_snapshot(service),
        related_service_id=service.id,
    )
    return service


def add_service(garment_id: int, data: dict) -> GarmentService:
    """
    Add a billable service line to a garment.

    A new line is never done, so a Ready For Pickup garment drops back to
    In Progress. Done garments keep Done.

    Raises:
        ValidationError: If the payload is invalid
        GarmentError: If garment not found
    """
    patch = validate_service_payload(data)

    def _op():
        garment = _lock_garment(garment_id)
        _ensure_order_open(garment)
        service = build_service(garment, patch)
        _after_service_change(garment)
        db.session.commit()

        current_app.logger.info(
            "Added service %s (%s) to garment %s", service.id, format_cents(service.line_total_cents), garment.id
        )
        return service

    return run_with_retry(_op)


def update_service(garment_id: int, service_id: int, data: dict) -> GarmentService:
    """
    Edit quantity, price, unit or description of a service line.

    Rules are re-checked against the merged values (a unit change alone can
    make the existing quantity invalid).

    Raises:
        ValidationError: If the payload is invalid
        GarmentError: 404 if not found, 409 if the line is done or removed
    """
    patch = validate_payload(model=GarmentService, payload=data, policy=SERVICE_EDIT_POLICY, partial=True)

    def _op():
        garment = _lock_garment(garment_id)
        _ensure_order_open(garment)
        service = _lock_service(garment, service_id)

        if service.is_done:
            raise GarmentError("Cannot edit a completed service", status_code=409)
        if service.is_removed:
            raise GarmentError("Cannot edit a removed service", status_code=409)

        merged = {
            "unit": service.unit,
            "quantity": Decimal(service.quantity),
            "unit_price_cents": service.unit_price_cents,
            **patch,
        }
        enforce_rules_service(merged)

        before = history.service_snapshot(service)
        for key, value in patch.items():
            setattr(service, key, value)
        service.line_total_cents = calculate_line_total(service.quantity, service.unit_price_cents)
        service.updated_at = utcnow()
        db.session.flush()

        history.record_garment_event(
            garment_id=garment.id,
            change_type=history.CHANGE_SERVICE_UPDATED,
            field_name="service",
            old_value=before,
            new_value=history.service_snapshot(service),
            related_service_id=service.id,
        )
        _after_service_change(garment)
        db.session.commit()
        return service

    return run_with_retry(_op)


def remove_service(garment_id: int, service_id: int, reason: str | None = None) -> GarmentService:
    """
    Soft-remove a service line (is_removed=True).

    Raises:
        GarmentError: 404 if not found, 409 if done or already removed
    """
    def _op():
        garment = _lock_garment(garment_id)
        _ensure_order_open(garment)
        service = _lock_service(garment, service_id)

        if service.is_done:
            raise GarmentError("Cannot remove a completed service", status_code=409)
        if service.is_removed:
            raise GarmentError("Service is already removed", status_code=409)

        service.is_removed = True
        service.removed_at = utcnow()
        service.removal_reason = (reason or "").strip() or None
        service.updated_at = service.removed_at
        db.session.flush()

        history.record_garment_event(
            garment_id=garment.id,
            change_type=history.CHANGE_SERVICE_REMOVED,
            field_name="service",
            old_value=history.service_snapshot(service, status="active"),
            new_value=history.service_snapshot(service, status="removed"),
            related_service_id=service.id,
            notes=service.removal_reason,
        )
        _after_service_change(garment)
        db.session.commit()
        return service

    return run_with_retry(_op)


def restore_service(garment_id: int, service_id: int) -> GarmentService:
    """
    Bring a removed service line back into the active total.

    Raises:
        GarmentError: 404 if not found, 409 if the line is not removed
    """
    def _op():
        garment = _lock_garment(garment_id)
        _ensure_order_open(garment)
        service = _lock_service(garment, service_id)

        if not service.is_removed:
            raise GarmentError("Service is not removed", status_code=409)

        service.is_removed = False
        service.removed_at = None
        service.removal_reason = None
        service.updated_at = utcnow()
        db.session.flush()

        history.record_garment_event(
            garment_id=garment.id,
            change_type=history.CHANGE_SERVICE_RESTORED,
            field_name="service",
            old_value=history.service_snapshot(service, status="removed"),
            new_value=history.service_snapshot(service, status="active"),
            related_service_id=service.id,
        )
        _after_service_change(garment)
        db.session.commit()
        return service

    return run_with_retry(_op)


def toggle_service_completion(garment_id: int, service_id: int, is_done: bool | None = None) -> GarmentService:
    """
    Mark a service line done or not done.

    Args:
        is_done: Target value; None flips the current value

    Raises:
        GarmentError: 404 if not found, 409 if the line is removed
    """
    def _op():
        garment = _lock_garment(garment_id)
        _ensure_order_open(garment)
        service = _lock_service(garment, service_id)

        if service.is_removed:
            raise GarmentError("Cannot complete a removed service", status_code=409)

        target = (not service.is_done) if is_done is None else bool(is_done)
        if target == service.is_done:
            return service

        service.is_done = target
        service.done_at = utcnow() if target else None
        service.updated_at = utcnow()
        db.session.flush()

        history.record_garment_event(
            garment_id=garment.id,
            change_type=history.CHANGE_SERVICE_COMPLETED if target else history.CHANGE_SERVICE_REOPENED,
            field_name="is_done",
            old_value=not target,
            new_value=target,
            related_service_id=service.id,
        )
        _after_service_change(garment)
        db.session.commit()
        return service

    return run_with_retry(_op)


# =============================================================================
# GARMENT FIELDS
# =============================================================================

def update_garment(garment_id: int, data: dict) -> Garment:
    """
    Edit name, notes, due date or event date.

    Each changed field gets its own field_update history event; unchanged
    values are skipped.

    Raises:
        ValidationError: If the payload is invalid or empty
        GarmentError: 404 if not found, 409 if the order is cancelled
    """
    patch = validate_payload(model=Garment, payload=data, policy=GARMENT_POLICY, partial=True)
    if not patch:
        raise ValidationError("No garment fields to update")

    def _op():
        garment = _lock_garment(garment_id)
        _ensure_order_open(garment)

        changes = []
        for field, value in patch.items():
            old = getattr(garment, field)
            if old == value:
                continue
            setattr(garment, field, value)
            changes.append((field, _history_value(old), _history_value(value)))

        if not changes:
            db.session.commit()
            return garment

        db.session.flush()
        for field, old, new in changes:
            history.record_garment_event(
                garment_id=garment.id,
                change_type=history.CHANGE_FIELD_UPDATE,
                field_name=field,
                old_value=old,
                new_value=new,
            )
        db.session.commit()

        current_app.logger.info(
            "Updated garment %s: %s", garment.id, ", ".join(field for field, _, _ in changes)
        )
        return garment

    return run_with_retry(_op)


# =============================================================================
# STAGE
# =============================================================================

def recalc_stage(garment: Garment) -> str:
    """
    Re-derive the garment stage from its services (inside the caller's transaction).

    Done is kept: a picked-up garment is never moved back by a service edit.
    """
    old_stage = garment.stage
    new_stage = resolve_stage(old_stage, garment.services)
    if new_stage != old_stage:
        garment.stage = new_stage
        history.record_garment_event(
            garment_id=garment.id,
            change_type=history.CHANGE_FIELD_UPDATE,
            field_name="stage",
            old_value=old_stage,
            new_value=new_stage,
        )
    return new_stage


def refresh_order_status(order: Order) -> str:
    """Re-derive the order status from garment stages; cancelled orders stay cancelled."""
    if order.status != ORDER_STATUS_CANCELLED:
        order.status = calculate_order_status(g.stage for g in order.garments)
    return order.status


def mark_picked_up(garment_id: int) -> Garment:
    """
    Confirm customer pickup: Ready For Pickup -> Done.

    Raises:
        GarmentError: 404 if not found, 409 if not Ready For Pickup
    """
    def _op():
        garment = _lock_garment(garment_id)

        if not can_confirm_pickup(garment.stage):
            raise GarmentError(
                f"Garment must be {STAGE_READY_FOR_PICKUP} to confirm pickup (currently {garment.stage})",
                status_code=409,
                details={"stage": garment.stage},
            )

        garment.stage = STAGE_DONE
        garment.picked_up_at = utcnow()
        refresh_order_status(garment.order)
        db.session.flush()

        history.record_garment_event(
            garment_id=garment.id,
            change_type=history.CHANGE_FIELD_UPDATE,
            field_name="stage",
            old_value=STAGE_READY_FOR_PICKUP,
            new_value=STAGE_DONE,
            notes="Picked up by customer",
        )
        db.session.commit()
        current_app.logger.info("Garment %s picked up", garment.id)
        return garment

    return run_with_retry(_op)


# =============================================================================
# PICKUP BALANCE CHECK
# =============================================================================

def check_garment_balance_status(garment_id: int) -> dict:
    """
    Whether picking this garment up should prompt for payment.

    Prompt only when all of these hold:
    - the garment is Ready For Pickup
    - every other garment on the order has been picked up
    - the order still has a balance due

    Returns:
        - is_ready_for_pickup: bool
        - is_last_unfinished: bool
        - has_outstanding_balance: bool
        - should_prompt: bool
        - order_total_cents, paid_amount_cents, balance_due_cents
    """
    garment = get_garment(garment_id)
    is_ready = can_confirm_pickup(garment.stage)
    others_open = [
        g for g in garment.order.garments
        if g.id != garment.id and g.stage != STAGE_DONE
    ]
    is_last = not others_open

    balance = payment_service.get_order_balance(garment.order_id)
    has_balance = balance["balance_due_cents"] > 0

    return {
        "garment_id": garment.id,
        "order_id": garment.order_id,
        "is_ready_for_pickup": is_ready,
        "is_last_unfinished": is_last,
        "has_outstanding_balance": has_balance,
        "should_prompt": is_ready and is_last and has_balance,
        "order_total_cents": balance["order_total_cents"],
        "paid_amount_cents": balance["paid_amount_cents"],
        "balance_due_cents": balance["balance_due_cents"],
    }


def log_deferred_payment_pickup(garment_id: int, notes: str | None = None) -> dict:
    """
    Record that the customer took the garment with a balance still due.

    Returns:
        The history event as a dict
    """
    def _op():
        garment = _lock_garment(garment_id)
        balance = payment_service.get_order_balance(garment.order_id)

        event = history.record_garment_event(
            garment_id=garment.id,
            change_type=history.CHANGE_SPECIAL_ACTION,
            field_name="pickup_payment",
            old_value={"balance_due_cents": balance["balance_due_cents"]},
            new_value="deferred",
            notes=(notes or "").strip() or "Picked up with outstanding balance; payment deferred",
        )
        db.session.commit()

        current_app.logger.info(
            "Garment %s picked up with %s outstanding on order %s",
            garment.id, format_cents(balance["balance_due_cents"]), garment.order_id,
        )
        return event.to_dict()

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_garment_detail(garment_id: int) -> dict:
    garment = get_garment(garment_id)
    done, total = completion_progress(garment.services)
    data = garment.to_dict()
    data["progress"] = {"done": done, "total": total}
    return data


def get_history(garment_id: int) -> list[dict]:
    get_garment(garment_id)
    return [ev.to_dict() for ev in history.get_garment_history(garment_id)]


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _history_value(value):
    if isinstance(value, date):
        return value.isoformat()
    return value


def _after_service_change(garment: Garment) -> None:
    db.session.expire(garment, ["services"])
    recalc_stage(garment)
    refresh_order_status(garment.order)
    payment_service.sync_invoice_with_services(garment.order_id)
