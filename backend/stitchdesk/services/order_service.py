# Overview: Service-layer operations for orders; creation with garments and services, detail reads, and balances.

"""
Order Service

WHY: An order is created at the counter in one step: client details, the
garments dropped off, and the services quoted for each. The invoice is
opened in the same transaction so the balance is available immediately.

ORDER STATUS:
- new, in_progress, ready_for_pickup, completed: derived from garment stages
- cancelled: set by cancel_order; garments on a cancelled order cannot be
  changed until restore_order re-derives the status
"""

from __future__ import annotations

import uuid

from flask import current_app

from ..extensions import db
from ..models import Order, Garment
from ..time_utils import utcnow
from ..validation import (
    GARMENT_POLICY,
    ORDER_POLICY,
    ValidationError,
    validate_payload,
    enforce_rules_order,
)
from . import payment_service
from .concurrency import lock_for_update, run_with_retry
from .garment_service import build_service, validate_service_payload, recalc_stage, refresh_order_status
from .garment_stage import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    STAGE_NEW,
    calculate_order_status,
)
from .payment_calculations import format_cents


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def _validate_garment_payload(data) -> tuple[dict, list[dict]]:
    """Split a garment payload into its validated fields and service patches."""
    if not isinstance(data, dict):
        raise ValidationError("Each garment must be an object")
    fields = {k: v for k, v in data.items() if k != "services"}
    services = data.get("services") or []
    if not isinstance(services, list):
        raise ValidationError("services must be a list")

    garment_patch = validate_payload(model=Garment, payload=fields, policy=GARMENT_POLICY, partial=False)
    service_patches = [validate_service_payload(s) for s in services]
    return garment_patch, service_patches


def _build_garment(order: Order, garment_patch: dict, service_patches: list[dict]) -> Garment:
    garment = Garment(order_id=order.id, stage=STAGE_NEW, **garment_patch)
    db.session.add(garment)
    db.session.flush()

    for patch in service_patches:
        build_service(garment, patch)
    db.session.expire(garment, ["services"])
    recalc_stage(garment)
    return garment


def create_order(data: dict) -> Order:
    """
    Create an order with its garments, services and invoice.

    Request shape:
    {
        "client_name": "Ada Lovelace",
        "discount_cents": 0,
        "tax_cents": 0,
        "garments": [
            {"name": "Wedding dress", "due_date": "2026-06-01",
             "services": [{"name": "Hem", "unit_price_cents": 4500}]}
        ]
    }

    Raises:
        ValidationError: If any part of the payload is invalid (nothing is written)
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    garments = data.get("garments") or []
    if not isinstance(garments, list):
        raise ValidationError("garments must be a list")

    order_fields = {k: v for k, v in data.items() if k != "garments"}
    order_patch = validate_payload(model=Order, payload=order_fields, policy=ORDER_POLICY, partial=False)
    enforce_rules_order(order_patch)
    garment_patches = [_validate_garment_payload(g) for g in garments]

    def _op():
        prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
        # Real number needs the id; placeholder keeps the unique column satisfied
        order = Order(order_number=f"{prefix}-NEW-{uuid.uuid4().hex[:12]}", **order_patch)
        db.session.add(order)
        db.session.flush()
        order.order_number = f"{prefix}-{order.id:06d}"

        for garment_patch, service_patches in garment_patches:
            _build_garment(order, garment_patch, service_patches)
        db.session.expire(order, ["garments"])
        refresh_order_status(order)

        invoice = payment_service.create_invoice_for_order(order)
        db.session.commit()

        current_app.logger.info(
            "Created order %s with %s garment(s), invoice %s for %s",
            order.order_number, len(garment_patches), invoice.invoice_number, format_cents(invoice.amount_cents),
        )
        return order

    return run_with_retry(_op)


def add_garment(order_id: int, data: dict) -> Garment:
    """
    Add a garment (and optional services) to an existing order.

    Raises:
        ValidationError: If the payload is invalid
        OrderError: If order not found
    """
    garment_patch, service_patches = _validate_garment_payload(data)

    def _op():
        order = _lock_order(order_id)

        if order.status == ORDER_STATUS_CANCELLED:
            raise OrderError(
                f"Order {order.order_number} is cancelled; restore it before adding garments",
                status_code=409,
            )

        garment = _build_garment(order, garment_patch, service_patches)
        db.session.expire(order, ["garments"])
        refresh_order_status(order)
        payment_service.sync_invoice_with_services(order.id)
        db.session.commit()
        return garment

    return run_with_retry(_op)


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise OrderError(f"Order {order_id} not found", status_code=404)
    return order


def cancel_order(order_id: int, reason: str | None = None) -> Order:
    """
    Cancel an order; its garments and service lines are frozen.

    Payments are untouched: money already taken is settled through refunds.

    Raises:
        OrderError: 404 if not found, 409 if already cancelled or completed
    """
    def _op():
        order = _lock_order(order_id)

        if order.status == ORDER_STATUS_CANCELLED:
            raise OrderError("This order is already cancelled", status_code=409)
        if order.status == ORDER_STATUS_COMPLETED:
            raise OrderError(
                "Completed orders cannot be cancelled. Use the refund process instead.",
                status_code=409,
            )

        previous = order.status
        order.status = ORDER_STATUS_CANCELLED
        order.cancelled_at = utcnow()
        order.cancellation_reason = (reason or "").strip() or None
        db.session.commit()

        current_app.logger.info(
            "Order %s cancelled (was %s): %s", order.order_number, previous, order.cancellation_reason or "no reason given"
        )
        return order

    return run_with_retry(_op)


def restore_order(order_id: int) -> Order:
    """
    Restore a cancelled order; the status is re-derived from garment stages.

    Raises:
        OrderError: 404 if not found, 409 if the order is not cancelled
    """
    def _op():
        order = _lock_order(order_id)

        if order.status != ORDER_STATUS_CANCELLED:
            raise OrderError("Only cancelled orders can be restored", status_code=409)

        order.status = calculate_order_status(g.stage for g in order.garments)
        order.cancelled_at = None
        order.cancellation_reason = None
        db.session.commit()

        current_app.logger.info("Order %s restored as %s", order.order_number, order.status)
        return order

    return run_with_retry(_op)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise OrderError(f"Order {order_id} not found", status_code=404)
    return order


def get_order_detail(order_id: int) -> dict:
    """Order with garments, services, invoice, payment history and summary."""
    order = get_order(order_id)
    summary = payment_service.calculate_order_summary(order)

    data = order.to_dict()
    data["garments"] = [g.to_dict() for g in order.garments]
    data["invoice"] = order.invoice.to_dict() if order.invoice else None
    data["payments"] = (
        payment_service.get_invoice_payment_history(order.invoice.id) if order.invoice else []
    )
    data["summary"] = summary.to_dict()
    return data
