# Overview: Service-layer operations for invoices, payments, and refunds; encapsulates billing rules and database work.

"""
Payment Processing Service

WHY: Orders are paid through one invoice. Customers pay in several
installments (deposit at drop-off, balance at pickup) by cash, card, check or
an external terminal, and shops refund part or all of a payment later.

DESIGN PRINCIPLES:
- Payments are separate from orders (many-to-one via the invoice)
- Payments are never deleted; refunds raise refunded_amount_cents
- Balance and status always come from payment_calculations, never inline sums
- Invoice amount follows the order's active total whenever services change
"""

from flask import current_app

from ..extensions import db
from ..models import Order, Garment, GarmentService, Invoice, Payment, Refund
from ..time_utils import utcnow
from . import payment_calculations as calc
from .concurrency import lock_for_update, run_with_retry


class PaymentError(Exception):
    """Raised for payment operation errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


# =============================================================================
# PAYMENT METHODS / TYPES (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_CHECK = "check"
METHOD_EXTERNAL_POS = "external_pos"
METHOD_OTHER = "other"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_CHECK,
    METHOD_EXTERNAL_POS,
    METHOD_OTHER,
]

# Card payments wait for the processor callback; everything else is recorded
# after the money is already in hand.
PROCESSOR_METHODS = frozenset({METHOD_CARD})

VALID_PAYMENT_TYPES = ["payment", "deposit"]

VALID_REFUND_METHODS = [METHOD_CASH, METHOD_EXTERNAL_POS, METHOD_OTHER]

REFUNDABLE_STATUSES = frozenset({calc.RECORD_COMPLETED, calc.RECORD_PARTIALLY_REFUNDED})


# =============================================================================
# INVOICE STATUS (CONSTANTS)
# =============================================================================

INVOICE_STATUS_PENDING = "pending"
INVOICE_STATUS_PARTIALLY_PAID = "partially_paid"
INVOICE_STATUS_PAID = "paid"

_INVOICE_STATUS_BY_PAYMENT_STATUS = {
    calc.PAYMENT_STATUS_UNPAID: INVOICE_STATUS_PENDING,
    calc.PAYMENT_STATUS_PARTIAL: INVOICE_STATUS_PARTIALLY_PAID,
    calc.PAYMENT_STATUS_PAID: INVOICE_STATUS_PAID,
    calc.PAYMENT_STATUS_OVERPAID: INVOICE_STATUS_PAID,
}


# =============================================================================
# ORDER TOTALS
# =============================================================================

def get_order_service_lines(order_id: int) -> list[GarmentService]:
    """Every service line on the order, removed ones included."""
    return (
        db.session.query(GarmentService)
        .join(Garment, GarmentService.garment_id == Garment.id)
        .filter(Garment.order_id == order_id)
        .order_by(GarmentService.id)
        .all()
    )


def calculate_order_active_total(order: Order) -> int:
    return calc.calculate_active_total(
        get_order_service_lines(order.id),
        order.discount_cents,
        order.tax_cents,
    )


def get_invoice_payments(invoice_id: int) -> list[Payment]:
    """All payment attempts on an invoice, any status, oldest first."""
    return db.session.query(Payment).filter_by(invoice_id=invoice_id).order_by(Payment.id).all()


def calculate_order_summary(order: Order) -> calc.PaymentSummary:
    """Engine output for an order (the single source of truth for balances)."""
    invoice = order.invoice
    payments = get_invoice_payments(invoice.id) if invoice else []
    return calc.calculate_payment_status(calculate_order_active_total(order), payments)


def get_order_balance(order_id: int) -> dict:
    """
    Complete balance status for an order.

    Returns:
        - order_total_cents: Active total (removed services excluded)
        - paid_amount_cents: Net paid (payments minus refunds)
        - balance_due_cents / credit_cents / amount_due_cents
        - payment_status: unpaid, partial, paid, overpaid
        - percentage
        - order_number, client_name, client_email, invoice_id
    """
    order = db.session.get(Order, order_id)
    if not order:
        raise PaymentError(f"Order {order_id} not found", status_code=404)

    summary = calculate_order_summary(order)
    return {
        "order_id": order.id,
        "order_total_cents": summary.active_total_cents,
        "paid_amount_cents": summary.net_paid_cents,
        "amount_due_cents": summary.amount_due_cents,
        "balance_due_cents": summary.balance_due_cents,
        "credit_cents": summary.credit_cents,
        "payment_status": summary.payment_status,
        "percentage": summary.percentage,
        "order_number": order.order_number,
        "client_name": order.client_name,
        "client_email": order.client_email,
        "invoice_id": order.invoice.id if order.invoice else None,
    }


# =============================================================================
# INVOICES
# =============================================================================

def create_invoice_for_order(order: Order) -> Invoice:
    """Create the order's invoice inside the caller's transaction."""
    if order.invoice:
        return order.invoice

    prefix = current_app.config.get("INVOICE_NUMBER_PREFIX", "INV")
    invoice = Invoice(
        order_id=order.id,
        invoice_number=f"{prefix}-{order.id:06d}",
        amount_cents=0,
        deposit_amount_cents=0,
        status=INVOICE_STATUS_PENDING,
    )
    db.session.add(invoice)
    db.session.flush()
    _sync_invoice_total_locked(order, invoice)
    return invoice


def sync_invoice_with_services(order_id: int) -> dict:
    """
    Recalculate the invoice total from the order's active services.

    Call inside the transaction that changed the services; does not commit.

    Returns:
        {"changed": bool, "old_total_cents": int, "new_total_cents": int}
    """
    order = db.session.get(Order, order_id)
    if not order:
        raise PaymentError(f"Order {order_id} not found", status_code=404)

    invoice = lock_for_update(db.session.query(Invoice).filter_by(order_id=order_id)).first()
    if not invoice:
        # No invoice yet; it picks up the total when it is created
        return {"changed": False, "old_total_cents": 0, "new_total_cents": 0}

    return _sync_invoice_total_locked(order, invoice)


def recalculate_invoice_status(invoice: Invoice) -> str:
    """
    Derive invoice status from the engine.

    unpaid -> pending, partial -> partially_paid, paid/overpaid -> paid
    """
    summary = calc.calculate_payment_status(invoice.amount_cents, get_invoice_payments(invoice.id))
    new_status = _INVOICE_STATUS_BY_PAYMENT_STATUS[summary.payment_status]
    if new_status != invoice.status:
        current_app.logger.info(
            "Invoice %s status %s -> %s", invoice.invoice_number, invoice.status, new_status
        )
        invoice.status = new_status
        invoice.updated_at = utcnow()
    return new_status


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def record_payment(
    invoice_id: int,
    payment_method: str,
    amount_cents: int,
    payment_type: str = "payment",
    external_reference: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Record a payment against an invoice.

    Manual methods (cash, check, external terminal, other) are completed
    immediately. Card payments start pending and are completed or failed by
    the processor callback.

    Overpayment is allowed (the excess shows as a credit on the order).

    Raises:
        PaymentError: If invoice not found, amount invalid, or method invalid
    """
    def _op():
        if payment_method not in VALID_PAYMENT_METHODS:
            raise PaymentError(f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}")

        if payment_type not in VALID_PAYMENT_TYPES:
            raise PaymentError(f"Invalid payment type: {payment_type}. Must be one of {VALID_PAYMENT_TYPES}")

        if amount_cents <= 0:
            raise PaymentError("Payment amount must be positive")

        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise PaymentError(f"Invoice {invoice_id} not found", status_code=404)

        is_processor = payment_method in PROCESSOR_METHODS
        payment = Payment(
            invoice_id=invoice.id,
            payment_type=payment_type,
            payment_method=payment_method,
            amount_cents=amount_cents,
            refunded_amount_cents=0,
            status=calc.RECORD_PENDING if is_processor else calc.RECORD_COMPLETED,
            external_reference=external_reference,
            notes=notes,
            processed_at=None if is_processor else utcnow(),
        )
        db.session.add(payment)
        db.session.flush()

        recalculate_invoice_status(invoice)
        db.session.commit()

        current_app.logger.info(
            "Recorded %s payment %s of %s on invoice %s (%s)",
            payment_method, payment.id, calc.format_cents(amount_cents), invoice.invoice_number, payment.status,
        )
        return payment

    return run_with_retry(_op)


# =============================================================================
# PROCESSOR CALLBACKS
# =============================================================================

def complete_payment(payment_id: int, external_reference: str | None = None) -> Payment:
    """Processor confirmed the charge: pending -> completed."""
    return _resolve_pending(payment_id, calc.RECORD_COMPLETED, external_reference=external_reference)


def fail_payment(payment_id: int, reason: str | None = None) -> Payment:
    """Processor declined the charge: pending -> failed."""
    return _resolve_pending(payment_id, calc.RECORD_FAILED, reason=reason)


def cancel_payment(payment_id: int) -> Payment:
    """Customer abandoned the charge: pending -> cancelled."""
    return _resolve_pending(payment_id, calc.RECORD_CANCELLED, reason="Cancelled before completion")


def _resolve_pending(
    payment_id: int,
    new_status: str,
    reason: str | None = None,
    external_reference: str | None = None,
) -> Payment:
    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise PaymentError(f"Payment {payment_id} not found", status_code=404)

        if payment.status != calc.RECORD_PENDING:
            raise PaymentError(
                f"Payment {payment_id} is {payment.status}, only pending payments can become {new_status}",
                status_code=409,
            )

        payment.status = new_status
        payment.processed_at = utcnow()
        if reason:
            payment.failure_reason = reason
        if external_reference:
            payment.external_reference = external_reference

        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=payment.invoice_id)).first()
        recalculate_invoice_status(invoice)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# REFUNDS
# =============================================================================

def refund_payment(
    payment_id: int,
    amount_cents: int,
    reason: str | None = None,
    refund_method: str = METHOD_CASH,
) -> Refund:
    """
    Refund part or all of a payment.

    The refund is recorded as its own row and the payment's cumulative
    refunded_amount_cents is raised; the payment moves to partially_refunded
    or refunded.

    Raises:
        PaymentError: If payment not found, not refundable, or amount exceeds
            the remaining refundable amount
    """
    def _op():
        if amount_cents <= 0:
            raise PaymentError("Refund amount must be positive")

        if refund_method not in VALID_REFUND_METHODS:
            raise PaymentError(f"Invalid refund method: {refund_method}. Must be one of {VALID_REFUND_METHODS}")

        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise PaymentError(f"Payment {payment_id} not found", status_code=404)

        if payment.status not in REFUNDABLE_STATUSES:
            raise PaymentError("Can only refund completed or partially refunded payments", status_code=409)

        previously_refunded = payment.refunded_amount_cents or 0
        total_after = previously_refunded + amount_cents
        if total_after > payment.amount_cents:
            remaining = payment.amount_cents - previously_refunded
            raise PaymentError(
                "Refund amount exceeds remaining refundable amount. "
                f"Maximum refundable: {calc.format_cents(remaining)}",
                status_code=409,
                details={"remaining_refundable_cents": remaining},
            )

        refund_reason = reason.strip() if reason and reason.strip() else "Manual refund processed"
        refund = Refund(
            payment_id=payment.id,
            amount_cents=amount_cents,
            reason=refund_reason,
            refund_type="full" if amount_cents == payment.amount_cents else "partial",
            refund_method=refund_method,
            status="succeeded",
        )
        db.session.add(refund)

        payment.refunded_amount_cents = total_after
        payment.refunded_at = utcnow()
        payment.status = (
            calc.RECORD_REFUNDED if total_after == payment.amount_cents else calc.RECORD_PARTIALLY_REFUNDED
        )
        db.session.flush()

        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=payment.invoice_id)).first()
        recalculate_invoice_status(invoice)
        db.session.commit()

        current_app.logger.info(
            "Refunded %s of payment %s (%s)", calc.format_cents(amount_cents), payment.id, payment.status
        )
        return refund

    return run_with_retry(_op)


# =============================================================================
# REPORTING
# =============================================================================

def get_invoice_payment_history(invoice_id: int) -> list[dict]:
    """
    Payments and refunds on an invoice, oldest first.

    Refund rows carry type="refund" and a negative amount; the engine skips
    them because their effect is already in refunded_amount_cents.
    """
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise PaymentError(f"Invoice {invoice_id} not found", status_code=404)

    history = []
    for payment in get_invoice_payments(invoice_id):
        history.append(payment.to_dict())
        history.extend(r.to_dict() for r in payment.refunds)
    return history


def get_invoice_summary(invoice_id: int) -> dict:
    """Invoice, its history, and the engine summary of the order behind it."""
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise PaymentError(f"Invoice {invoice_id} not found", status_code=404)

    history = get_invoice_payment_history(invoice_id)
    summary = calculate_order_summary(invoice.order)
    return {
        "invoice": invoice.to_dict(),
        "payments": history,
        "summary": summary.to_dict(),
    }


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _sync_invoice_total_locked(order: Order, invoice: Invoice) -> dict:
    old_total = invoice.amount_cents or 0
    new_total = calculate_order_active_total(order)

    if new_total == old_total:
        return {"changed": False, "old_total_cents": old_total, "new_total_cents": new_total}

    percent = current_app.config.get("INVOICE_DEPOSIT_PERCENT", 50)
    suggested_deposit = calc.calculate_line_total(max(new_total, 0), percent) // 100
    invoice.amount_cents = new_total
    invoice.deposit_amount_cents = max(invoice.deposit_amount_cents or 0, suggested_deposit)
    invoice.updated_at = utcnow()
    db.session.flush()

    recalculate_invoice_status(invoice)

    current_app.logger.info(
        "Invoice %s total changed from %s to %s",
        invoice.invoice_number, calc.format_cents(old_total), calc.format_cents(new_total),
    )
    return {"changed": True, "old_total_cents": old_total, "new_total_cents": new_total}
