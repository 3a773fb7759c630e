# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/stitchdesk/routes/payments.py
"""
Payment Processing API Routes

WHY: Orders are paid through their invoice over several visits.

DESIGN:
- Record payments (cash, card, check, external terminal, other)
- Processor callbacks complete or fail pending card payments
- Cancel pending payments
- Manual refunds against completed payments
- Invoice payment history with the engine summary
"""

from flask import Blueprint, request, jsonify, current_app

from ..models import Payment
from ..services import payment_service
from ..services.payment_service import PaymentError
from ..validation import (
    PAYMENT_POLICY,
    ValidationError,
    validate_payload,
    enforce_rules_payment,
    require_positive_cents,
)


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _payment_response(payment: Payment, status: int = 200):
    invoice = payment.invoice
    return jsonify({
        "payment": payment.to_dict(),
        "invoice": invoice.to_dict(),
        "balance": payment_service.get_order_balance(invoice.order_id),
    }), status


def _error_response(e: PaymentError):
    body = {"error": str(e)}
    if e.details:
        body["details"] = e.details
    return jsonify(body), e.status_code


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("/")
def record_payment_route():
    """
    Record a payment against an invoice.

    Request body:
    {
        "invoice_id": 12,
        "payment_method": "cash",
        "amount_cents": 5000,
        "payment_type": "deposit",  (optional, default payment)
        "external_reference": "TERM-8812",  (optional)
        "notes": "..."  (optional)
    }

    PAYMENT METHODS:
    - cash, check, external_pos, other: recorded as completed
    - card: recorded as pending until the processor callback

    Returns:
        201: {payment, invoice, balance}
        400: Invalid input
        404: Invoice not found
    """
    try:
        patch = validate_payload(
            model=Payment,
            payload=request.get_json(silent=True),
            policy=PAYMENT_POLICY,
            partial=False,
        )
        enforce_rules_payment(patch)

        payment = payment_service.record_payment(
            invoice_id=patch["invoice_id"],
            payment_method=patch["payment_method"],
            amount_cents=patch["amount_cents"],
            payment_type=patch.get("payment_type") or "payment",
            external_reference=patch.get("external_reference"),
            notes=patch.get("notes"),
        )
        return _payment_response(payment, 201)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PaymentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PROCESSOR CALLBACKS
# =============================================================================

@payments_bp.post("/<int:payment_id>/complete")
def complete_payment_route(payment_id: int):
    """
    Processor confirmed a pending payment.

    Request body (optional):
    {"external_reference": "ch_123"}
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.complete_payment(payment_id, external_reference=data.get("external_reference"))
        return _payment_response(payment)

    except PaymentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/fail")
def fail_payment_route(payment_id: int):
    """
    Processor declined a pending payment.

    Request body (optional):
    {"reason": "card_declined"}
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.fail_payment(payment_id, reason=data.get("reason"))
        return _payment_response(payment)

    except PaymentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark payment failed")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/cancel")
def cancel_payment_route(payment_id: int):
    try:
        payment = payment_service.cancel_payment(payment_id)
        return _payment_response(payment)

    except PaymentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REFUNDS
# =============================================================================

@payments_bp.post("/<int:payment_id>/refunds")
def refund_payment_route(payment_id: int):
    """
    Refund part or all of a payment.

    Request body:
    {
        "amount_cents": 2000,
        "reason": "Service removed",  (optional)
        "refund_method": "cash"  (optional: cash, external_pos, other)
    }

    Returns:
        201: {refund, payment, invoice, balance}
        400: Invalid input
        404: Payment not found
        409: Payment not refundable or amount above the refundable remainder
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = require_positive_cents(data.get("amount_cents"), "amount_cents")

        refund = payment_service.refund_payment(
            payment_id,
            amount_cents=amount_cents,
            reason=data.get("reason"),
            refund_method=data.get("refund_method") or payment_service.METHOD_CASH,
        )
        payment = refund.payment
        invoice = payment.invoice
        return jsonify({
            "refund": refund.to_dict(),
            "payment": payment.to_dict(),
            "invoice": invoice.to_dict(),
            "balance": payment_service.get_order_balance(invoice.order_id),
        }), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PaymentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/invoices/<int:invoice_id>")
def get_invoice_payments_route(invoice_id: int):
    """
    Invoice, payment/refund history and the engine summary.

    Returns:
        200: {invoice, payments, summary}
        404: Invoice not found
    """
    try:
        return jsonify(payment_service.get_invoice_summary(invoice_id)), 200

    except PaymentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice payments")
        return jsonify({"error": "Internal server error"}), 500
