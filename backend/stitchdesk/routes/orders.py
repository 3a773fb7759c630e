# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/stitchdesk/routes/orders.py
"""
Order API Routes

DESIGN:
- Create an order with garments and services in one request
- Read order detail (garments, invoice, payments, summary)
- Read the order balance (payment engine output)
- Add garments to an existing order
- Cancel and restore an order
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import order_service, payment_service
from ..services.order_service import OrderError
from ..services.payment_service import PaymentError
from ..validation import ValidationError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/")
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "client_name": "Ada Lovelace",
        "client_email": "ada@example.com",  (optional)
        "discount_cents": 0,  (optional)
        "tax_cents": 0,  (optional)
        "garments": [
            {"name": "Suit jacket", "services": [{"name": "Take in sides", "unit_price_cents": 3500}]}
        ]
    }

    Returns:
        201: Order detail
        400: Invalid input
        500: Server error
    """
    try:
        order = order_service.create_order(request.get_json(silent=True))
        return jsonify(order_service.get_order_detail(order.id)), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return jsonify(order_service.get_order_detail(order_id)), 200

    except OrderError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/balance")
def get_order_balance_route(order_id: int):
    """
    Balance for an order.

    Returns:
        200: {order_total_cents, paid_amount_cents, balance_due_cents, credit_cents, payment_status, ...}
        404: Order not found
    """
    try:
        return jsonify(payment_service.get_order_balance(order_id)), 200

    except PaymentError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order balance")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/garments")
def add_garment_route(order_id: int):
    """
    Add a garment to an order.

    Request body:
    {
        "name": "Bridesmaid dress",
        "due_date": "2026-05-30",  (optional)
        "services": [...]  (optional)
    }
    """
    try:
        garment = order_service.add_garment(order_id, request.get_json(silent=True))
        return jsonify({"garment": garment.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add garment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    """
    Cancel an order.

    Request body (optional):
    {
        "reason": "Customer changed their mind"
    }

    Returns:
        200: Order detail
        404: Order not found
        409: Order already cancelled or completed
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(order_id, reason=data.get("reason"))
        return jsonify(order_service.get_order_detail(order.id)), 200

    except OrderError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/restore")
def restore_order_route(order_id: int):
    try:
        order = order_service.restore_order(order_id)
        return jsonify(order_service.get_order_detail(order.id)), 200

    except OrderError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restore order")
        return jsonify({"error": "Internal server error"}), 500
