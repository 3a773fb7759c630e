# Overview: Flask API routes for garments and service lines; parses input and returns JSON responses.

# backend/stitchdesk/routes/garments.py
"""
Garment API Routes

DESIGN:
- Service line actions (add, edit, remove, restore, toggle completion)
- Pickup confirmation (Ready For Pickup -> Done)
- Pickup balance pre-check and deferred-payment log
- Garment field edits and history

Every service-line response carries the updated garment stage and the order
balance, so a client can reconcile its optimistic state in one round trip.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import garment_service, payment_service
from ..services.garment_service import GarmentError
from ..validation import ValidationError


garments_bp = Blueprint("garments", __name__, url_prefix="/api/garments")


def _service_response(service, status: int = 200):
    garment = service.garment
    return jsonify({
        "service": service.to_dict(),
        "garment": garment.to_dict(include_services=False),
        "balance": payment_service.get_order_balance(garment.order_id),
    }), status


def _error_response(e: Exception):
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    body = {"error": str(e)}
    if getattr(e, "details", None):
        body["details"] = e.details
    return jsonify(body), e.status_code


# =============================================================================
# GARMENT READS
# =============================================================================

@garments_bp.get("/<int:garment_id>")
def get_garment_route(garment_id: int):
    try:
        return jsonify(garment_service.get_garment_detail(garment_id)), 200

    except GarmentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get garment")
        return jsonify({"error": "Internal server error"}), 500


@garments_bp.get("/<int:garment_id>/history")
def get_garment_history_route(garment_id: int):
    """Garment history, newest first."""
    try:
        return jsonify({"history": garment_service.get_history(garment_id)}), 200

    except GarmentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get garment history")
        return jsonify({"error": "Internal server error"}), 500


@garments_bp.patch("/<int:garment_id>")
def update_garment_route(garment_id: int):
    """
    Edit garment fields.

    Request body (any of):
    {
        "name": "Wedding dress",
        "notes": "Bring shoes to fitting",
        "due_date": "2026-06-01",
        "event_date": "2026-06-06"
    }

    Returns:
        200: {garment}
        400: Invalid input
        404: Garment not found
        409: Order is cancelled
    """
    try:
        garment = garment_service.update_garment(garment_id, request.get_json(silent=True))
        return jsonify({"garment": garment.to_dict()}), 200

    except (ValidationError, GarmentError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update garment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SERVICE LINES
# =============================================================================

@garments_bp.post("/<int:garment_id>/services")
def add_service_route(garment_id: int):
    """
    Add a service line.

    Request body:
    {
        "name": "Hem trousers",
        "unit_price_cents": 2500,
        "quantity": 1,  (optional, default 1)
        "unit": "flat_rate",  (optional: flat_rate, hour, day)
        "description": "..."  (optional)
    }

    Returns:
        201: {service, garment, balance}
        400: Invalid input
        404: Garment not found
    """
    try:
        service = garment_service.add_service(garment_id, request.get_json(silent=True))
        return _service_response(service, 201)

    except (ValidationError, GarmentError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add service")
        return jsonify({"error": "Internal server error"}), 500


@garments_bp.patch("/<int:garment_id>/services/<int:service_id>")
def update_service_route(garment_id: int, service_id: int):
    """
    Edit a service line.

    Returns:
        200: {service, garment, balance}
        400: Invalid input
        404: Not found
        409: Service is done or removed
    """
    try:
        service = garment_service.update_service(garment_id, service_id, request.get_json(silent=True))
        return _service_response(service)

    except (ValidationError, GarmentError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update service")
        return jsonify({"error": "Internal server error"}), 500


@garments_bp.post("/<int:garment_id>/services/<int:service_id>/remove")
def remove_service_route(garment_id: int, service_id: int):
    """
    Soft-remove a service line.

    Request body (optional):
    {"reason": "Customer declined"}
    """
    try:
        data = request.get_json(silent=True) or {}
        service = garment_service.remove_service(garment_id, service_id, reason=data.get("reason"))
        return _service_response(service)

    except GarmentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove service")
        return jsonify({"error": "Internal server error"}), 500


@garments_bp.post("/<int:garment_id>/services/<int:service_id>/restore")
def restore_service_route(garment_id: int, service_id: int):
    try:
        service = garment_service.restore_service(garment_id, service_id)
        return _service_response(service)

    except GarmentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to restore service")
        return jsonify({"error": "Internal server error"}), 500


@garments_bp.post("/<int:garment_id>/services/<int:service_id>/completion")
def toggle_completion_route(garment_id: int, service_id: int):
    """
    Mark a service line done / not done.

    Request body (optional):
    {"is_done": true}   (omit to flip the current value)
    """
    try:
        data = request.get_json(silent=True) or {}
        is_done = data.get("is_done")
        if is_done is not None and not isinstance(is_done, bool):
            return jsonify({"error": "is_done must be a boolean"}), 400

        service = garment_service.toggle_service_completion(garment_id, service_id, is_done=is_done)
        return _service_response(service)

    except GarmentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to toggle service completion")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PICKUP
# =============================================================================

@garments_bp.post("/<int:garment_id>/pickup")
def pickup_route(garment_id: int):
    """
    Confirm pickup.

    Returns:
        200: {garment}
        404: Garment not found
        409: Garment is not Ready For Pickup
    """
    try:
        garment = garment_service.mark_picked_up(garment_id)
        return jsonify({"garment": garment.to_dict(include_services=False)}), 200

    except GarmentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm pickup")
        return jsonify({"error": "Internal server error"}), 500


@garments_bp.get("/<int:garment_id>/balance-check")
def balance_check_route(garment_id: int):
    """Whether pickup should prompt for the outstanding order balance."""
    try:
        return jsonify(garment_service.check_garment_balance_status(garment_id)), 200

    except GarmentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check garment balance")
        return jsonify({"error": "Internal server error"}), 500


@garments_bp.post("/<int:garment_id>/deferred-pickup")
def deferred_pickup_route(garment_id: int):
    """
    Log that the garment leaves with a balance due.

    Request body (optional):
    {"notes": "Customer will pay Friday"}
    """
    try:
        data = request.get_json(silent=True) or {}
        event = garment_service.log_deferred_payment_pickup(garment_id, notes=data.get("notes"))
        return jsonify({"event": event}), 201

    except GarmentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to log deferred pickup")
        return jsonify({"error": "Internal server error"}), 500
