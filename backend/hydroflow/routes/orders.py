# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Payloads are parsed into typed requests before any transaction starts
- ValidationError -> 400, DomainError -> its own status (404/409/403)
- Completion is idempotent: a repeat returns 200 with applied=false
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import DomainError
from ..services import audit_service, order_service
from ..validation import (
    ValidationError,
    parse_bulk_assign,
    parse_completion,
    parse_create_order,
    parse_generate_orders,
    parse_order_patch,
    parse_unable_to_deliver,
)
from hydroflow.time_utils import parse_iso_date


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
def list_orders_route():
    try:
        scheduled_date = parse_iso_date(request.args.get("date"))
    except ValueError:
        return jsonify({"error": "date must be YYYY-MM-DD"}), 400

    limit = max(1, min(request.args.get("limit", default=200, type=int), 500))
    orders = order_service.list_orders(
        status=request.args.get("status"),
        driver_id=request.args.get("driver_id", type=int),
        customer_id=request.args.get("customer_id", type=int),
        scheduled_date=scheduled_date,
        limit=limit,
    )
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.post("")
def create_order_route():
    """
    Create a single order.

    Request body:
    {
        "customer_id": 1,
        "scheduled_date": "2025-01-15",
        "items": [{"product_id": 1, "quantity": 2}],
        "driver_id": 3,  (optional, defaults to route driver)
        "delivery_charge": "0.00",  (optional)
        "discount": "0.00",  (optional)
        "enforce_credit": true  (optional)
    }

    Returns:
        201: Order created
        400: Invalid input
        404: Customer/product/driver not found
        409: Duplicate order, insufficient stock or credit limit exceeded
    """
    try:
        req = parse_create_order(request.get_json(silent=True))
        order = order_service.create_order(req)
        return jsonify({"order": order.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/generate")
def generate_orders_route():
    """Generate SCHEDULED orders for all customers due on a date."""
    try:
        req = parse_generate_orders(request.get_json(silent=True))
        result = order_service.generate_orders(req)
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to generate orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/assign")
def bulk_assign_route():
    try:
        order_ids, driver_id = parse_bulk_assign(request.get_json(silent=True))
        count = order_service.bulk_assign_orders(order_ids, driver_id)
        return jsonify({"count": count}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to assign orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/<int:order_id>/history")
def order_history_route(order_id: int):
    """Audit events for one order, oldest first."""
    try:
        order = order_service.get_order(order_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code

    events = audit_service.list_audit_events("order", order.id)
    return jsonify({"order_id": order.id, "events": [ev.to_dict() for ev in events]}), 200


@orders_bp.patch("/<int:order_id>")
def update_order_route(order_id: int):
    """
    Edit an open order. Any change to a COMPLETED order returns 409.
    """
    try:
        patch = parse_order_patch(request.get_json(silent=True))
        order = order_service.update_order(order_id, patch)
        return jsonify({"order": order.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id)
        return jsonify({"deleted": True}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/complete")
def complete_order_route(order_id: int):
    """
    Complete a delivery.

    Request body:
    {
        "cash_collected": "200.00",
        "payment_method": "CASH",
        "items": [
            {"product_id": 1, "filled_given": 2, "empty_taken": 2, "damaged_returned": 0}
        ]  (optional, defaults to the existing lines)
    }

    Returns:
        200: Order completed (or already completed: applied=false)
        400: Invalid input
        404: Order not found
        409: Negative container balance, insufficient stock, or order not completable
    """
    try:
        req = parse_completion(order_id, request.get_json(silent=True))
        result = order_service.complete_order(req)
        return jsonify(result.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/unable-to-deliver")
def unable_to_deliver_route(order_id: int):
    """Driver reports a failed delivery (CANCEL or RESCHEDULE)."""
    try:
        req = parse_unable_to_deliver(order_id, request.get_json(silent=True))
        order, new_order = order_service.mark_unable_to_deliver(req)
        return jsonify({
            "order": order.to_dict(),
            "new_order": new_order.to_dict() if new_order else None,
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark order undeliverable")
        return jsonify({"error": "Internal server error"}), 500
