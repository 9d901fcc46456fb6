# backend/hydroflow/routes/inventory.py
"""
Warehouse inventory routes.

Each write is one transaction on one locked product row and leaves a
StockMovement behind. Deliveries never go through here; they move stock as
part of order completion.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import DomainError
from ..services import inventory_service, wallet_service
from ..validation import (
    ValidationError,
    parse_adjust_stock,
    parse_damage_or_loss,
    parse_refill,
    parse_restock,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _run(parser, operation, product_id: int, action: str):
    try:
        data = parser(request.get_json(silent=True))
        product = operation(product_id=product_id, **data)
        return jsonify({"product": product.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to %s product %s", action, product_id)
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/<int:product_id>/restock")
def restock_route(product_id: int):
    """Body: {"filled_quantity": 100, "empty_quantity": 0, "note": "..."}"""
    return _run(parse_restock, inventory_service.restock_product, product_id, "restock")


@inventory_bp.post("/<int:product_id>/refill")
def refill_route(product_id: int):
    """Body: {"quantity": 50}; moves empty -> filled."""
    return _run(parse_refill, inventory_service.refill_bottles, product_id, "refill")


@inventory_bp.post("/<int:product_id>/damage")
def damage_route(product_id: int):
    """Body: {"quantity": 2, "type": "DAMAGE" | "LOSS", "reason": "..."}"""
    return _run(parse_damage_or_loss, inventory_service.record_damage_or_loss, product_id, "record damage for")


@inventory_bp.post("/<int:product_id>/adjust")
def adjust_route(product_id: int):
    """Body: {"stock_filled": 10, "stock_empty": 5, "stock_damaged": 0, "reason": "..."}"""
    return _run(parse_adjust_stock, inventory_service.adjust_stock, product_id, "adjust")


@inventory_bp.get("/<int:product_id>/movements")
def movements_route(product_id: int):
    limit = max(1, min(request.args.get("limit", default=200, type=int), 500))
    try:
        movements = inventory_service.list_stock_movements(product_id, limit=limit)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/stats")
def stats_route():
    return jsonify(inventory_service.get_inventory_stats()), 200


@inventory_bp.get("/bottles")
def bottles_route():
    rows = wallet_service.get_bottles_with_customers(request.args.get("product_id", type=int))
    return jsonify({"bottles": rows}), 200
