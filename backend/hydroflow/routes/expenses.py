# Overview: Flask API routes for driver expenses.

from flask import Blueprint, request, jsonify, current_app

from ..errors import DomainError
from ..services import expense_service
from ..validation import ValidationError, parse_expense, parse_expense_review


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.get("")
def list_expenses_route():
    expenses = expense_service.list_expenses(
        driver_id=request.args.get("driver_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200


@expenses_bp.post("")
def record_expense_route():
    """
    Record a driver expense (PENDING until reviewed).

    Request body:
    {
        "driver_id": 3,
        "amount": "50.00",
        "category": "FUEL",
        "expense_date": "2025-01-15",
        "payment_method": "CASH_ON_HAND" | "COMPANY_ACCOUNT"
    }
    """
    try:
        data = parse_expense(request.get_json(silent=True))
        expense = expense_service.record_expense(**data)
        return jsonify({"expense": expense.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.post("/<int:expense_id>/review")
def review_expense_route(expense_id: int):
    try:
        data = parse_expense_review(request.get_json(silent=True))
        expense = expense_service.review_expense(expense_id, **data)
        return jsonify({"expense": expense.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to review expense")
        return jsonify({"error": "Internal server error"}), 500
