# Overview: Flask API routes for cash handovers; parses input and returns JSON responses.

"""
Cash Handover API Routes

WHY: Drivers hand over collected cash; admins verify, adjust or reject.

DESIGN:
- GET /pending/<driver_id> previews the unlinked pool without writing
- POST / freezes the pool into a PENDING handover (one per driver)
- cancel / resolve only act on PENDING handovers (409 otherwise)
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import DomainError
from ..models.finance import HANDOVER_STATUSES
from ..services import handover_service
from ..validation import ValidationError, parse_handover_resolution, parse_handover_submission
from hydroflow.time_utils import parse_iso_date


handovers_bp = Blueprint("handovers", __name__, url_prefix="/api/cash-handovers")


@handovers_bp.get("")
def list_handovers_route():
    status = request.args.get("status")
    if status and status.upper() not in HANDOVER_STATUSES:
        return jsonify({"error": f"status must be one of {', '.join(HANDOVER_STATUSES)}"}), 400

    try:
        start = parse_iso_date(request.args.get("start_date"))
        end = parse_iso_date(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "start_date and end_date must be YYYY-MM-DD"}), 400

    page = max(1, request.args.get("page", default=1, type=int))
    limit = max(1, min(request.args.get("limit", default=50, type=int), 200))

    result = handover_service.list_handovers(
        status=status.upper() if status else None,
        driver_id=request.args.get("driver_id", type=int),
        start=start,
        end=end,
        page=page,
        limit=limit,
    )
    return jsonify(result), 200


@handovers_bp.get("/<int:handover_id>")
def get_handover_route(handover_id: int):
    try:
        handover = handover_service.get_handover(handover_id)
        return jsonify({"handover": handover.to_dict(include_items=True)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@handovers_bp.get("/pending/<int:driver_id>")
def pending_snapshot_route(driver_id: int):
    try:
        return jsonify(handover_service.compute_pending_snapshot(driver_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute pending cash snapshot")
        return jsonify({"error": "Internal server error"}), 500


@handovers_bp.post("")
def submit_handover_route():
    """
    Submit a cash handover.

    Request body:
    {
        "driver_id": 3,
        "actual_cash": "850.00",
        "notes": "...",  (optional)
        "shift_start": "2025-01-15T06:00:00Z",  (optional)
        "shift_end": "2025-01-15T18:00:00Z"  (optional)
    }

    Returns:
        201: Handover created with linked items
        400: Invalid input
        404: Driver not found
        409: Driver already has a PENDING handover
    """
    try:
        req = parse_handover_submission(request.get_json(silent=True))
        handover = handover_service.submit_handover(req)
        return jsonify({"handover": handover.to_dict(include_items=True)}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit cash handover")
        return jsonify({"error": "Internal server error"}), 500


@handovers_bp.post("/<int:handover_id>/cancel")
def cancel_handover_route(handover_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        handover_service.cancel_handover(handover_id, actor=payload.get("actor"))
        return jsonify({"cancelled": True, "handover_id": handover_id}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel cash handover")
        return jsonify({"error": "Internal server error"}), 500


@handovers_bp.post("/<int:handover_id>/resolve")
def resolve_handover_route(handover_id: int):
    """
    Resolve a PENDING handover.

    Request body:
    {
        "decision": "VERIFIED" | "REJECTED" | "ADJUSTED",
        "verified_by": "admin",  (optional)
        "admin_notes": "...",  (optional)
        "adjustment_amount": "-50.00"  (required for ADJUSTED)
    }
    """
    try:
        req = parse_handover_resolution(handover_id, request.get_json(silent=True))
        handover = handover_service.resolve_handover(req)
        return jsonify({"handover": handover.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resolve cash handover")
        return jsonify({"error": "Internal server error"}), 500
