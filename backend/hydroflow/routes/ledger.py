# Overview: Flask API routes for customer and driver ledgers; read-only.

from flask import Blueprint, request, jsonify

from ..errors import DomainError
from ..services import ledger_service, wallet_service


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _limit() -> int:
    return max(1, min(request.args.get("limit", default=200, type=int), 1000))


@ledger_bp.get("/customers/<int:customer_id>")
def customer_ledger_route(customer_id: int):
    """Entries newest first, with container wallets and a consistency check."""
    try:
        entries = ledger_service.get_customer_ledger(customer_id, limit=_limit())
        wallets = wallet_service.get_customer_wallets(customer_id)
        check = ledger_service.verify_customer_ledger(customer_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({
        "customer_id": customer_id,
        "balance": check["stored_balance"],
        "consistent": check["consistent"],
        "entries": [e.to_dict() for e in entries],
        "wallets": [w.to_dict() for w in wallets],
    }), 200


@ledger_bp.get("/drivers/<int:driver_id>")
def driver_ledger_route(driver_id: int):
    try:
        entries = ledger_service.get_driver_ledger(driver_id, limit=_limit())
        check = ledger_service.verify_driver_ledger(driver_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({
        "driver_id": driver_id,
        "balance": check["stored_balance"],
        "consistent": check["consistent"],
        "entries": [e.to_dict() for e in entries],
    }), 200
