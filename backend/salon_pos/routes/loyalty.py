# Overview: Flask API routes for branch loyalty balances and history.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..services import loyalty_service
from ..services.loyalty_service import InsufficientPointsError, LoyaltyError
from ..validation import ValidationError, coerce_int, required_str


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.get("/<client_id>")
def balances_route(client_id: str):
    """All branch balances for a client, or one branch with ?branch_id=."""
    branch_id = request.args.get("branch_id")
    if branch_id:
        return jsonify({
            "client_id": client_id,
            "branch_id": branch_id,
            "points": loyalty_service.get_loyalty_points(client_id, branch_id),
        }), 200

    accounts = loyalty_service.get_all_branch_loyalty_points(client_id)
    return jsonify({
        "client_id": client_id,
        "accounts": [a.to_dict() for a in accounts],
    }), 200


@loyalty_bp.get("/<client_id>/history")
def history_route(client_id: str):
    try:
        limit = coerce_int("limit", request.args.get("limit", 50), minimum=1)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    entries = loyalty_service.get_loyalty_history(client_id, request.args.get("branch_id"), limit)
    return jsonify({"entries": [e.to_dict() for e in entries]}), 200


@loyalty_bp.get("/<client_id>/verify")
def verify_route(client_id: str):
    branch_id = request.args.get("branch_id")
    if not branch_id:
        return jsonify({"error": "branch_id required"}), 400

    check = loyalty_service.verify_loyalty_balance(client_id, branch_id)
    return jsonify({
        "client_id": client_id,
        "branch_id": branch_id,
        "balance": check.balance,
        "log_sum": check.log_sum,
        "consistent": check.consistent,
    }), 200


@loyalty_bp.post("/<client_id>/redeem")
@require_actor
def redeem_route(client_id: str):
    """Body: {"branch_id": str, "points": int, "bill_id": int?}"""
    try:
        data = request.get_json(silent=True) or {}
        branch_id = required_str("branch_id", data.get("branch_id"))
        points = coerce_int("points", data.get("points"), minimum=1)
        bill_id = data.get("bill_id")
        if bill_id is not None:
            bill_id = coerce_int("bill_id", bill_id, minimum=1)

        discount = loyalty_service.redeem_loyalty_points(
            client_id, branch_id, points, bill_id, actor=g.actor
        )
        return jsonify({
            "client_id": client_id,
            "branch_id": branch_id,
            "points_redeemed": points,
            "discount_cents": discount,
            "balance": loyalty_service.get_loyalty_points(client_id, branch_id),
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InsufficientPointsError as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 409
    except LoyaltyError as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to redeem loyalty points")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/<client_id>/grant")
@require_actor
def grant_route(client_id: str):
    """Body: {"branch_id": str, "points": int, "description": str}"""
    try:
        data = request.get_json(silent=True) or {}
        branch_id = required_str("branch_id", data.get("branch_id"))
        points = coerce_int("points", data.get("points"), minimum=1)
        description = required_str("description", data.get("description"), max_length=255)

        entry = loyalty_service.grant_loyalty_points(
            client_id, branch_id, points, description, actor=g.actor
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to grant loyalty points")
        return jsonify({"error": "Internal server error"}), 500
