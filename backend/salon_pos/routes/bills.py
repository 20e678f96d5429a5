# Overview: Flask API routes for bills; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..identity import Witness
from ..models import BillStatus
from ..services import billing_service
from ..services.billing_service import (
    AlreadyFinalizedError,
    BillingError,
    BillNotFoundError,
)
from ..services.loyalty_service import LoyaltyError
from ..validation import ValidationError, coerce_int, parse_date, parse_enum


bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")


def _billing_error_response(e: BillingError):
    if isinstance(e, BillNotFoundError):
        status = 404
    elif isinstance(e, AlreadyFinalizedError):
        status = 409
    else:
        status = 400
    return jsonify({"error": str(e), "code": e.code, "details": e.details}), status


@bills_bp.post("")
@require_actor
def create_bill_route():
    """
    Create a PAID bill and run its side effects.

    Side-effect problems are reported in "warnings"; the bill is created
    regardless (201).
    """
    try:
        result = billing_service.create_bill(request.get_json(silent=True), g.actor)
        return jsonify(result.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LoyaltyError as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to create bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>")
def get_bill_route(bill_id: int):
    try:
        bill = billing_service.get_bill_by_id(bill_id)
        return jsonify({"bill": bill.to_dict()}), 200
    except BillingError as e:
        return _billing_error_response(e)


@bills_bp.get("")
def list_bills_route():
    """
    List bills at a branch (newest first).

    Query params: branch_id (required), status, start_date, end_date
    """
    try:
        branch_id = request.args.get("branch_id")
        if not branch_id:
            return jsonify({"error": "branch_id required"}), 400

        status = request.args.get("status")
        bills = billing_service.get_bills_by_branch(
            branch_id,
            status=parse_enum("status", BillStatus, status) if status else None,
            start_date=parse_date("start_date", request.args.get("start_date")),
            end_date=parse_date("end_date", request.args.get("end_date")),
        )
        return jsonify({"bills": [b.to_dict(include_lines=False) for b in bills], "count": len(bills)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@bills_bp.get("/client/<client_id>")
def client_bills_route(client_id: str):
    bills = billing_service.get_bills_by_client(client_id)
    return jsonify({"bills": [b.to_dict(include_lines=False) for b in bills], "count": len(bills)}), 200


@bills_bp.post("/<int:bill_id>/refund")
@require_actor
def refund_bill_route(bill_id: int):
    try:
        data = request.get_json(silent=True) or {}
        amount = data.get("amount_cents")
        if amount is not None:
            amount = coerce_int("amount_cents", amount, minimum=0)

        bill = billing_service.refund_bill(bill_id, amount, data.get("reason"), g.actor)
        return jsonify({"bill": bill.to_dict()}), 200

    except BillingError as e:
        return _billing_error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to refund bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/<int:bill_id>/void")
@require_actor
def void_bill_route(bill_id: int):
    """
    Void a PAID bill.

    Body: {"reason": str, "witness": {"id": str, "email": str?, "name": str?}}
    """
    try:
        data = request.get_json(silent=True) or {}
        raw_witness = data.get("witness")
        witness = Witness.from_dict(raw_witness) if isinstance(raw_witness, dict) else None

        bill = billing_service.void_bill(bill_id, data.get("reason"), g.actor, witness)
        return jsonify({"bill": bill.to_dict()}), 200

    except BillingError as e:
        return _billing_error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to void bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/summary")
def daily_summary_route():
    """Query params: branch_id (required), date (YYYY-MM-DD, required)"""
    try:
        branch_id = request.args.get("branch_id")
        day = parse_date("date", request.args.get("date"))
        if not branch_id or day is None:
            return jsonify({"error": "branch_id and date required"}), 400

        return jsonify(billing_service.get_daily_sales_summary(branch_id, day)), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
