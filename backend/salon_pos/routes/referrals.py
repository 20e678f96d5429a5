# Overview: Flask API routes for referral codes and referral processing.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..services import referral_service
from ..services.referral_service import AlreadyProcessedError, ReferralError
from ..validation import ValidationError, required_str


referrals_bp = Blueprint("referrals", __name__, url_prefix="/api/referrals")


@referrals_bp.get("/codes/<client_id>")
def codes_route(client_id: str):
    """
    With ?branch_id=: the client's code for that branch (issued on first
    request once the client has visited). Without: every issued code.
    """
    branch_id = request.args.get("branch_id")
    if not branch_id:
        codes = referral_service.get_all_referral_codes(client_id)
        return jsonify({"client_id": client_id, "codes": [c.to_dict() for c in codes]}), 200

    try:
        code = referral_service.get_referral_code(client_id, branch_id)
    except ReferralError as e:
        current_app.logger.exception("Failed to issue referral code")
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 500

    if code is None:
        return jsonify({
            "error": "Client has not visited this branch",
            "client_id": client_id,
            "branch_id": branch_id,
        }), 404
    return jsonify({"client_id": client_id, "branch_id": branch_id, "referral_code": code}), 200


@referrals_bp.get("/validate/<code>")
def validate_route(code: str):
    referral = referral_service.validate_referral_code(code)
    if referral is None:
        return jsonify({"valid": False}), 200
    return jsonify({
        "valid": True,
        "referrer_id": referral.client_id,
        "branch_id": referral.branch_id,
        "referral_code": referral.code,
    }), 200


@referrals_bp.post("/process")
@require_actor
def process_route():
    """Body: {"new_client_id": str, "referral_code": str, "branch_id": str?}"""
    try:
        data = request.get_json(silent=True) or {}
        new_client_id = required_str("new_client_id", data.get("new_client_id"))

        result = referral_service.process_referral(
            new_client_id,
            data.get("referral_code") or data.get("code"),
            data.get("branch_id"),
            actor=g.actor,
        )
        return jsonify(result.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except AlreadyProcessedError as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 409
    except ReferralError as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to process referral")
        return jsonify({"error": "Internal server error"}), 500


@referrals_bp.get("/stats/<client_id>")
def stats_route(client_id: str):
    return jsonify(referral_service.get_referral_stats(client_id, request.args.get("branch_id"))), 200
