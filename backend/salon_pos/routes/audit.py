# Overview: Read-only audit log API.

from flask import Blueprint, jsonify, request

from ..services import audit_service
from ..validation import ValidationError, coerce_int


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("/branches/<branch_id>")
def branch_audit_route(branch_id: str):
    try:
        limit = coerce_int("limit", request.args.get("limit", 100), minimum=1)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    entries = audit_service.get_branch_audit_log(branch_id, limit)
    return jsonify({"entries": [e.to_dict() for e in entries]}), 200


@audit_bp.get("/bills/<int:bill_id>")
def bill_audit_route(bill_id: int):
    entries = audit_service.get_bill_audit_log(bill_id)
    return jsonify({"entries": [e.to_dict() for e in entries]}), 200
