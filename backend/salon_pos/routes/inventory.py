# Overview: Flask API routes for branch stock batches and FIFO deduction.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..models import UsageType
from ..services import stock_service
from ..services.stock_service import StockError
from ..validation import ValidationError, coerce_int, optional_str, parse_enum, required_str


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/<branch_id>/products/<product_id>/batches")
def batches_route(branch_id: str, product_id: str):
    """Batches for a product (FIFO order). Query params: usage_type, status"""
    try:
        batches = stock_service.get_product_batches(
            branch_id,
            product_id,
            usage_type=request.args.get("usage_type") or None,
            status=request.args.get("status") or None,
        )
    except (StockError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"batches": [b.to_dict() for b in batches]}), 200


@inventory_bp.get("/<branch_id>/products/<product_id>/available")
def available_route(branch_id: str, product_id: str):
    try:
        usage_type = parse_enum("usage_type", UsageType, request.args.get("usage_type"), UsageType.OTC)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "branch_id": branch_id,
        "product_id": product_id,
        "usage_type": usage_type.value,
        "available": stock_service.get_available_quantity(branch_id, product_id, usage_type),
    }), 200


@inventory_bp.get("/<branch_id>/products/<product_id>/preview")
def preview_route(branch_id: str, product_id: str):
    """Which batches a deduction would use. Query params: usage_type, quantity"""
    try:
        usage_type = parse_enum("usage_type", UsageType, request.args.get("usage_type"), UsageType.OTC)
        quantity = coerce_int("quantity", request.args.get("quantity"), minimum=1)
        result = stock_service.preview_fifo_allocation(branch_id, product_id, usage_type, quantity)
        return jsonify(result.to_dict()), 200

    except (ValidationError, StockError) as e:
        return jsonify({"error": str(e)}), 400


@inventory_bp.post("/<branch_id>/deduct")
@require_actor
def deduct_route(branch_id: str):
    """
    Manual FIFO deduction.

    Body: {"product_id": str, "usage_type": "otc"|"salon-use", "quantity": int,
           "reason": str, "notes": str?}

    A shortage is not an error: the response reports success=false with the
    shortfall. Every call is written to the audit log as stock.deduct.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = stock_service.deduct_stock_fifo(
            branch_id,
            required_str("product_id", data.get("product_id")),
            parse_enum("usage_type", UsageType, data.get("usage_type")),
            coerce_int("quantity", data.get("quantity"), minimum=1),
            reason=required_str("reason", data.get("reason")),
            actor=g.actor,
            notes=optional_str(data.get("notes")),
        )
        return jsonify(result.to_dict()), 200

    except (ValidationError, StockError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to deduct stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<branch_id>/movements")
def movements_route(branch_id: str):
    """Query params: product_id, bill_id, limit"""
    try:
        bill_id = request.args.get("bill_id")
        movements = stock_service.get_stock_movements(
            branch_id,
            product_id=request.args.get("product_id") or None,
            bill_id=coerce_int("bill_id", bill_id) if bill_id else None,
            limit=coerce_int("limit", request.args.get("limit", 100), minimum=1),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"movements": [m.to_dict() for m in movements]}), 200
