# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import inventory_service
from ..decorators import require_auth, require_permission


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjust")
@require_auth
@require_permission("ADJUST_INVENTORY")
def adjust_route():
    """
    Manual stock adjustment.

    Body: {product_id | variant_id, quantity_change, reason, notes}
    Available to: admin, manager
    """
    adjustment = inventory_service.adjust_stock(request.get_json(silent=True) or {}, g.current_user.id)
    return jsonify({"adjustment": adjustment.to_dict()}), 201


@inventory_bp.post("/bulk-adjust")
@require_auth
@require_permission("BULK_ADJUST_INVENTORY")
def bulk_adjust_route():
    """All-or-nothing batch of adjustments. Body: {adjustments: [...]}"""
    data = request.get_json(silent=True) or {}
    rows = inventory_service.bulk_adjust(data.get("adjustments"), g.current_user.id)
    return jsonify({"adjustments": [row.to_dict() for row in rows]}), 201


@inventory_bp.get("/adjustments")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_adjustments_route():
    rows, total = inventory_service.list_adjustments(
        product_id=request.args.get("product_id", type=int),
        variant_id=request.args.get("variant_id", type=int),
        reason=request.args.get("reason"),
        sale_id=request.args.get("sale_id", type=int),
        limit=request.args.get("limit", 100, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"adjustments": [row.to_dict() for row in rows], "total": total}), 200
