# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import sales_service
from ..services import refund_service
from ..decorators import require_auth, require_permission


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_permission("CREATE_SALE")
def create_sale_route():
    """
    Validate, price and commit a sale in one step.

    Body: {items: [{product_id | variant_id, quantity, unit_price?, discount?}],
           customer_id?, payment_method, discount_amount?, loyalty_points_used?, notes?}

    201 with the sale, 400 with every cart error, 409 on a stock conflict.
    Available to: admin, manager, cashier
    """
    data = request.get_json(silent=True) or {}
    sale = sales_service.create_sale(
        items=data.get("items"),
        cashier_id=g.current_user.id,
        payment_method=data.get("payment_method"),
        customer_id=data.get("customer_id"),
        discount_amount=data.get("discount_amount"),
        loyalty_points_used=data.get("loyalty_points_used", 0),
        notes=data.get("notes"),
    )
    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.post("/cart/validate")
@require_auth
@require_permission("CREATE_SALE")
def validate_cart_route():
    """Dry run: errors and totals for a cart, nothing is written."""
    data = request.get_json(silent=True) or {}
    result = sales_service.preview_cart(
        items=data.get("items"),
        customer_id=data.get("customer_id"),
        discount_amount=data.get("discount_amount"),
        loyalty_points_used=data.get("loyalty_points_used", 0),
    )
    return jsonify(result), 200


@sales_bp.get("")
@require_auth
@require_permission("VIEW_SALES")
def list_sales_route():
    """
    Query: start, end, customer_id, cashier_id, payment_method,
    sale_status, min_total, max_total, limit, offset
    """
    sales, total = sales_service.list_sales(
        start=request.args.get("start"),
        end=request.args.get("end"),
        customer_id=request.args.get("customer_id", type=int),
        cashier_id=request.args.get("cashier_id", type=int),
        payment_method=request.args.get("payment_method"),
        sale_status=request.args.get("sale_status"),
        min_total=request.args.get("min_total"),
        max_total=request.args.get("max_total"),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({
        "sales": [s.to_dict(include_items=False) for s in sales],
        "total": total,
    }), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.get("/<int:sale_id>/receipt")
@require_auth
@require_permission("VIEW_SALES")
def receipt_route(sale_id: int):
    return jsonify({"receipt": sales_service.build_receipt(sale_id)}), 200


@sales_bp.post("/<int:sale_id>/refund")
@require_auth
@require_permission("REFUND_SALE")
def refund_route(sale_id: int):
    """
    Refund some or all items of a sale.

    Body: {items: [{sale_item_id | product_id | variant_id, quantity, reason}],
           refund_amount?, refund_method?, notes?}
    Available to: admin, manager
    """
    data = request.get_json(silent=True) or {}
    refund, sale = refund_service.refund_sale(
        sale_id,
        items=data.get("items"),
        actor_id=g.current_user.id,
        refund_amount=data.get("refund_amount"),
        refund_method=data.get("refund_method", "CASH"),
        notes=data.get("notes"),
    )
    return jsonify({"refund": refund.to_dict(), "sale": sale.to_dict()}), 200


@sales_bp.get("/<int:sale_id>/refunds")
@require_auth
@require_permission("VIEW_SALES")
def list_refunds_route(sale_id: int):
    refunds = refund_service.list_refunds(sale_id)
    return jsonify({"refunds": [r.to_dict() for r in refunds]}), 200
