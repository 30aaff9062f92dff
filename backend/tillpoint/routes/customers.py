# Overview: Flask API routes for customer operations; parses input and returns JSON responses.

from flask import Blueprint, g, request, jsonify

from ..services import customer_service
from ..decorators import require_auth, require_permission


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def list_customers_route():
    customers, total = customer_service.list_customers(
        search=request.args.get("search"),
        include_inactive=request.args.get("include_inactive", "").lower() in {"1", "true"},
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"customers": [c.to_dict() for c in customers], "total": total}), 200


@customers_bp.post("")
@require_auth
@require_permission("CREATE_CUSTOMER")
def create_customer_route():
    customer = customer_service.create_customer(request.get_json(silent=True))
    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def get_customer_route(customer_id: int):
    customer = customer_service.get_customer(customer_id)
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def deactivate_customer_route(customer_id: int):
    """Soft delete; sales keep their customer reference."""
    customer = customer_service.deactivate_customer(customer_id)
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.get("/<int:customer_id>/rewards")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def list_rewards_route(customer_id: int):
    rewards = customer_service.list_rewards(customer_id)
    return jsonify({"rewards": [r.to_dict() for r in rewards]}), 200


@customers_bp.post("/<int:customer_id>/rewards")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def create_reward_route(customer_id: int):
    reward = customer_service.create_reward(customer_id, request.get_json(silent=True), g.current_user.id)
    return jsonify({"reward": reward.to_dict(), "loyalty_points": reward.customer.loyalty_points}), 201


@customers_bp.patch("/<int:customer_id>/rewards/<int:reward_id>")
@require_auth
@require_permission("REDEEM_REWARD")
def redeem_reward_route(customer_id: int, reward_id: int):
    reward = customer_service.redeem_reward(customer_id, reward_id, g.current_user.id)
    return jsonify({"reward": reward.to_dict()}), 200
