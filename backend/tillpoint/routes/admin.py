# Overview: Flask API routes for staff account administration; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..errors import InvalidInput, ItemNotFound
from ..extensions import db
from ..models import User
from ..services import auth_service
from ..decorators import require_auth, require_permission


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/users")
@require_auth
@require_permission("MANAGE_USERS")
def list_users_route():
    users = db.session.query(User).order_by(User.username).all()
    return jsonify({"users": [u.to_dict() for u in users]}), 200


@admin_bp.post("/users")
@require_auth
@require_permission("MANAGE_USERS")
def create_user_route():
    data = request.get_json(silent=True) or {}
    user = auth_service.create_user(
        username=data.get("username"),
        email=data.get("email"),
        password=data.get("password"),
        role=data.get("role", "CASHIER"),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
    )
    return jsonify({"user": user.to_dict()}), 201


@admin_bp.delete("/users/<int:user_id>")
@require_auth
@require_permission("MANAGE_USERS")
def deactivate_user_route(user_id: int):
    """Soft delete; sales and adjustments keep their actor."""
    user = db.session.get(User, user_id)
    if not user:
        raise ItemNotFound("User not found", {"user_id": user_id})
    if user.id == g.current_user.id:
        raise InvalidInput("You cannot deactivate your own account")
    user.is_active = False
    db.session.commit()
    return jsonify({"user": user.to_dict()}), 200
