# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from .. import permissions
from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    data = request.get_json(silent=True) or {}
    username = data.get("username") or data.get("email")
    password = data.get("password")

    if not all([username, password]):
        return jsonify({"kind": "InvalidInput", "error": "username/email and password required"}), 400

    result = auth_service.login(username, password)
    if not result:
        return jsonify({"kind": "Unauthorized", "error": "Invalid credentials"}), 401

    user, token = result
    return jsonify({
        "token": token,
        "user": user.to_dict(),
        "permissions": permissions.actions_for(user.role),
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "permissions": permissions.actions_for(user.role),
    }), 200
