# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from . import permissions
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"kind": "Unauthorized", "error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        user = session_service.validate_session(token)

        if not user:
            return jsonify({"kind": "Unauthorized", "error": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_permission(action: str):
    """Ask the access policy whether the current user's role may perform `action`."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"kind": "Unauthorized", "error": "Authentication required"}), 401

            user = g.current_user
            decision = permissions.evaluate(user.role, action, request.path)
            if not decision.allowed:
                current_app.logger.info(
                    "Permission denied: user=%s role=%s action=%s path=%s",
                    user.id, user.role, action, request.path,
                )
                return jsonify({
                    "kind": "Unauthorized",
                    "error": "Permission denied",
                    "required_permission": action,
                    "message": decision.reason,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
