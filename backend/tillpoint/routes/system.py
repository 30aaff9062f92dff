# Overview: Flask API routes for system health; parses input and returns JSON responses.

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


system_bp = Blueprint("system", __name__)


@system_bp.get("/health")
def health():
    """Liveness plus a trivial database round trip."""
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        current_app.logger.exception("Health check: database unavailable")
        db.session.rollback()
        database = "unavailable"

    status = 200 if database == "ok" else 503
    return jsonify({
        "status": "ok" if status == 200 else "degraded",
        "database": database,
        "timestamp": to_utc_z(utcnow()),
    }), status
