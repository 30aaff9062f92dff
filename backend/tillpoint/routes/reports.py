# Overview: Flask API routes for reporting; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..services import reporting_service
from ..decorators import require_auth, require_permission


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales")
@require_auth
@require_permission("VIEW_REPORTS")
def sales_report_route():
    """Query: start, end, group_by (day|week|month), payment_method, category_id"""
    report = reporting_service.sales_report(
        start=request.args.get("start"),
        end=request.args.get("end"),
        group_by=request.args.get("group_by", "day"),
        payment_method=request.args.get("payment_method"),
        category_id=request.args.get("category_id", type=int),
    )
    return jsonify(report), 200


@reports_bp.get("/inventory")
@require_auth
@require_permission("VIEW_REPORTS")
def inventory_report_route():
    report = reporting_service.inventory_report(category_id=request.args.get("category_id", type=int))
    return jsonify(report), 200


@reports_bp.get("/customers")
@require_auth
@require_permission("VIEW_REPORTS")
def customer_report_route():
    report = reporting_service.customer_report(
        start=request.args.get("start"),
        end=request.args.get("end"),
    )
    return jsonify(report), 200
