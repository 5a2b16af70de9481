# backend/countflow/routes/reports.py
"""
Count report API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import InventoryWorkflowError
from ..services import report_service
from .common import unexpected_error, workflow_error


reports_bp = Blueprint("inventory_reports", __name__, url_prefix="/api/inventory/reports")


@reports_bp.route("/summary", methods=["GET"])
@require_auth
@require_permission("VIEW_INVENTORY_REPORTS")
def summary():
    try:
        report = report_service.summary(
            user_id=g.current_user.id,
            request_id=request.args.get("request_id", type=int),
        )
        return jsonify(report), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("build summary report")


@reports_bp.route("/by-division", methods=["GET"])
@require_auth
@require_permission("VIEW_INVENTORY_REPORTS")
def by_division():
    """
    Query params: division_code (required), request_id.
    """
    division_code = (request.args.get("division_code") or "").strip()
    if not division_code:
        return jsonify({"error": "Query parameter division_code is required", "code": "VALIDATION_ERROR"}), 400

    try:
        report = report_service.by_division(
            user_id=g.current_user.id,
            division_code=division_code,
            request_id=request.args.get("request_id", type=int),
        )
        return jsonify(report), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("build division report")


@reports_bp.route("/by-location", methods=["GET"])
@require_auth
@require_permission("VIEW_INVENTORY_REPORTS")
def by_location():
    """
    Query params: location_id (required), request_id.
    """
    location_id = request.args.get("location_id", type=int)
    if location_id is None:
        return jsonify({"error": "Query parameter location_id is required", "code": "VALIDATION_ERROR"}), 400

    try:
        report = report_service.by_location(
            user_id=g.current_user.id,
            location_id=location_id,
            request_id=request.args.get("request_id", type=int),
        )
        return jsonify(report), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("build location report")
