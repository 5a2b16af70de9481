# backend/countflow/routes/adjustments.py
"""
Adjustment approval API routes: coordinator pool, division gates, execution.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import InventoryWorkflowError
from ..services import adjustment_service
from .common import json_body, missing_field, unexpected_error, workflow_error


adjustments_bp = Blueprint("inventory_adjustments", __name__, url_prefix="/api/inventory")


@adjustments_bp.route("/coordinator/work-pool", methods=["GET"])
@require_auth
@require_permission("COORDINATE_ADJUSTMENTS")
def coordinator_pool():
    try:
        pool = adjustment_service.get_coordinator_pool(
            user_id=g.current_user.id,
            request_id=request.args.get("request_id", type=int),
        )
        return jsonify(pool), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("load coordinator pool")


@adjustments_bp.route("/adjustments/send-for-approval", methods=["POST"])
@require_auth
@require_permission("COORDINATE_ADJUSTMENTS")
def send_for_approval():
    """
    Open division approval gates for a request's reconciled items.

    Request body:
    {
        "request_id": int,
        "comment": str (optional)
    }

    Returns:
        201: {"approvals": [...]}
        400: A division has no configured approver
        422: Nothing reconciled with a difference
    """
    data = json_body()

    try:
        approvals = adjustment_service.open_adjustment_approvals(
            user_id=g.current_user.id,
            request_id=data["request_id"],
            comment=data.get("comment"),
        )
        return jsonify({"approvals": [approval.to_dict() for approval in approvals]}), 201

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("send adjustments for approval")


@adjustments_bp.route("/adjustments", methods=["GET"])
@require_auth
@require_permission("VIEW_INVENTORY_REQUESTS")
def list_approvals():
    """
    Query params: request_id, status.
    """
    try:
        approvals = adjustment_service.list_adjustment_approvals(
            user_id=g.current_user.id,
            request_id=request.args.get("request_id", type=int),
            status=request.args.get("status"),
        )
        return jsonify({"approvals": [approval.to_dict() for approval in approvals]}), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("list adjustment approvals")


@adjustments_bp.route("/adjustments/<int:approval_id>/approve", methods=["POST"])
@require_auth
@require_permission("APPROVE_ADJUSTMENTS")
def approve(approval_id: int):
    try:
        approval = adjustment_service.approve_adjustment(
            user_id=g.current_user.id,
            approval_id=approval_id,
        )
        return jsonify(approval.to_dict()), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("approve adjustment")


@adjustments_bp.route("/adjustments/<int:approval_id>/reject", methods=["POST"])
@require_auth
@require_permission("APPROVE_ADJUSTMENTS")
def reject(approval_id: int):
    """
    Request body:
    {
        "reason": str   // required
    }
    """
    data = json_body()

    try:
        approval = adjustment_service.reject_adjustment(
            user_id=g.current_user.id,
            approval_id=approval_id,
            reason=data.get("reason"),
        )
        return jsonify(approval.to_dict()), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("reject adjustment")


@adjustments_bp.route("/adjustments/execute", methods=["POST"])
@require_auth
@require_permission("COORDINATE_ADJUSTMENTS")
def execute():
    """
    Mark approved adjustments of a request as adjusted.

    Request body:
    {
        "request_id": int,
        "division_code": str (optional)
    }
    """
    data = json_body()

    try:
        totals = adjustment_service.execute_adjustment(
            user_id=g.current_user.id,
            request_id=data["request_id"],
            division_code=data.get("division_code"),
        )
        return jsonify(totals), 200

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("execute adjustments")


@adjustments_bp.route("/division-approvers/<division_code>", methods=["PUT"])
@require_auth
@require_permission("CONFIGURE_DIVISION_APPROVERS")
def configure_division_approvers(division_code: str):
    """
    Replace the approver set of a division.

    Request body:
    {
        "approver_ids": [int]
    }
    """
    data = json_body()

    try:
        approver_ids = adjustment_service.configure_division_approvers(
            user_id=g.current_user.id,
            division_code=division_code,
            approver_ids=data["approver_ids"],
        )
        return jsonify({"division_code": division_code, "approver_ids": approver_ids}), 200

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("configure division approvers")
