# backend/countflow/routes/audits.py
"""
Audit sampling API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import InventoryWorkflowError
from ..services import audit_service
from .common import json_body, missing_field, unexpected_error, workflow_error


audits_bp = Blueprint("inventory_audits", __name__, url_prefix="/api/inventory/audit")


@audits_bp.route("/documents", methods=["POST"])
@require_auth
@require_permission("AUDIT_COUNTS")
def create_document():
    """
    Draw a sample of approved items into a new audit document.

    Request body:
    {
        "location_id": int,
        "sampling_type": "random" | "manual" | "mixed",
        "sampling_percentage": int (0-100; random and mixed),
        "manual_item_ids": [int] (manual and mixed),
        "request_id": int (optional)
    }

    Returns:
        201: Document with its samples
        400: Invalid sampling parameters
        422: No approved items to audit
    """
    data = json_body()

    try:
        document = audit_service.create_audit_document(
            user_id=g.current_user.id,
            location_id=data["location_id"],
            sampling_type=data["sampling_type"],
            sampling_percentage=data.get("sampling_percentage"),
            manual_item_ids=data.get("manual_item_ids"),
            request_id=data.get("request_id"),
        )
        return jsonify(document.to_dict(include_samples=True)), 201

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("create audit document")


@audits_bp.route("/documents/<int:document_id>", methods=["GET"])
@require_auth
@require_permission("AUDIT_COUNTS")
def get_document(document_id: int):
    try:
        document = audit_service.get_audit_document(user_id=g.current_user.id, document_id=document_id)
        return jsonify(document.to_dict(include_samples=True)), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("load audit document")


@audits_bp.route("/samples/<int:sample_id>/result", methods=["POST"])
@require_auth
@require_permission("AUDIT_COUNTS")
def record_result(sample_id: int):
    """
    Record the auditor's recount for one sample.

    Request body:
    {
        "audit_physical_count": int,
        "approved": bool,
        "rejection_reason": str (required when approved is false)
    }
    """
    data = json_body()

    try:
        sample = audit_service.record_audit_result(
            user_id=g.current_user.id,
            sample_id=sample_id,
            audit_physical_count=data["audit_physical_count"],
            approved=data["approved"],
            rejection_reason=data.get("rejection_reason"),
        )
        return jsonify(sample.to_dict()), 200

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("record audit result")


@audits_bp.route("/documents/<int:document_id>/decision", methods=["POST"])
@require_auth
@require_permission("DECIDE_AUDIT_DOCUMENTS")
def decide_document(document_id: int):
    """
    Approve or reject a completed audit document.

    Request body:
    {
        "approval_result": "approved" | "rejected",
        "comments": str (required when rejected)
    }

    Returns:
        200: {"document": {...}, "audited_count": int}
        409: Document not completed, or already decided
    """
    data = json_body()

    try:
        document, audited_count = audit_service.decide_audit_document(
            user_id=g.current_user.id,
            document_id=document_id,
            approval_result=data["approval_result"],
            comments=data.get("comments"),
        )
        return jsonify({"document": document.to_dict(), "audited_count": audited_count}), 200

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("decide audit document")


@audits_bp.route("/work-pool", methods=["GET"])
@require_auth
@require_permission("AUDIT_COUNTS")
def work_pool():
    """
    Auditor pool.

    Query params: location_id (optional; lists the sampling population).
    """
    try:
        pool = audit_service.get_auditor_pool(
            user_id=g.current_user.id,
            location_id=request.args.get("location_id", type=int),
        )
        return jsonify(pool), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("load auditor pool")
