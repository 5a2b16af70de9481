# backend/countflow/routes/items.py
"""
Count item API routes: assignment, counting, review, comments, history.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import InventoryWorkflowError
from ..services import assignment_service, count_item_service
from .common import json_body, missing_field, unexpected_error, workflow_error


items_bp = Blueprint("inventory_items", __name__, url_prefix="/api/inventory")


# =============================================================================
# ASSIGNMENT
# =============================================================================

@items_bp.route("/items/assign", methods=["POST"])
@require_auth
@require_permission("ASSIGN_COUNT_ITEMS")
def assign_items():
    """
    Assign pending items of a request at one location.

    Request body:
    {
        "request_id": int,
        "location_id": int,
        "mode": "manual" | "automatic",
        "item_ids": [int] (manual),
        "assign_to": int (manual; fallback in automatic mode),
        "divisions": [str], "categories": [str], "groups": [str] (automatic, optional)
    }

    Returns:
        200: {"assigned_count", "per_assignee", "unmatched_count"}
        400: Invalid mode, ids or assignee
        403: Location outside caller's scope
        409: Request not open for assignment
    """
    data = json_body()

    try:
        result = assignment_service.assign_items(
            user_id=g.current_user.id,
            request_id=data["request_id"],
            location_id=data["location_id"],
            mode=data["mode"],
            item_ids=data.get("item_ids"),
            assign_to=data.get("assign_to"),
            classification={
                "divisions": data.get("divisions"),
                "categories": data.get("categories"),
                "groups": data.get("groups"),
            },
        )
        return jsonify(result.to_dict()), 200

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("assign count items")


@items_bp.route("/assignment-rules", methods=["POST"])
@require_auth
@require_permission("CONFIGURE_ASSIGNMENT_RULES")
def configure_rule():
    """
    Create or replace an automatic assignment rule.

    Request body:
    {
        "location_id": int,
        "assign_to": int,
        "rule_type": "division" | "category" | "group",
        "values": [str]   // empty list removes the rule
    }
    """
    data = json_body()

    try:
        rule = assignment_service.configure_rule(
            user_id=g.current_user.id,
            location_id=data["location_id"],
            assign_to=data["assign_to"],
            rule_type=data["rule_type"],
            values=data.get("values"),
        )
        if rule is None:
            return jsonify({"deleted": True}), 200
        return jsonify(rule.to_dict()), 200

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("configure assignment rule")


@items_bp.route("/assignment-rules", methods=["GET"])
@require_auth
@require_permission("CONFIGURE_ASSIGNMENT_RULES")
def list_rules():
    location_id = request.args.get("location_id", type=int)
    if location_id is None:
        return jsonify({"error": "Query parameter location_id is required", "code": "VALIDATION_ERROR"}), 400

    try:
        rules = assignment_service.list_rules(user_id=g.current_user.id, location_id=location_id)
        return jsonify({"rules": [rule.to_dict() for rule in rules]}), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("list assignment rules")


@items_bp.route("/locations/<int:location_id>/users", methods=["GET"])
@require_auth
@require_permission("VIEW_INVENTORY_REQUESTS")
def list_location_users(location_id: int):
    try:
        users = assignment_service.list_location_users(
            user_id=g.current_user.id,
            location_id=location_id,
            role=request.args.get("role"),
        )
        return jsonify({"users": [user.to_dict() for user in users]}), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("list location users")


# =============================================================================
# COUNTING
# =============================================================================

@items_bp.route("/my-work-pool", methods=["GET"])
@require_auth
@require_permission("RECORD_COUNTS")
def my_work_pool():
    """
    Items assigned to the caller.

    Query params: status, division, group.
    """
    try:
        items = count_item_service.get_work_pool(
            user_id=g.current_user.id,
            status=request.args.get("status"),
            division=request.args.get("division"),
            group=request.args.get("group"),
        )
        return jsonify({"items": [item.to_dict() for item in items]}), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("load work pool")


@items_bp.route("/items/<int:item_id>/count-result", methods=["POST"])
@require_auth
@require_permission("RECORD_COUNTS")
def record_count(item_id: int):
    """
    Record a physical count.

    Request body:
    {
        "physical_count": int,
        "counter_comment": str (optional)
    }

    Returns:
        200: Item with derived difference, adjustment type and cost impact
        400: Negative or non-integer count
        403: Item not assigned to caller
        409: Item not countable, or changed concurrently
    """
    data = json_body()

    try:
        item = count_item_service.record_count(
            user_id=g.current_user.id,
            item_id=item_id,
            physical_count=data["physical_count"],
            counter_comment=data.get("counter_comment"),
        )
        return jsonify(item.to_dict()), 200

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("record count")


@items_bp.route("/items/submit-batch", methods=["POST"])
@require_auth
@require_permission("RECORD_COUNTS")
def submit_batch():
    """
    Submit counted items for review.

    Request body:
    {
        "item_ids": [int]
    }
    """
    data = json_body()

    try:
        affected = count_item_service.submit_batch(
            user_id=g.current_user.id,
            item_ids=data["item_ids"],
        )
        return jsonify({"affected_count": affected}), 200

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("submit count batch")


# =============================================================================
# REVIEW
# =============================================================================

@items_bp.route("/manager/review-pool", methods=["GET"])
@require_auth
@require_permission("REVIEW_COUNTS")
def review_pool():
    try:
        items = count_item_service.get_review_pool(user_id=g.current_user.id)
        return jsonify({"items": [item.to_dict() for item in items]}), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("load review pool")


@items_bp.route("/items/<int:item_id>/approve", methods=["POST"])
@require_auth
@require_permission("REVIEW_COUNTS")
def approve_item(item_id: int):
    data = json_body()

    try:
        item = count_item_service.approve_item(
            user_id=g.current_user.id,
            item_id=item_id,
            comment=data.get("comment"),
        )
        return jsonify(item.to_dict()), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("approve count item")


@items_bp.route("/items/<int:item_id>/reject", methods=["POST"])
@require_auth
@require_permission("REVIEW_COUNTS")
def reject_item(item_id: int):
    """
    Send a count back to the counter.

    Request body:
    {
        "comment": str   // required
    }
    """
    data = json_body()

    try:
        item = count_item_service.reject_item(
            user_id=g.current_user.id,
            item_id=item_id,
            comment=data.get("comment"),
        )
        return jsonify(item.to_dict()), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("reject count item")


# =============================================================================
# COMMENTS & HISTORY
# =============================================================================

@items_bp.route("/items/<int:item_id>/comment", methods=["PATCH"])
@require_auth
@require_permission("COMMENT_COUNT_ITEMS")
def add_comment(item_id: int):
    data = json_body()

    try:
        item = count_item_service.add_comment(
            user_id=g.current_user.id,
            item_id=item_id,
            comment=data["comment"],
        )
        return jsonify(item.to_dict()), 200

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("comment on count item")


@items_bp.route("/items/<int:item_id>/history", methods=["GET"])
@require_auth
@require_permission("VIEW_INVENTORY_REQUESTS")
def item_history(item_id: int):
    try:
        events = count_item_service.get_item_history(user_id=g.current_user.id, item_id=item_id)
        return jsonify({"history": [event.to_dict() for event in events]}), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("load count item history")
