# backend/countflow/services/count_item_service.py
"""
Count item state machine.

WHY: Each count item is one product at one location. Its status decides who
may write which fields; the derived reconciliation fields are only ever
written together with physical_count.

STATES:
    pending -> assigned -> counted -> reviewing -> approved | rejected
    rejected -> counted (recount by the same assignee)
    approved -> audited -> sent_for_approval -> adjustment_approved | adjustment_rejected -> adjusted

Re-issuing an already applied transition raises InvalidTransition; batch
submission treats already advanced ids as no-ops.
"""
from __future__ import annotations

import logging
from typing import NamedTuple

from sqlalchemy import update

from ..errors import CommentRequired, Forbidden, InvalidTransition, NotAssignee, NotFound, ValidationError
from ..extensions import db
from ..models import CountItem, InventoryRequest
from ..models.requests import (
    ADJUSTMENT_NEGATIVE,
    ADJUSTMENT_NONE,
    ADJUSTMENT_POSITIVE,
    ITEM_STATUS_APPROVED,
    ITEM_STATUS_ASSIGNED,
    ITEM_STATUS_COUNTED,
    ITEM_STATUS_REJECTED,
    ITEM_STATUS_REVIEWING,
    REQUEST_STATUS_CANCELLED,
    REQUEST_STATUS_DRAFT,
)
from ..permissions import (
    ROLE_ADMIN,
    ROLE_AUDITOR,
    ROLE_COORDINATOR,
    ROLE_MANAGER,
    ROLE_USER,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .history_service import ENTITY_COUNT_ITEM, commit_with_history, get_entity_history, record_event
from .permission_service import ensure_location_scope, get_actor, require_role, visible_location_ids
from .request_service import clean_id_list, refresh_request_status


logger = logging.getLogger(__name__)

REVIEWER_ROLES = (ROLE_ADMIN, ROLE_MANAGER)

# Statuses from which the assignee may record a count
COUNTABLE_STATUSES = (ITEM_STATUS_ASSIGNED, ITEM_STATUS_REJECTED)

# Comment field written by each role
COMMENT_FIELDS = {
    ROLE_USER: "counter_comment",
    ROLE_MANAGER: "manager_comment",
    ROLE_ADMIN: "manager_comment",
    ROLE_AUDITOR: "auditor_comment",
    ROLE_COORDINATOR: "coordinator_comment",
}


class Adjustment(NamedTuple):
    difference: int
    adjustment_type: str
    cost_impact_cents: int


def compute_adjustment(physical_count: int, system_inventory: int, unit_cost_cents: int) -> Adjustment:
    """
    Reconcile a physical count against the system quantity.

    difference = physical - system; type follows the sign; cost impact is
    difference * unit cost, in cents.
    """
    difference = physical_count - system_inventory
    if difference > 0:
        adjustment_type = ADJUSTMENT_POSITIVE
    elif difference < 0:
        adjustment_type = ADJUSTMENT_NEGATIVE
    else:
        adjustment_type = ADJUSTMENT_NONE
    return Adjustment(difference, adjustment_type, difference * unit_cost_cents)


def apply_physical_count(item: CountItem, physical_count: int) -> Adjustment:
    """The only writer of physical_count and its derived fields."""
    adjustment = compute_adjustment(physical_count, item.system_inventory, item.unit_cost_cents)
    item.physical_count = physical_count
    item.difference = adjustment.difference
    item.adjustment_type = adjustment.adjustment_type
    item.cost_impact_cents = adjustment.cost_impact_cents
    return adjustment


def validate_count_value(value, field: str = "physical_count") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be a non-negative integer")
    if value < 0:
        raise ValidationError(f"{field} cannot be negative")
    return value


def count_snapshot(item: CountItem) -> dict:
    return {
        "status": item.status,
        "physical_count": item.physical_count,
        "difference": item.difference,
        "adjustment_type": item.adjustment_type,
        "cost_impact_cents": item.cost_impact_cents,
    }


def _lock_item(item_id: int) -> CountItem:
    item = lock_for_update(db.session.query(CountItem).filter_by(id=item_id)).first()
    if not item:
        raise NotFound(f"Count item {item_id} not found")
    return item


def _ensure_request_open(item: CountItem) -> None:
    status = item.request.status
    if status == REQUEST_STATUS_CANCELLED:
        raise InvalidTransition(f"Request {item.request.request_number} is cancelled")
    if status == REQUEST_STATUS_DRAFT:
        raise InvalidTransition(f"Request {item.request.request_number} has not been sent")


# =============================================================================
# COUNTING
# =============================================================================

def record_count(
    *,
    user_id: int,
    item_id: int,
    physical_count: int,
    counter_comment: str | None = None,
) -> CountItem:
    """
    assigned | rejected -> counted.

    Only the assignee may count, managers included. The derived fields are
    recomputed in the same flush.
    """
    physical_count = validate_count_value(physical_count)
    user = get_actor(user_id)

    def _op():
        item = _lock_item(item_id)
        if item.assigned_to != user.id:
            raise NotAssignee(f"Count item {item.id} is not assigned to you")
        _ensure_request_open(item)
        if item.status not in COUNTABLE_STATUSES:
            raise InvalidTransition(f"Cannot record a count for an item in {item.status} status")

        old_value = count_snapshot(item)
        apply_physical_count(item, physical_count)
        item.status = ITEM_STATUS_COUNTED
        item.counted_by = user.id
        item.counted_at = utcnow()
        if counter_comment is not None:
            item.counter_comment = counter_comment
        db.session.flush()

        record_event(
            entity_type=ENTITY_COUNT_ITEM,
            entity_id=item.id,
            action="counted",
            actor_user_id=user.id,
            description=f"Counted {item.item_code}: {physical_count} (system {item.system_inventory})",
            old_value=old_value,
            new_value=count_snapshot(item),
        )
        refresh_request_status([item.request_id], actor_user_id=user.id)
        commit_with_history()
        return item

    return run_with_retry(_op)


def submit_batch(*, user_id: int, item_ids: list[int]) -> int:
    """
    counted -> reviewing for the caller's own items.

    Ids that are not the caller's or not "counted" are excluded silently.
    Returns the number of items actually advanced, so a retried call
    returns 0 for items the first call already moved.
    """
    item_ids = clean_id_list(item_ids, "item_ids")
    user = get_actor(user_id)
    if not item_ids:
        return 0

    def _op():
        conditions = (
            CountItem.id.in_(item_ids),
            CountItem.assigned_to == user.id,
            CountItem.status == ITEM_STATUS_COUNTED,
        )
        eligible = lock_for_update(
            db.session.query(CountItem.id, CountItem.request_id).filter(*conditions)
        ).all()
        if not eligible:
            return 0

        now = utcnow()
        stmt = (
            update(CountItem)
            .where(*conditions)
            .values(status=ITEM_STATUS_REVIEWING, version_id=CountItem.version_id + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        affected = db.session.execute(stmt).rowcount

        for eligible_id, _request_id in eligible:
            record_event(
                entity_type=ENTITY_COUNT_ITEM,
                entity_id=eligible_id,
                action="submitted_for_review",
                actor_user_id=user.id,
                old_value={"status": ITEM_STATUS_COUNTED},
                new_value={"status": ITEM_STATUS_REVIEWING},
            )
        refresh_request_status({request_id for _id, request_id in eligible}, actor_user_id=user.id)
        commit_with_history()
        logger.info("User %s submitted %d of %d item(s) for review", user.id, affected, len(item_ids))
        return affected

    return run_with_retry(_op)


# =============================================================================
# MANAGER REVIEW
# =============================================================================

def _review(user_id: int, item_id: int, new_status: str, comment: str | None, action: str) -> CountItem:
    user = get_actor(user_id)
    require_role(user, *REVIEWER_ROLES, action="review counts")

    def _op():
        item = _lock_item(item_id)
        ensure_location_scope(user, item.location_id)
        if item.status != ITEM_STATUS_REVIEWING:
            raise InvalidTransition(f"Cannot {action} an item in {item.status} status")

        item.status = new_status
        if new_status == ITEM_STATUS_APPROVED:
            item.approved_by = user.id
            item.approved_at = utcnow()
        if comment is not None:
            item.manager_comment = comment
        db.session.flush()

        record_event(
            entity_type=ENTITY_COUNT_ITEM,
            entity_id=item.id,
            action=new_status,
            actor_user_id=user.id,
            description=comment,
            old_value={"status": ITEM_STATUS_REVIEWING},
            new_value={"status": new_status},
        )
        refresh_request_status([item.request_id], actor_user_id=user.id)
        commit_with_history()
        return item

    return run_with_retry(_op)


def approve_item(*, user_id: int, item_id: int, comment: str | None = None) -> CountItem:
    """reviewing -> approved; manager of the item's location (or admin)."""
    return _review(user_id, item_id, ITEM_STATUS_APPROVED, comment, "approve")


def reject_item(*, user_id: int, item_id: int, comment: str | None) -> CountItem:
    """reviewing -> rejected; the comment goes back to the counter and is mandatory."""
    comment = (comment or "").strip()
    if not comment:
        raise CommentRequired("A rejection comment is required")
    return _review(user_id, item_id, ITEM_STATUS_REJECTED, comment, "reject")


def add_comment(*, user_id: int, item_id: int, comment: str) -> CountItem:
    """Write the comment field belonging to the caller's role."""
    comment = (comment or "").strip()
    if not comment:
        raise ValidationError("comment is required")
    user = get_actor(user_id)
    field = COMMENT_FIELDS.get(user.role)
    if not field:
        raise Forbidden(f"Role {user.role!r} cannot comment on count items")

    def _op():
        item = _lock_item(item_id)
        if user.role == ROLE_USER and item.assigned_to != user.id:
            raise NotAssignee(f"Count item {item.id} is not assigned to you")
        if user.role == ROLE_MANAGER:
            ensure_location_scope(user, item.location_id)

        old_comment = getattr(item, field)
        setattr(item, field, comment)
        db.session.flush()

        record_event(
            entity_type=ENTITY_COUNT_ITEM,
            entity_id=item.id,
            action="commented",
            actor_user_id=user.id,
            description=comment,
            old_value={field: old_comment},
            new_value={field: comment},
        )
        commit_with_history()
        return item

    return run_with_retry(_op)


# =============================================================================
# POOLS
# =============================================================================

def get_work_pool(
    *,
    user_id: int,
    status: str | None = None,
    division: str | None = None,
    group: str | None = None,
) -> list[CountItem]:
    """Items assigned to the caller in open requests."""
    user = get_actor(user_id)
    query = (
        db.session.query(CountItem)
        .join(InventoryRequest, InventoryRequest.id == CountItem.request_id)
        .filter(
            CountItem.assigned_to == user.id,
            InventoryRequest.status != REQUEST_STATUS_CANCELLED,
        )
    )
    if status:
        query = query.filter(CountItem.status == status)
    if division:
        query = query.filter(CountItem.division_code == division)
    if group:
        query = query.filter(CountItem.group_code == group)
    return query.order_by(CountItem.request_id, CountItem.item_code).all()


def get_review_pool(*, user_id: int) -> list[CountItem]:
    """Items awaiting review at the caller's location (all locations for admin)."""
    user = get_actor(user_id)
    require_role(user, *REVIEWER_ROLES, action="review counts")

    query = db.session.query(CountItem).filter(CountItem.status == ITEM_STATUS_REVIEWING)
    allowed = visible_location_ids(user)
    if allowed is not None:
        query = query.filter(CountItem.location_id.in_(allowed or [-1]))
    return query.order_by(CountItem.counted_at.asc(), CountItem.id.asc()).all()


def get_item_history(*, user_id: int, item_id: int):
    user = get_actor(user_id)
    item = db.session.get(CountItem, item_id)
    if not item:
        raise NotFound(f"Count item {item_id} not found")
    allowed = visible_location_ids(user)
    if allowed is not None and item.location_id not in allowed:
        raise Forbidden(f"Count item {item.id} is outside your location")
    return get_entity_history(ENTITY_COUNT_ITEM, item.id)
