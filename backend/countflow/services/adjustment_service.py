# backend/countflow/services/adjustment_service.py
"""
Division adjustment approval chain.

WHY: A reconciled difference only corrects the system record after every
affected division has signed off. The coordinator opens one approval gate per
division present among a request's reconciled non-zero items; a configured
approver of that division decides it; the coordinator then executes the
approved adjustments.

ITEM FLOW:
    approved | audited | adjustment_rejected
        -> sent_for_approval -> adjustment_approved | adjustment_rejected
    adjustment_approved -> adjusted

Writing the adjustment back to the external inventory system is left to
the system that consumes the "adjusted" items.
"""
from __future__ import annotations

import logging
from collections import defaultdict

from ..errors import (
    AlreadyDecided,
    CommentRequired,
    EmptyInventoryResult,
    InvalidTransition,
    NotEligibleApprover,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import AdjustmentApproval, CountItem, DivisionApprover, InventoryRequest, User
from ..models.approvals import APPROVAL_STATUS_APPROVED, APPROVAL_STATUS_PENDING, APPROVAL_STATUS_REJECTED
from ..models.requests import (
    ITEM_STATUS_ADJUSTED,
    ITEM_STATUS_ADJUSTMENT_APPROVED,
    ITEM_STATUS_ADJUSTMENT_REJECTED,
    ITEM_STATUS_APPROVED,
    ITEM_STATUS_AUDITED,
    ITEM_STATUS_SENT_FOR_APPROVAL,
    REQUEST_STATUS_CANCELLED,
)
from ..permissions import ROLE_ADMIN, ROLE_COORDINATOR
from ..time_utils import utcnow
from .audit_service import undecided_sampled_ids
from .concurrency import lock_for_update, run_with_retry
from .count_item_service import count_snapshot
from .history_service import (
    ENTITY_ADJUSTMENT_APPROVAL,
    ENTITY_COUNT_ITEM,
    commit_with_history,
    record_event,
)
from .permission_service import get_actor, require_role, user_has_permission
from .request_service import clean_id_list, refresh_request_status


logger = logging.getLogger(__name__)

COORDINATOR_ROLES = (ROLE_ADMIN, ROLE_COORDINATOR)

# Items whose count is accepted and whose difference awaits sign-off
RECONCILED_STATUSES = (
    ITEM_STATUS_APPROVED,
    ITEM_STATUS_AUDITED,
    ITEM_STATUS_ADJUSTMENT_REJECTED,
)


def _division_filter(division_code: str | None):
    if division_code is None:
        return CountItem.division_code.is_(None)
    return CountItem.division_code == division_code


def reconciled_items_query(request_id: int | None = None):
    """Reconciled items with a non-zero difference, excluding items under an undecided audit."""
    query = (
        db.session.query(CountItem)
        .join(InventoryRequest, InventoryRequest.id == CountItem.request_id)
        .filter(
            CountItem.status.in_(RECONCILED_STATUSES),
            CountItem.difference.isnot(None),
            CountItem.difference != 0,
            InventoryRequest.status != REQUEST_STATUS_CANCELLED,
            CountItem.id.notin_(undecided_sampled_ids()),
        )
    )
    if request_id is not None:
        query = query.filter(CountItem.request_id == request_id)
    return query.order_by(CountItem.request_id, CountItem.division_code, CountItem.item_code)


def summarize_by_division(items) -> list[dict]:
    totals: dict = defaultdict(lambda: {"item_count": 0, "total_difference": 0, "total_cost_impact_cents": 0})
    for item in items:
        bucket = totals[item.division_code]
        bucket["item_count"] += 1
        bucket["total_difference"] += item.difference or 0
        bucket["total_cost_impact_cents"] += item.cost_impact_cents or 0
    return [
        {"division_code": code, **values}
        for code, values in sorted(totals.items(), key=lambda pair: (pair[0] is None, pair[0] or ""))
    ]


def get_coordinator_pool(*, user_id: int, request_id: int | None = None) -> dict:
    """Reconciled items ready for adjustment approval, with per-division totals."""
    user = get_actor(user_id)
    require_role(user, *COORDINATOR_ROLES, action="coordinate adjustments")

    items = reconciled_items_query(request_id).all()
    return {
        "items": [item.to_dict() for item in items],
        "divisions": summarize_by_division(items),
    }


def get_division_approver_ids(division_code: str | None) -> list[int]:
    """Active configured approvers of a division."""
    if division_code is None:
        return []
    rows = (
        db.session.query(DivisionApprover.user_id)
        .join(User, User.id == DivisionApprover.user_id)
        .filter(DivisionApprover.division_code == division_code, User.is_active.is_(True))
        .order_by(DivisionApprover.user_id)
        .all()
    )
    return [row[0] for row in rows]


def open_adjustment_approvals(
    *,
    user_id: int,
    request_id: int,
    comment: str | None = None,
) -> list[AdjustmentApproval]:
    """
    Send a request's reconciled non-zero items for division approval.

    One pending AdjustmentApproval per division; an existing pending gate
    for the division is reused. Every division must have a configured
    approver, otherwise nothing is applied.
    """
    user = get_actor(user_id)
    require_role(user, *COORDINATOR_ROLES, action="send adjustments for approval")
    comment = (comment or "").strip() or None

    def _op():
        req = lock_for_update(db.session.query(InventoryRequest).filter_by(id=request_id)).first()
        if not req:
            raise NotFound(f"Request {request_id} not found")
        if req.status == REQUEST_STATUS_CANCELLED:
            raise InvalidTransition(f"Request {req.request_number} is cancelled")

        items = lock_for_update(reconciled_items_query(request_id)).all()
        if not items:
            raise EmptyInventoryResult(f"Request {req.request_number} has no reconciled differences to approve")

        by_division: dict[str | None, list[CountItem]] = defaultdict(list)
        for item in items:
            by_division[item.division_code].append(item)

        approvers = {code: get_division_approver_ids(code) for code in by_division}
        missing = sorted((code or "<none>") for code, ids in approvers.items() if not ids)
        if missing:
            raise ValidationError(f"No adjustment approver configured for division(s): {', '.join(missing)}")

        approvals: list[AdjustmentApproval] = []
        for division_code, division_items in by_division.items():
            approval = (
                db.session.query(AdjustmentApproval)
                .filter(
                    AdjustmentApproval.request_id == req.id,
                    AdjustmentApproval.status == APPROVAL_STATUS_PENDING,
                    AdjustmentApproval.division_code.is_(None)
                    if division_code is None
                    else AdjustmentApproval.division_code == division_code,
                )
                .first()
            )
            if approval is None:
                approval = AdjustmentApproval(
                    request_id=req.id,
                    division_code=division_code,
                    approver_ids=approvers[division_code],
                    status=APPROVAL_STATUS_PENDING,
                    comment=comment,
                    opened_by=user.id,
                )
                db.session.add(approval)
                db.session.flush()
                record_event(
                    entity_type=ENTITY_ADJUSTMENT_APPROVAL,
                    entity_id=approval.id,
                    action="opened",
                    actor_user_id=user.id,
                    description=comment,
                    new_value={"division_code": division_code, "approver_ids": approval.approver_ids},
                )
            approvals.append(approval)

            for item in division_items:
                old_status = item.status
                item.status = ITEM_STATUS_SENT_FOR_APPROVAL
                if comment is not None:
                    item.coordinator_comment = comment
                record_event(
                    entity_type=ENTITY_COUNT_ITEM,
                    entity_id=item.id,
                    action="sent_for_approval",
                    actor_user_id=user.id,
                    old_value={"status": old_status},
                    new_value={"status": ITEM_STATUS_SENT_FOR_APPROVAL, "approval_id": approval.id},
                )

        db.session.flush()
        refresh_request_status([req.id], actor_user_id=user.id)
        commit_with_history()
        logger.info("Opened %d adjustment approval(s) for request %s", len(approvals), req.id)
        return approvals

    return run_with_retry(_op)


def _decide(user_id: int, approval_id: int, new_status: str, reason: str | None) -> AdjustmentApproval:
    user = get_actor(user_id)
    item_status = (
        ITEM_STATUS_ADJUSTMENT_APPROVED if new_status == APPROVAL_STATUS_APPROVED else ITEM_STATUS_ADJUSTMENT_REJECTED
    )

    def _op():
        approval = lock_for_update(db.session.query(AdjustmentApproval).filter_by(id=approval_id)).first()
        if not approval:
            raise NotFound(f"Adjustment approval {approval_id} not found")
        if user.id not in (approval.approver_ids or []):
            raise NotEligibleApprover("You are not an approver for this division")
        if approval.status != APPROVAL_STATUS_PENDING:
            raise AlreadyDecided(f"Adjustment approval {approval.id} is already {approval.status}")

        now = utcnow()
        approval.status = new_status
        approval.decided_by = user.id
        approval.decided_at = now
        approval.rejection_reason = reason

        items = lock_for_update(
            db.session.query(CountItem).filter(
                CountItem.request_id == approval.request_id,
                _division_filter(approval.division_code),
                CountItem.status == ITEM_STATUS_SENT_FOR_APPROVAL,
            )
        ).all()
        for item in items:
            item.status = item_status
            if reason:
                item.coordinator_comment = f"Adjustment rejected: {reason}"
            record_event(
                entity_type=ENTITY_COUNT_ITEM,
                entity_id=item.id,
                action=item_status,
                actor_user_id=user.id,
                description=reason,
                old_value={"status": ITEM_STATUS_SENT_FOR_APPROVAL},
                new_value={"status": item_status, "approval_id": approval.id},
            )
        db.session.flush()

        record_event(
            entity_type=ENTITY_ADJUSTMENT_APPROVAL,
            entity_id=approval.id,
            action=new_status,
            actor_user_id=user.id,
            description=reason,
            old_value={"status": APPROVAL_STATUS_PENDING},
            new_value={"status": new_status, "item_count": len(items)},
        )
        refresh_request_status([approval.request_id], actor_user_id=user.id)
        commit_with_history()
        return approval

    return run_with_retry(_op)


def approve_adjustment(*, user_id: int, approval_id: int) -> AdjustmentApproval:
    """pending -> approved; member items sent_for_approval -> adjustment_approved."""
    return _decide(user_id, approval_id, APPROVAL_STATUS_APPROVED, None)


def reject_adjustment(*, user_id: int, approval_id: int, reason: str | None) -> AdjustmentApproval:
    """pending -> rejected; member items -> adjustment_rejected. A reason is mandatory."""
    reason = (reason or "").strip()
    if not reason:
        raise CommentRequired("A rejection reason is required")
    return _decide(user_id, approval_id, APPROVAL_STATUS_REJECTED, reason)


def execute_adjustment(*, user_id: int, request_id: int, division_code: str | None = None) -> dict:
    """
    adjustment_approved -> adjusted for a request (optionally one division).

    Returns unit and cost totals of what was adjusted.
    """
    user = get_actor(user_id)
    require_role(user, *COORDINATOR_ROLES, action="execute adjustments")

    def _op():
        req = db.session.get(InventoryRequest, request_id)
        if not req:
            raise NotFound(f"Request {request_id} not found")

        query = db.session.query(CountItem).filter(
            CountItem.request_id == request_id,
            CountItem.status == ITEM_STATUS_ADJUSTMENT_APPROVED,
        )
        if division_code is not None:
            query = query.filter(CountItem.division_code == division_code)
        items = lock_for_update(query.order_by(CountItem.id)).all()
        if not items:
            raise EmptyInventoryResult(f"Request {req.request_number} has no approved adjustments to execute")

        now = utcnow()
        totals = {
            "request_id": request_id,
            "division_code": division_code,
            "adjusted_count": 0,
            "positive_units": 0,
            "negative_units": 0,
            "total_difference": 0,
            "total_cost_impact_cents": 0,
        }
        for item in items:
            item.status = ITEM_STATUS_ADJUSTED
            item.adjusted_by = user.id
            item.adjusted_at = now

            difference = item.difference or 0
            totals["adjusted_count"] += 1
            totals["total_difference"] += difference
            totals["total_cost_impact_cents"] += item.cost_impact_cents or 0
            if difference > 0:
                totals["positive_units"] += difference
            else:
                totals["negative_units"] += -difference

            record_event(
                entity_type=ENTITY_COUNT_ITEM,
                entity_id=item.id,
                action="adjusted",
                actor_user_id=user.id,
                old_value={"status": ITEM_STATUS_ADJUSTMENT_APPROVED},
                new_value=count_snapshot(item),
            )

        db.session.flush()
        refresh_request_status([request_id], actor_user_id=user.id)
        commit_with_history()
        return totals

    return run_with_retry(_op)


def configure_division_approvers(*, user_id: int, division_code: str, approver_ids: list[int]) -> list[int]:
    """Replace the approver set of a division. Open gates keep the set they were created with."""
    user = get_actor(user_id)
    require_role(user, *COORDINATOR_ROLES, action="configure division approvers")

    division_code = (division_code or "").strip()
    if not division_code:
        raise ValidationError("division_code is required")
    approver_ids = clean_id_list(approver_ids, "approver_ids")

    def _op():
        for approver_id in approver_ids:
            approver = db.session.get(User, approver_id)
            if not approver or not approver.is_active or not user_has_permission(approver, "APPROVE_ADJUSTMENTS"):
                raise ValidationError(f"User {approver_id} cannot approve adjustments")

        db.session.query(DivisionApprover).filter_by(division_code=division_code).delete()
        for approver_id in approver_ids:
            db.session.add(DivisionApprover(division_code=division_code, user_id=approver_id))
        db.session.commit()
        logger.info("Division %s approvers set to %s by user %s", division_code, approver_ids, user.id)
        return sorted(approver_ids)

    return run_with_retry(_op)


def list_adjustment_approvals(
    *,
    user_id: int,
    request_id: int | None = None,
    status: str | None = None,
) -> list[AdjustmentApproval]:
    """Coordinators see every gate; approvers only the gates they are listed on."""
    user = get_actor(user_id)
    query = db.session.query(AdjustmentApproval)
    if request_id is not None:
        query = query.filter(AdjustmentApproval.request_id == request_id)
    if status:
        query = query.filter(AdjustmentApproval.status == status)
    approvals = query.order_by(AdjustmentApproval.created_at.desc(), AdjustmentApproval.id.desc()).all()

    if user.role in COORDINATOR_ROLES:
        return approvals
    return [approval for approval in approvals if user.id in (approval.approver_ids or [])]
