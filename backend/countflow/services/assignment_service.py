# backend/countflow/services/assignment_service.py
"""
Assignment engine: pending -> assigned.

WHY: Managers distribute count work at their own location, either by an
explicit id list or by automatic rules on division/category/group.

RULE RESOLUTION (automatic mode):
- the most specific matching rule wins: group > category > division
- among equally specific rules, the earliest configured (lowest id) wins
- items no rule matches go to the fallback assignee, if one was given,
  otherwise they stay pending

Every assignment is a conditional UPDATE (status = 'pending'), so items
another manager claimed first are skipped rather than overwritten.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import update

from ..catalog.rows import clean_codes
from ..errors import InvalidTransition, NotFound, OutOfScope, ValidationError
from ..extensions import db
from ..models import AssignmentRule, CountItem, InventoryRequest, User
from ..models.requests import (
    ITEM_STATUS_ASSIGNED,
    ITEM_STATUS_PENDING,
    REQUEST_STATUS_IN_PROGRESS,
    REQUEST_STATUS_SENT,
)
from ..permissions import ROLE_ADMIN, ROLE_MANAGER
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .history_service import ENTITY_COUNT_ITEM, commit_with_history, record_event
from .permission_service import (
    ensure_location_scope,
    get_actor,
    require_role,
    user_has_permission,
    visible_location_ids,
)
from .request_service import clean_id_list, refresh_request_status


logger = logging.getLogger(__name__)

ASSIGNER_ROLES = (ROLE_ADMIN, ROLE_MANAGER)

MODE_MANUAL = "manual"
MODE_AUTOMATIC = "automatic"

RULE_DIVISION = "division"
RULE_CATEGORY = "category"
RULE_GROUP = "group"

# Higher wins
RULE_SPECIFICITY = {
    RULE_GROUP: 3,
    RULE_CATEGORY: 2,
    RULE_DIVISION: 1,
}

RULE_ITEM_FIELDS = {
    RULE_GROUP: "group_code",
    RULE_CATEGORY: "category_code",
    RULE_DIVISION: "division_code",
}


@dataclass
class AssignmentResult:
    assigned_count: int = 0
    per_assignee: dict[int, int] = field(default_factory=dict)
    unmatched_count: int = 0

    def to_dict(self) -> dict:
        return {
            "assigned_count": self.assigned_count,
            "per_assignee": {str(user_id): count for user_id, count in self.per_assignee.items()},
            "unmatched_count": self.unmatched_count,
        }


def resolve_rule_assignee(item, rules: Iterable) -> int | None:
    """
    Pick the user for one item from automatic rules.

    Pure function over objects exposing division/category/group codes
    (items) and rule_type/values/user_id/id (rules).
    """
    ordered = sorted(
        (rule for rule in rules if rule.rule_type in RULE_SPECIFICITY),
        key=lambda rule: (-RULE_SPECIFICITY[rule.rule_type], rule.id),
    )
    for rule in ordered:
        code = getattr(item, RULE_ITEM_FIELDS[rule.rule_type], None)
        if code and code in (rule.values or []):
            return rule.user_id
    return None


def _location_user(user_id: int, location_id: int) -> User:
    """Assignees must be active users of the location who may record counts."""
    assignee = db.session.get(User, user_id)
    if (
        not assignee
        or not assignee.is_active
        or assignee.location_id != location_id
        or not user_has_permission(assignee, "RECORD_COUNTS")
    ):
        raise ValidationError(f"User {user_id} is not an active counter at location {location_id}")
    return assignee


def _assign_ids(ids: list[int], assignee_id: int, request_id: int, location_id: int, actor_id: int) -> int:
    """Conditional pending -> assigned UPDATE; returns affected rows."""
    if not ids:
        return 0
    now = utcnow()
    stmt = (
        update(CountItem)
        .where(
            CountItem.id.in_(ids),
            CountItem.request_id == request_id,
            CountItem.location_id == location_id,
            CountItem.status == ITEM_STATUS_PENDING,
        )
        .values(
            status=ITEM_STATUS_ASSIGNED,
            assigned_to=assignee_id,
            assigned_at=now,
            version_id=CountItem.version_id + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)

    # Ids skipped by the status guard (claimed meanwhile) get no event
    updated = [
        row[0]
        for row in db.session.query(CountItem.id)
        .filter(
            CountItem.id.in_(ids),
            CountItem.assigned_to == assignee_id,
            CountItem.assigned_at == now,
            CountItem.status == ITEM_STATUS_ASSIGNED,
        )
        .order_by(CountItem.id)
        .all()
    ]
    for item_id in updated:
        record_event(
            entity_type=ENTITY_COUNT_ITEM,
            entity_id=item_id,
            action="assigned",
            actor_user_id=actor_id,
            old_value={"status": ITEM_STATUS_PENDING},
            new_value={"status": ITEM_STATUS_ASSIGNED, "assigned_to": assignee_id},
        )
    return len(updated)


def assign_items(
    *,
    user_id: int,
    request_id: int,
    location_id: int,
    mode: str,
    item_ids: list[int] | None = None,
    assign_to: int | None = None,
    classification: dict | None = None,
) -> AssignmentResult:
    """
    Assign pending items of (request, location) to counters.

    Manual mode assigns the given ids to `assign_to`; ids that are not
    pending in this request/location are skipped. Automatic mode resolves
    each pending item matching `classification` through the location's
    rules, with `assign_to` as fallback. All UPDATEs run in one transaction.

    Raises:
        OutOfScope: caller's location is not `location_id`
        InvalidTransition: request not sent / in progress
        ValidationError: bad mode, ids, or assignee
    """
    user = get_actor(user_id)
    require_role(user, *ASSIGNER_ROLES, action="assign count items")
    ensure_location_scope(user, location_id)

    if mode not in (MODE_MANUAL, MODE_AUTOMATIC):
        raise ValidationError(f"Invalid assignment mode: {mode}")
    if assign_to is not None and (isinstance(assign_to, bool) or not isinstance(assign_to, int)):
        raise ValidationError("assign_to must be a user id")

    if mode == MODE_MANUAL:
        item_ids = clean_id_list(item_ids, "item_ids")
        if not item_ids:
            raise ValidationError("item_ids is required for manual assignment")
        if assign_to is None:
            raise ValidationError("assign_to is required for manual assignment")

    classification = classification or {}
    divisions = clean_codes(classification.get("divisions"))
    categories = clean_codes(classification.get("categories"))
    groups = clean_codes(classification.get("groups"))

    def _op():
        req = lock_for_update(db.session.query(InventoryRequest).filter_by(id=request_id)).first()
        if not req:
            raise NotFound(f"Request {request_id} not found")
        if req.status not in (REQUEST_STATUS_SENT, REQUEST_STATUS_IN_PROGRESS):
            raise InvalidTransition(f"Cannot assign items of a request in {req.status} status")

        result = AssignmentResult()
        if assign_to is not None:
            _location_user(assign_to, location_id)

        pending = lock_for_update(
            db.session.query(CountItem).filter(
                CountItem.request_id == request_id,
                CountItem.location_id == location_id,
                CountItem.status == ITEM_STATUS_PENDING,
            )
        )

        groups_by_assignee: dict[int, list[int]] = {}
        if mode == MODE_MANUAL:
            eligible = [row.id for row in pending.filter(CountItem.id.in_(item_ids)).all()]
            skipped = len(item_ids) - len(eligible)
            if skipped:
                logger.info("Manual assignment skipped %d id(s) not pending in request %s / location %s",
                            skipped, request_id, location_id)
            if eligible:
                groups_by_assignee[assign_to] = eligible
        else:
            if divisions:
                pending = pending.filter(CountItem.division_code.in_(divisions))
            if categories:
                pending = pending.filter(CountItem.category_code.in_(categories))
            if groups:
                pending = pending.filter(CountItem.group_code.in_(groups))

            rules = (
                db.session.query(AssignmentRule)
                .filter_by(location_id=location_id)
                .order_by(AssignmentRule.id)
                .all()
            )
            active_rules = []
            for rule in rules:
                try:
                    _location_user(rule.user_id, location_id)
                except ValidationError:
                    logger.warning("Ignoring assignment rule %s: user %s cannot count at location %s",
                                   rule.id, rule.user_id, location_id)
                    continue
                active_rules.append(rule)

            if not active_rules and assign_to is None:
                raise ValidationError("No assignment rules configured and no fallback assignee given")

            for item in pending.order_by(CountItem.id).all():
                assignee_id = resolve_rule_assignee(item, active_rules)
                if assignee_id is None:
                    assignee_id = assign_to
                if assignee_id is None:
                    result.unmatched_count += 1
                    continue
                groups_by_assignee.setdefault(assignee_id, []).append(item.id)

        for assignee_id, ids in groups_by_assignee.items():
            affected = _assign_ids(ids, assignee_id, request_id, location_id, user.id)
            if affected:
                result.per_assignee[assignee_id] = affected
                result.assigned_count += affected

        if result.assigned_count:
            refresh_request_status([request_id], actor_user_id=user.id)
        commit_with_history()
        return result

    return run_with_retry(_op)


def configure_rule(
    *,
    user_id: int,
    location_id: int,
    assign_to: int,
    rule_type: str,
    values: list[str],
) -> AssignmentRule | None:
    """
    Create or replace the rule (location, assignee, type).

    An empty `values` list removes the rule and returns None.
    """
    user = get_actor(user_id)
    require_role(user, *ASSIGNER_ROLES, action="configure assignment rules")
    ensure_location_scope(user, location_id)

    if rule_type not in RULE_SPECIFICITY:
        raise ValidationError(f"Invalid rule type: {rule_type}")
    if values is not None and not isinstance(values, (list, tuple)):
        raise ValidationError("values must be a list of codes")
    codes = list(clean_codes(values))

    def _op():
        _location_user(assign_to, location_id)
        rule = db.session.query(AssignmentRule).filter_by(
            location_id=location_id,
            user_id=assign_to,
            rule_type=rule_type,
        ).first()

        if not codes:
            if rule:
                db.session.delete(rule)
            db.session.commit()
            return None

        if rule:
            rule.values = codes
        else:
            rule = AssignmentRule(
                location_id=location_id,
                user_id=assign_to,
                rule_type=rule_type,
                values=codes,
                created_by=user.id,
            )
            db.session.add(rule)
        db.session.commit()
        return rule

    return run_with_retry(_op)


def list_rules(*, user_id: int, location_id: int) -> list[AssignmentRule]:
    user = get_actor(user_id)
    ensure_location_scope(user, location_id)
    return (
        db.session.query(AssignmentRule)
        .filter_by(location_id=location_id)
        .order_by(AssignmentRule.id)
        .all()
    )


def list_location_users(*, user_id: int, location_id: int, role: str | None = None) -> list[User]:
    """Active users of a location, optionally filtered by role."""
    user = get_actor(user_id)
    allowed = visible_location_ids(user)
    if allowed is not None and location_id not in allowed:
        raise OutOfScope(f"Location {location_id} is outside your scope")

    query = db.session.query(User).filter(User.location_id == location_id, User.is_active.is_(True))
    if role:
        query = query.filter(User.role == role)
    return query.order_by(User.full_name, User.username).all()
