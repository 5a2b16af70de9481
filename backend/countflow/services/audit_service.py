# backend/countflow/services/audit_service.py
"""
Audit sampling.

WHY: Auditors recount a sample of approved counts before adjustments are
signed off. A document samples one location's approved items; results are
recorded per sample; a supervisor then approves or rejects the document.

DOCUMENT LIFECYCLE:
1. draft: header created while samples are drawn
2. in_progress: samples drawn, results being recorded
3. completed: derived, every sample has a result
4. approved / rejected: explicit decision

SAMPLING:
- random: size = round_half_up(total * pct / 100), at least 1 when the
  population is non-empty; uniform without replacement
- manual: exactly the given ids, each approved at the location
- mixed: the manual ids plus a random top-up (excluding them) to reach the
  percentage target

The RNG is random.Random(seed): the explicit seed argument, else
AUDIT_SAMPLING_SEED, else OS entropy. The population is ordered by id before
sampling, so a fixed seed always draws the same sample.

Mismatched samples are flagged on the document, they do not block its
decision. Only a sample recorded with approved=False sends the count item
back for recount.
"""
from __future__ import annotations

import logging
import random
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import select

from ..errors import (
    AlreadyDecided,
    CommentRequired,
    EmptyInventoryResult,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import AuditDocument, AuditSample, CountItem, InventoryRequest, Location
from ..models.audits import (
    AUDIT_STATUS_APPROVED,
    AUDIT_STATUS_COMPLETED,
    AUDIT_STATUS_DRAFT,
    AUDIT_STATUS_IN_PROGRESS,
    AUDIT_STATUS_REJECTED,
    AUDIT_UNDECIDED_STATUSES,
    SAMPLING_MANUAL,
    SAMPLING_MIXED,
    SAMPLING_RANDOM,
    SAMPLING_TYPES,
)
from ..models.requests import (
    ITEM_STATUS_APPROVED,
    ITEM_STATUS_AUDITED,
    ITEM_STATUS_REJECTED,
    REQUEST_STATUS_CANCELLED,
)
from ..permissions import ROLE_ADMIN, ROLE_AUDITOR, ROLE_COORDINATOR
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .count_item_service import validate_count_value
from .history_service import (
    ENTITY_AUDIT_DOCUMENT,
    ENTITY_AUDIT_SAMPLE,
    ENTITY_COUNT_ITEM,
    commit_with_history,
    record_event,
)
from .permission_service import get_actor, require_role
from .request_service import clean_id_list, refresh_request_status
from .sequence_service import AUDIT_PREFIX, DOCUMENT_TYPE_AUDIT, next_document_number


logger = logging.getLogger(__name__)

AUDITOR_ROLES = (ROLE_ADMIN, ROLE_AUDITOR)
SUPERVISOR_ROLES = (ROLE_ADMIN, ROLE_COORDINATOR)

DECISIONS = (AUDIT_STATUS_APPROVED, AUDIT_STATUS_REJECTED)


# =============================================================================
# SAMPLING
# =============================================================================

def sample_size(total: int, percentage: int) -> int:
    """
    Number of items a percentage selects from `total`.

    Half rounds up; at least 1 when total > 0; never more than total.
    """
    if total <= 0:
        return 0
    size = int((Decimal(total) * Decimal(percentage) / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return min(total, max(1, size))


def _resolve_seed(seed):
    if seed is not None:
        return seed
    configured = current_app.config.get("AUDIT_SAMPLING_SEED")
    if configured in (None, ""):
        return None
    try:
        return int(configured)
    except (TypeError, ValueError):
        return configured


def _validate_percentage(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("sampling_percentage must be an integer between 0 and 100")
    if value < 0 or value > 100:
        raise ValidationError("sampling_percentage must be between 0 and 100")
    return value


def undecided_sampled_ids():
    """SELECT of count item ids held by documents not yet decided."""
    return (
        select(AuditSample.count_item_id)
        .join(AuditDocument, AuditDocument.id == AuditSample.audit_document_id)
        .where(AuditDocument.status.in_(AUDIT_UNDECIDED_STATUSES))
    )


def audit_population_query(location_id: int, request_id: int | None = None, *, exclude_document_id: int | None = None):
    """Approved items at the location not sampled by another undecided document."""
    held = undecided_sampled_ids()
    if exclude_document_id is not None:
        held = held.where(AuditDocument.id != exclude_document_id)

    query = (
        db.session.query(CountItem)
        .join(InventoryRequest, InventoryRequest.id == CountItem.request_id)
        .filter(
            CountItem.location_id == location_id,
            CountItem.status == ITEM_STATUS_APPROVED,
            InventoryRequest.status != REQUEST_STATUS_CANCELLED,
            CountItem.id.notin_(held),
        )
    )
    if request_id is not None:
        query = query.filter(CountItem.request_id == request_id)
    return query.order_by(CountItem.id)


def select_sample(
    population_ids: list[int],
    sampling_type: str,
    percentage: int | None,
    manual_ids: list[int],
    rng: random.Random,
) -> list[int]:
    """Pick sample ids from an id-ordered population."""
    if sampling_type == SAMPLING_MANUAL:
        return list(manual_ids)

    target = sample_size(len(population_ids), percentage)
    if sampling_type == SAMPLING_RANDOM:
        return rng.sample(population_ids, target)

    chosen = set(manual_ids)
    remaining = [item_id for item_id in population_ids if item_id not in chosen]
    top_up = min(max(0, target - len(manual_ids)), len(remaining))
    return list(manual_ids) + rng.sample(remaining, top_up)


def create_audit_document(
    *,
    user_id: int,
    location_id: int,
    sampling_type: str,
    sampling_percentage: int | None = None,
    manual_item_ids: list[int] | None = None,
    request_id: int | None = None,
    seed=None,
) -> AuditDocument:
    """
    Draw a sample of approved items into a new audit document.

    Raises:
        ValidationError: bad type/percentage, or manual ids outside the population
        EmptyInventoryResult: no approved items to audit
    """
    user = get_actor(user_id)
    require_role(user, *AUDITOR_ROLES, action="create audit documents")

    if sampling_type not in SAMPLING_TYPES:
        raise ValidationError(f"Invalid sampling type: {sampling_type}")
    if sampling_type in (SAMPLING_RANDOM, SAMPLING_MIXED) or sampling_percentage is not None:
        sampling_percentage = _validate_percentage(sampling_percentage)

    manual_ids = clean_id_list(manual_item_ids, "manual_item_ids")
    if sampling_type == SAMPLING_MANUAL and not manual_ids:
        raise ValidationError("manual_item_ids is required for manual sampling")

    location = db.session.get(Location, location_id)
    if not location:
        raise NotFound(f"Location {location_id} not found")
    if request_id is not None and not db.session.get(InventoryRequest, request_id):
        raise NotFound(f"Request {request_id} not found")

    seed = _resolve_seed(seed)

    def _op():
        rng = random.Random(seed)
        population = [item.id for item in audit_population_query(location_id, request_id).all()]
        if not population:
            raise EmptyInventoryResult(f"No approved items available for audit at location {location_id}")

        outside = [item_id for item_id in manual_ids if item_id not in set(population)]
        if outside:
            raise ValidationError(
                f"Items are not approved and available for audit at this location: {outside}"
            )

        selected = sorted(select_sample(population, sampling_type, sampling_percentage, manual_ids, rng))

        document_number = next_document_number(document_type=DOCUMENT_TYPE_AUDIT, prefix=AUDIT_PREFIX)
        document = AuditDocument(
            document_number=document_number,
            auditor_id=user.id,
            location_id=location_id,
            request_id=request_id,
            sampling_type=sampling_type,
            sampling_percentage=sampling_percentage,
            total_items=len(population),
            population_item_ids=population,
            sampled_items=len(selected),
            status=AUDIT_STATUS_DRAFT,
        )
        db.session.add(document)
        db.session.flush()

        for item_id in selected:
            db.session.add(AuditSample(audit_document_id=document.id, count_item_id=item_id))
        document.status = AUDIT_STATUS_IN_PROGRESS
        db.session.flush()

        record_event(
            entity_type=ENTITY_AUDIT_DOCUMENT,
            entity_id=document.id,
            action="created",
            actor_user_id=user.id,
            description=f"Audit {document_number}: {len(selected)} of {len(population)} items sampled",
            new_value={
                "sampling_type": sampling_type,
                "sampling_percentage": sampling_percentage,
                "sampled_item_ids": selected,
            },
        )
        commit_with_history()
        return document

    return run_with_retry(_op)


# =============================================================================
# RESULTS
# =============================================================================

def record_audit_result(
    *,
    user_id: int,
    sample_id: int,
    audit_physical_count: int,
    approved: bool,
    rejection_reason: str | None = None,
) -> AuditSample:
    """
    Record the auditor's recount for one sample.

    audit_difference = audit count - original physical count; the sample
    matches when that is zero. approved=False needs a reason and sends the
    count item back to "rejected".
    """
    audit_physical_count = validate_count_value(audit_physical_count, "audit_physical_count")
    if not isinstance(approved, bool):
        raise ValidationError("approved must be true or false")
    rejection_reason = (rejection_reason or "").strip() or None
    if not approved and not rejection_reason:
        raise CommentRequired("A rejection reason is required when the sample is not approved")

    user = get_actor(user_id)

    def _op():
        sample = lock_for_update(db.session.query(AuditSample).filter_by(id=sample_id)).first()
        if not sample:
            raise NotFound(f"Audit sample {sample_id} not found")
        document = sample.document
        if document.auditor_id != user.id:
            raise Forbidden("Only the document's auditor may record results")
        if document.status != AUDIT_STATUS_IN_PROGRESS:
            raise InvalidTransition(f"Cannot record results on a document in {document.status} status")
        if sample.has_result:
            raise InvalidTransition(f"Audit sample {sample.id} already has a result")

        item = lock_for_update(db.session.query(CountItem).filter_by(id=sample.count_item_id)).first()
        now = utcnow()

        sample.audit_physical_count = audit_physical_count
        if item.physical_count is not None:
            sample.audit_difference = audit_physical_count - item.physical_count
            sample.matches_original = sample.audit_difference == 0
        sample.approved = approved
        sample.rejection_reason = rejection_reason
        sample.audited_by = user.id
        sample.audited_at = now

        record_event(
            entity_type=ENTITY_AUDIT_SAMPLE,
            entity_id=sample.id,
            action="result_recorded",
            actor_user_id=user.id,
            description=rejection_reason,
            new_value={
                "audit_physical_count": audit_physical_count,
                "audit_difference": sample.audit_difference,
                "matches_original": sample.matches_original,
                "approved": approved,
            },
        )

        if not approved:
            if item.status != ITEM_STATUS_APPROVED:
                raise InvalidTransition(f"Count item {item.id} is no longer approved")
            item.status = ITEM_STATUS_REJECTED
            item.auditor_comment = rejection_reason
            record_event(
                entity_type=ENTITY_COUNT_ITEM,
                entity_id=item.id,
                action="audit_rejected",
                actor_user_id=user.id,
                description=rejection_reason,
                old_value={"status": ITEM_STATUS_APPROVED},
                new_value={"status": ITEM_STATUS_REJECTED},
            )

        db.session.flush()
        if all(s.has_result for s in document.samples):
            document.status = AUDIT_STATUS_COMPLETED
            document.completed_at = now
            document.mismatched_samples = sum(1 for s in document.samples if s.matches_original is False)
            record_event(
                entity_type=ENTITY_AUDIT_DOCUMENT,
                entity_id=document.id,
                action="completed",
                actor_user_id=user.id,
                new_value={"status": AUDIT_STATUS_COMPLETED, "mismatched_samples": document.mismatched_samples},
            )

        if not approved:
            refresh_request_status([item.request_id], actor_user_id=user.id)
        commit_with_history()
        return sample

    return run_with_retry(_op)


def decide_audit_document(
    *,
    user_id: int,
    document_id: int,
    approval_result: str,
    comments: str | None = None,
) -> tuple[AuditDocument, int]:
    """
    Approve or reject a completed document.

    Approval moves the population drawn at creation (items still approved,
    nothing approved later) to "audited". Rejection leaves items
    untouched and needs a comment. Returns (document, audited_item_count).
    """
    if approval_result not in DECISIONS:
        raise ValidationError(f"Invalid approval result: {approval_result}")
    comments = (comments or "").strip() or None
    if approval_result == AUDIT_STATUS_REJECTED and not comments:
        raise CommentRequired("A comment is required to reject an audit document")

    user = get_actor(user_id)

    def _op():
        document = lock_for_update(db.session.query(AuditDocument).filter_by(id=document_id)).first()
        if not document:
            raise NotFound(f"Audit document {document_id} not found")
        if document.auditor_id != user.id and user.role not in SUPERVISOR_ROLES:
            raise Forbidden("Only the document's auditor or a coordinator may decide it")
        if document.status in DECISIONS:
            raise AlreadyDecided(f"Audit document {document.document_number} is already {document.status}")
        if document.status != AUDIT_STATUS_COMPLETED:
            raise InvalidTransition(f"Cannot decide a document in {document.status} status")

        now = utcnow()
        document.mismatched_samples = sum(1 for s in document.samples if s.matches_original is False)
        if document.mismatched_samples:
            logger.warning("Audit %s decided with %d mismatched sample(s)",
                           document.document_number, document.mismatched_samples)

        audited_ids: list[int] = []
        if approval_result == AUDIT_STATUS_APPROVED:
            items = lock_for_update(
                audit_population_query(
                    document.location_id,
                    document.request_id,
                    exclude_document_id=document.id,
                ).filter(CountItem.id.in_(document.population_item_ids or []))
            ).all()
            for item in items:
                item.status = ITEM_STATUS_AUDITED
                item.audited_by = document.auditor_id
                item.audited_at = now
                audited_ids.append(item.id)
                record_event(
                    entity_type=ENTITY_COUNT_ITEM,
                    entity_id=item.id,
                    action="audited",
                    actor_user_id=user.id,
                    description=f"Audit {document.document_number} approved",
                    old_value={"status": ITEM_STATUS_APPROVED},
                    new_value={"status": ITEM_STATUS_AUDITED},
                )

        document.status = approval_result
        document.approval_result = approval_result
        document.result_comments = comments
        document.decided_by = user.id
        document.decided_at = now
        db.session.flush()

        record_event(
            entity_type=ENTITY_AUDIT_DOCUMENT,
            entity_id=document.id,
            action=approval_result,
            actor_user_id=user.id,
            description=comments,
            old_value={"status": AUDIT_STATUS_COMPLETED},
            new_value={
                "status": approval_result,
                "mismatched_samples": document.mismatched_samples,
                "audited_item_ids": audited_ids,
            },
        )
        if audited_ids:
            request_ids = {
                row[0]
                for row in db.session.query(CountItem.request_id).filter(CountItem.id.in_(audited_ids)).all()
            }
            refresh_request_status(request_ids, actor_user_id=user.id)
        commit_with_history()
        return document, len(audited_ids)

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_audit_document(*, user_id: int, document_id: int) -> AuditDocument:
    user = get_actor(user_id)
    document = db.session.get(AuditDocument, document_id)
    if not document:
        raise NotFound(f"Audit document {document_id} not found")
    if document.auditor_id != user.id and user.role not in SUPERVISOR_ROLES:
        raise Forbidden("Audit document belongs to another auditor")
    return document


def get_auditor_pool(*, user_id: int, location_id: int | None = None) -> dict:
    """Approved items available for sampling, and the caller's open documents."""
    user = get_actor(user_id)
    require_role(user, *AUDITOR_ROLES, action="audit counts")

    items: list[CountItem] = []
    if location_id is not None:
        items = audit_population_query(location_id).all()

    documents = (
        db.session.query(AuditDocument)
        .filter(
            AuditDocument.auditor_id == user.id,
            AuditDocument.status.in_(AUDIT_UNDECIDED_STATUSES),
        )
        .order_by(AuditDocument.created_at.desc(), AuditDocument.id.desc())
        .all()
    )
    return {
        "available_items": [item.to_dict() for item in items],
        "open_documents": [document.to_dict() for document in documents],
    }
