# backend/countflow/services/request_service.py
"""
Inventory request lifecycle.

WHY: A request is the counting campaign. Creating it resolves the catalog
filter once and snapshots every product/location row into count items, so
later catalog changes never alter what was counted.

LIFECYCLE:
1. draft: created with seeded count items
2. sent: released to the locations (explicit)
3. in_progress: derived, some item moved past "pending"
4. completed: derived, every item settled
5. cancelled: explicit, only while no count result exists
"""
from __future__ import annotations

import logging
from typing import Iterable

from ..catalog import (
    CatalogFilter,
    CatalogFilterResolver,
    CatalogUnavailableError,
    LocationInventoryFetcher,
    normalize_location_code,
)
from ..errors import CommentRequired, EmptyInventoryResult, Forbidden, InvalidTransition, NotFound, ValidationError
from ..extensions import db
from ..models import CountItem, InventoryRequest, Location
from ..models.requests import (
    ITEM_STATUS_ASSIGNED,
    ITEM_STATUS_PENDING,
    REQUEST_STATUS_CANCELLED,
    REQUEST_STATUS_COMPLETED,
    REQUEST_STATUS_DRAFT,
    REQUEST_STATUS_IN_PROGRESS,
    REQUEST_STATUS_SENT,
    REQUEST_TYPES,
    SETTLED_ITEM_STATUSES,
)
from ..permissions import ROLE_ADMIN, ROLE_COORDINATOR, ROLE_MANAGER
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .history_service import ENTITY_REQUEST, commit_with_history, record_event
from .permission_service import ensure_location_scope, get_actor, require_role, visible_location_ids
from .sequence_service import DOCUMENT_TYPE_REQUEST, REQUEST_PREFIX, next_document_number


logger = logging.getLogger(__name__)

CREATOR_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COORDINATOR)
CANCELLER_ROLES = (ROLE_ADMIN, ROLE_COORDINATOR)

# Item statuses that still allow cancelling the request
CANCELLABLE_ITEM_STATUSES = (ITEM_STATUS_PENDING, ITEM_STATUS_ASSIGNED)


def clean_id_list(values, field: str) -> list[int]:
    """Validate a JSON list of integer ids, de-duplicated in order."""
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{field} must be a list of ids")
    cleaned: dict[int, None] = {}
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{field} must contain integer ids, got {value!r}")
        cleaned.setdefault(value, None)
    return list(cleaned)


# =============================================================================
# STATUS DERIVATION
# =============================================================================

def derive_request_status(current_status: str, item_statuses: Iterable[str]) -> str:
    """
    Derive a request's status from its items' statuses.

    Pure function. draft, cancelled and completed are sticky; a sent request
    becomes in_progress once any item left "pending" and completed once every
    item is settled. The result never moves backwards.
    """
    if current_status in (REQUEST_STATUS_DRAFT, REQUEST_STATUS_CANCELLED, REQUEST_STATUS_COMPLETED):
        return current_status

    statuses = list(item_statuses)
    if statuses and all(status in SETTLED_ITEM_STATUSES for status in statuses):
        return REQUEST_STATUS_COMPLETED
    if current_status == REQUEST_STATUS_SENT and any(status != ITEM_STATUS_PENDING for status in statuses):
        return REQUEST_STATUS_IN_PROGRESS
    return current_status


def refresh_request_status(request_ids: Iterable[int], *, actor_user_id: int | None = None) -> dict[int, str]:
    """
    Apply derive_request_status to the given requests.

    Runs inside the caller's transaction after its item changes are flushed.
    Returns {request_id: new_status} for requests whose status changed.
    """
    changed: dict[int, str] = {}
    for request_id in sorted(set(request_ids)):
        req = lock_for_update(db.session.query(InventoryRequest).filter_by(id=request_id)).first()
        if not req:
            continue
        statuses = [
            row[0]
            for row in db.session.query(CountItem.status).filter(CountItem.request_id == request_id).all()
        ]
        new_status = derive_request_status(req.status, statuses)
        if new_status == req.status:
            continue

        old_status = req.status
        req.status = new_status
        if new_status == REQUEST_STATUS_COMPLETED:
            req.completed_at = utcnow()
        changed[request_id] = new_status

        record_event(
            entity_type=ENTITY_REQUEST,
            entity_id=request_id,
            action="status_derived",
            actor_user_id=actor_user_id,
            description=f"Request {req.request_number} moved from {old_status} to {new_status}",
            old_value={"status": old_status},
            new_value={"status": new_status},
        )
    return changed


# =============================================================================
# CREATION
# =============================================================================

def _snapshot_item(request_id: int, location_id: int, row, product) -> CountItem:
    """Count item carrying the catalog snapshot for one inventory row."""
    return CountItem(
        request_id=request_id,
        location_id=location_id,
        item_code=row.item_code,
        item_description=row.description or (product.description if product else None),
        item_description2=row.description2 or (product.description2 if product else None),
        division_code=row.division_code or (product.division_code if product else None),
        division_name=product.division_name if product else None,
        category_code=row.category_code or (product.category_code if product else None),
        category_name=product.category_name if product else None,
        group_code=row.group_code or (product.group_code if product else None),
        group_name=product.group_name if product else None,
        subgroup_code=product.subgroup_code if product else None,
        subgroup_name=product.subgroup_name if product else None,
        brand_code=product.brand_code if product else None,
        brand_name=product.brand_name if product else None,
        unit_measure_code=row.unit_measure_code,
        system_inventory=row.system_inventory,
        unit_cost_cents=row.unit_cost_cents,
        status=ITEM_STATUS_PENDING,
    )


def create_request(
    *,
    user_id: int,
    request_type: str,
    location_ids: list[int],
    catalog_filter: CatalogFilter,
    resolver: CatalogFilterResolver,
    fetcher: LocationInventoryFetcher,
    comments: str | None = None,
    attachment_files: list[str] | None = None,
) -> InventoryRequest:
    """
    Create a draft request and seed its count items.

    Locations that are unknown, have no usable code, whose inventory query
    fails, or that return no rows are skipped with a warning. The request is
    created as long as one location produced items.

    Raises:
        ValidationError: bad type, empty locations or filter
        Forbidden / OutOfScope: caller may not create for these locations
        EmptyFilterResult: the filter matched no products
        EmptyInventoryResult: no location produced inventory rows
    """
    user = get_actor(user_id)
    require_role(user, *CREATOR_ROLES, action="create inventory requests")

    if request_type not in REQUEST_TYPES:
        raise ValidationError(f"Invalid request type: {request_type}")

    location_ids = clean_id_list(location_ids, "location_ids")
    if not location_ids:
        raise ValidationError("At least one target location is required")

    if user.role == ROLE_MANAGER:
        for location_id in location_ids:
            ensure_location_scope(user, location_id)

    catalog_filter.validate()

    if attachment_files is not None and (
        not isinstance(attachment_files, list) or not all(isinstance(ref, str) for ref in attachment_files)
    ):
        raise ValidationError("attachment_files must be a list of file references")

    # Catalog I/O happens before the workflow transaction opens
    products = resolver.resolve(catalog_filter)
    products_by_code = {product.code: product for product in products}

    seeded: list[tuple[Location, list]] = []
    skipped: list[int] = []
    for location_id in location_ids:
        location = db.session.get(Location, location_id)
        if not location or not location.is_active:
            logger.warning("Location %s not found or inactive; skipped", location_id)
            skipped.append(location_id)
            continue

        location_code = normalize_location_code(location.code)
        if not location_code:
            logger.warning("Location %s (%s) has no usable code; skipped", location.id, location.name)
            skipped.append(location_id)
            continue

        try:
            rows = fetcher.fetch(location_code, products)
        except CatalogUnavailableError as exc:
            logger.warning("Inventory query failed for location %s (%s): %s", location.id, location_code, exc)
            skipped.append(location_id)
            continue

        if not rows:
            logger.warning("No inventory rows for location %s (%s); skipped", location.id, location_code)
            skipped.append(location_id)
            continue

        seeded.append((location, rows))

    if not seeded:
        raise EmptyInventoryResult("No target location returned inventory for the filtered products")

    def _op():
        request_number = next_document_number(
            document_type=DOCUMENT_TYPE_REQUEST,
            prefix=REQUEST_PREFIX,
        )

        req = InventoryRequest(
            request_number=request_number,
            request_type=request_type,
            status=REQUEST_STATUS_DRAFT,
            created_by=user.id,
            location_ids=location_ids,
            filter_divisions=list(catalog_filter.divisions) or None,
            filter_categories=list(catalog_filter.categories) or None,
            filter_groups=list(catalog_filter.groups) or None,
            filter_specific_codes=list(catalog_filter.specific_codes) or None,
            comments=comments,
            attachment_files=attachment_files or None,
        )
        db.session.add(req)
        db.session.flush()

        item_count = 0
        for location, rows in seeded:
            for row in rows:
                db.session.add(_snapshot_item(req.id, location.id, row, products_by_code.get(row.item_code)))
                item_count += 1
            logger.info("Seeded %d count items for location %s", len(rows), location.id)
        db.session.flush()

        record_event(
            entity_type=ENTITY_REQUEST,
            entity_id=req.id,
            action="created",
            actor_user_id=user.id,
            description=f"Request {request_number} created with {item_count} items",
            new_value={
                "request_number": request_number,
                "item_count": item_count,
                "seeded_location_ids": [location.id for location, _rows in seeded],
                "skipped_location_ids": skipped,
                "filter": catalog_filter.to_dict(),
            },
        )
        commit_with_history()
        return req

    return run_with_retry(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _ensure_request_visible(user, req: InventoryRequest) -> None:
    allowed = visible_location_ids(user)
    if allowed is None:
        return
    if not set(req.location_ids or []) & set(allowed):
        raise Forbidden(f"Request {req.request_number} does not target your location")


def send_request(*, user_id: int, request_id: int) -> InventoryRequest:
    """draft -> sent. Any other state raises InvalidTransition."""
    user = get_actor(user_id)
    require_role(user, *CREATOR_ROLES, action="send inventory requests")

    def _op():
        req = lock_for_update(db.session.query(InventoryRequest).filter_by(id=request_id)).first()
        if not req:
            raise NotFound(f"Request {request_id} not found")
        _ensure_request_visible(user, req)

        if req.status != REQUEST_STATUS_DRAFT:
            raise InvalidTransition(f"Cannot send request in {req.status} status")

        req.status = REQUEST_STATUS_SENT
        req.sent_at = utcnow()
        db.session.flush()

        record_event(
            entity_type=ENTITY_REQUEST,
            entity_id=req.id,
            action="sent",
            actor_user_id=user.id,
            description=f"Request {req.request_number} sent to locations",
            old_value={"status": REQUEST_STATUS_DRAFT},
            new_value={"status": REQUEST_STATUS_SENT},
        )
        commit_with_history()
        return req

    return run_with_retry(_op)


def cancel_request(*, user_id: int, request_id: int, reason: str | None) -> InventoryRequest:
    """
    Cancel a request before any count result exists.

    Allowed from draft, sent and in_progress while every item is still
    pending or assigned.
    """
    user = get_actor(user_id)
    require_role(user, *CANCELLER_ROLES, action="cancel inventory requests")

    reason = (reason or "").strip()
    if not reason:
        raise CommentRequired("A cancellation reason is required")

    def _op():
        req = lock_for_update(db.session.query(InventoryRequest).filter_by(id=request_id)).first()
        if not req:
            raise NotFound(f"Request {request_id} not found")

        if req.status not in (REQUEST_STATUS_DRAFT, REQUEST_STATUS_SENT, REQUEST_STATUS_IN_PROGRESS):
            raise InvalidTransition(f"Cannot cancel request in {req.status} status")

        progressed = (
            db.session.query(CountItem.id)
            .filter(
                CountItem.request_id == req.id,
                CountItem.status.notin_(CANCELLABLE_ITEM_STATUSES),
            )
            .count()
        )
        if progressed:
            raise InvalidTransition(
                f"Cannot cancel request {req.request_number}: {progressed} item(s) already counted"
            )

        old_status = req.status
        req.status = REQUEST_STATUS_CANCELLED
        req.cancelled_at = utcnow()
        req.cancelled_by = user.id
        req.cancellation_reason = reason
        db.session.flush()

        record_event(
            entity_type=ENTITY_REQUEST,
            entity_id=req.id,
            action="cancelled",
            actor_user_id=user.id,
            description=f"Request {req.request_number} cancelled: {reason}",
            old_value={"status": old_status},
            new_value={"status": REQUEST_STATUS_CANCELLED},
        )
        commit_with_history()
        return req

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_requests(
    *,
    user_id: int,
    status: str | None = None,
    location_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[InventoryRequest], int]:
    """
    List requests newest first.

    Managers and counters only see requests with items at their location.
    """
    user = get_actor(user_id)
    query = db.session.query(InventoryRequest)

    allowed = visible_location_ids(user)
    if allowed is not None:
        if location_id is not None and location_id not in allowed:
            raise Forbidden(f"Location {location_id} is outside your scope")
        query = query.filter(InventoryRequest.items.any(CountItem.location_id.in_(allowed or [-1])))

    if location_id is not None:
        query = query.filter(InventoryRequest.items.any(CountItem.location_id == location_id))
    if status:
        query = query.filter(InventoryRequest.status == status)

    total = query.count()

    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    rows = (
        query.order_by(InventoryRequest.created_at.desc(), InventoryRequest.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def get_request_detail(*, user_id: int, request_id: int) -> dict:
    """Request with its items (restricted to the caller's location where bound) and status counts."""
    user = get_actor(user_id)
    req = db.session.get(InventoryRequest, request_id)
    if not req:
        raise NotFound(f"Request {request_id} not found")
    _ensure_request_visible(user, req)

    query = db.session.query(CountItem).filter(CountItem.request_id == req.id)
    allowed = visible_location_ids(user)
    if allowed is not None:
        query = query.filter(CountItem.location_id.in_(allowed or [-1]))
    items = query.order_by(CountItem.location_id, CountItem.item_code).all()

    status_counts: dict[str, int] = {}
    for item in items:
        status_counts[item.status] = status_counts.get(item.status, 0) + 1

    data = req.to_dict()
    data["items"] = [item.to_dict() for item in items]
    data["status_counts"] = status_counts
    data["item_count"] = len(items)
    return data
