# Overview: Count summaries by status, division and location.

from __future__ import annotations

from sqlalchemy import case, func

from ..errors import NotFound, OutOfScope
from ..extensions import db
from ..models import CountItem, InventoryRequest, Location
from .permission_service import get_actor, visible_location_ids


def _scoped_items(user, request_id: int | None, location_id: int | None = None):
    query = db.session.query(CountItem)
    if request_id is not None:
        if not db.session.get(InventoryRequest, request_id):
            raise NotFound(f"Request {request_id} not found")
        query = query.filter(CountItem.request_id == request_id)

    allowed = visible_location_ids(user)
    if allowed is not None:
        if location_id is not None and location_id not in allowed:
            raise OutOfScope(f"Location {location_id} is outside your scope")
        query = query.filter(CountItem.location_id.in_(allowed or [-1]))
    if location_id is not None:
        query = query.filter(CountItem.location_id == location_id)
    return query


def _totals(query) -> dict:
    row = query.with_entities(
        func.count(CountItem.id),
        func.count(CountItem.physical_count),
        func.coalesce(func.sum(CountItem.difference), 0),
        func.coalesce(func.sum(CountItem.cost_impact_cents), 0),
        func.coalesce(func.sum(case((CountItem.difference > 0, CountItem.difference), else_=0)), 0),
        func.coalesce(func.sum(case((CountItem.difference < 0, -CountItem.difference), else_=0)), 0),
    ).one()
    return {
        "item_count": int(row[0]),
        "counted_count": int(row[1]),
        "total_difference": int(row[2]),
        "total_cost_impact_cents": int(row[3]),
        "positive_units": int(row[4]),
        "negative_units": int(row[5]),
    }


def _grouped(query, column) -> list[dict]:
    rows = (
        query.with_entities(
            column,
            func.count(CountItem.id),
            func.coalesce(func.sum(CountItem.difference), 0),
            func.coalesce(func.sum(CountItem.cost_impact_cents), 0),
        )
        .group_by(column)
        .order_by(column)
        .all()
    )
    return [
        {
            "key": key,
            "item_count": int(count),
            "total_difference": int(difference),
            "total_cost_impact_cents": int(cost),
        }
        for key, count, difference, cost in rows
    ]


def summary(*, user_id: int, request_id: int | None = None) -> dict:
    """Totals, item counts per status and per division."""
    user = get_actor(user_id)
    query = _scoped_items(user, request_id)

    by_status = {
        status: int(count)
        for status, count in query.with_entities(CountItem.status, func.count(CountItem.id))
        .group_by(CountItem.status)
        .all()
    }
    return {
        "request_id": request_id,
        "totals": _totals(query),
        "by_status": by_status,
        "by_division": [
            {"division_code": row.pop("key"), **row} for row in _grouped(query, CountItem.division_code)
        ],
    }


def by_division(*, user_id: int, division_code: str, request_id: int | None = None) -> dict:
    user = get_actor(user_id)
    query = _scoped_items(user, request_id).filter(CountItem.division_code == division_code)
    items = query.order_by(CountItem.location_id, CountItem.item_code).all()
    return {
        "division_code": division_code,
        "request_id": request_id,
        "totals": _totals(query),
        "by_location": [
            {"location_id": row.pop("key"), **row} for row in _grouped(query, CountItem.location_id)
        ],
        "items": [item.to_dict() for item in items],
    }


def by_location(*, user_id: int, location_id: int, request_id: int | None = None) -> dict:
    user = get_actor(user_id)
    location = db.session.get(Location, location_id)
    if not location:
        raise NotFound(f"Location {location_id} not found")
    query = _scoped_items(user, request_id, location_id)
    return {
        "location": location.to_dict(),
        "request_id": request_id,
        "totals": _totals(query),
        "by_division": [
            {"division_code": row.pop("key"), **row} for row in _grouped(query, CountItem.division_code)
        ],
    }
