# Overview: Append-only inventory history; written after the workflow commit, never blocks it.

"""
History Recorder

Events are queued on the session while a transition runs and written in a
second transaction once the workflow transaction has committed. A failed
history write is logged and swallowed: the workflow result stands.

A rollback of the workflow transaction discards the queued events, so
history never describes a transition that did not happen.
"""

from __future__ import annotations

import logging

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..extensions import db
from ..models import InventoryHistory
from ..time_utils import utcnow


logger = logging.getLogger(__name__)

PENDING_KEY = "countflow.pending_history"

ENTITY_REQUEST = "request"
ENTITY_COUNT_ITEM = "count_item"
ENTITY_AUDIT_DOCUMENT = "audit_document"
ENTITY_AUDIT_SAMPLE = "audit_sample"
ENTITY_ADJUSTMENT_APPROVAL = "adjustment_approval"


def record_event(
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_user_id: int | None,
    description: str | None = None,
    old_value: dict | None = None,
    new_value: dict | None = None,
) -> None:
    """Queue one history event for the current transaction."""
    pending = db.session.info.setdefault(PENDING_KEY, [])
    pending.append({
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "description": description,
        "old_value": old_value,
        "new_value": new_value,
        "actor_user_id": actor_user_id,
        "occurred_at": utcnow(),
    })


def _history_row(payload: dict) -> InventoryHistory:
    return InventoryHistory(**payload)


def write_events(events: list[dict]) -> int:
    """
    Insert history rows in their own transaction.

    Returns the number of rows written (0 when the write failed).
    """
    if not events:
        return 0
    try:
        db.session.add_all([_history_row(payload) for payload in events])
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to write %d inventory history event(s)", len(events))
        return 0
    return len(events)


def commit_with_history() -> int:
    """Commit the workflow transaction, then write the events it queued."""
    events = db.session.info.pop(PENDING_KEY, [])
    db.session.commit()
    return write_events(events)


def get_entity_history(entity_type: str, entity_id: int) -> list[InventoryHistory]:
    return (
        db.session.query(InventoryHistory)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(InventoryHistory.occurred_at.asc(), InventoryHistory.id.asc())
        .all()
    )


@event.listens_for(Session, "after_soft_rollback")
def _discard_on_rollback(session, previous_transaction):
    if previous_transaction.nested:
        return
    session.info.pop(PENDING_KEY, None)
