# Overview: Pytest coverage for the append-only history recorder.

import logging

import pytest

from countflow.errors import CommentRequired
from countflow.extensions import db
from countflow.models import InventoryHistory, InventoryRequest
from countflow.services import history_service, request_service
from countflow.services.history_service import PENDING_KEY

from conftest import create_request


def _history(entity_type, entity_id):
    return [event.action for event in history_service.get_entity_history(entity_type, entity_id)]


def test_transition_writes_history(catalog_client, seed):
    req = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"])
    request_service.send_request(user_id=seed.coordinator, request_id=req.id)

    assert _history("request", req.id) == ["created", "sent"]
    event = history_service.get_entity_history("request", req.id)[-1]
    assert event.actor_user_id == seed.coordinator
    assert event.new_value["status"] == "sent"


def test_failed_history_write_keeps_workflow_change(catalog_client, seed, monkeypatch, caplog):
    req = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"])
    before = db.session.query(InventoryHistory).count()

    # entity_id is NOT NULL, so every row of this write fails
    monkeypatch.setattr(
        history_service,
        "_history_row",
        lambda payload: InventoryHistory(**{**payload, "entity_id": None}),
    )
    with caplog.at_level(logging.ERROR, logger="countflow.services.history_service"):
        request_service.send_request(user_id=seed.coordinator, request_id=req.id)

    db.session.expire_all()
    assert db.session.get(InventoryRequest, req.id).status == "sent"
    assert db.session.query(InventoryHistory).count() == before
    assert "Failed to write" in caplog.text


def test_rollback_discards_queued_events(seed):
    db.session.query(InventoryRequest).count()
    history_service.record_event(
        entity_type="request", entity_id=1, action="created", actor_user_id=seed.admin
    )
    assert db.session.info[PENDING_KEY]

    db.session.rollback()
    assert PENDING_KEY not in db.session.info
    assert history_service.commit_with_history() == 0


def test_rejected_transition_leaves_no_history(catalog_client, seed):
    req = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"])

    with pytest.raises(CommentRequired):
        request_service.cancel_request(user_id=seed.coordinator, request_id=req.id, reason="")
    db.session.rollback()

    assert _history("request", req.id) == ["created"]


def test_write_events_without_events():
    assert history_service.write_events([]) == 0
