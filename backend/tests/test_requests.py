# Overview: Pytest coverage for request creation, numbering, send/cancel and status derivation.

"""
Inventory Request Tests

Covers:
- Seeding count items from the catalog snapshot per location
- Locations skipped when their inventory query fails or returns nothing
- Request numbers: INV-<year>-<seq>, unique under concurrent creation
- draft -> sent -> in_progress -> completed, and cancellation guards
"""

import threading

import pytest

from countflow import create_app
from countflow.catalog import CatalogClient, CatalogUnavailableError
from countflow.errors import (
    CommentRequired,
    EmptyFilterResult,
    EmptyInventoryResult,
    Forbidden,
    InvalidTransition,
    OutOfScope,
    ValidationError,
)
from countflow.extensions import db
from countflow.models import CountItem, InventoryHistory, InventoryRequest, Location, User
from countflow.services import assignment_service, count_item_service, request_service
from countflow.services.request_service import derive_request_status
from countflow.time_utils import current_year

from conftest import auth_headers, create_request, create_sent_request, make_catalog_engine


class FailingLocationCatalog(CatalogClient):
    """Catalog whose inventory query fails for one location code."""

    def __init__(self, engine, failing_code):
        super().__init__(engine=engine)
        self.failing_code = failing_code

    def query_location_inventory(self, location_code, codes):
        if location_code == self.failing_code:
            raise CatalogUnavailableError(f"Inventory view unavailable for {location_code}")
        return super().query_location_inventory(location_code, codes)


# =============================================================================
# CREATION
# =============================================================================

class TestCreateRequest:

    def test_seeds_items_per_location(self, catalog_client, seed):
        req = create_request(catalog_client, seed.coordinator, [seed.t01, seed.t02], codes=["A100", "A101"])

        assert req.status == "draft"
        assert req.request_number == f"INV-{current_year()}-0001"

        items = db.session.query(CountItem).filter_by(request_id=req.id).order_by(CountItem.id).all()
        seeded = sorted((item.location_id, item.item_code) for item in items)
        assert seeded == [(seed.t01, "A100"), (seed.t01, "A101"), (seed.t02, "A100")]
        assert all(item.status == "pending" for item in items)

    def test_snapshot_carries_catalog_attributes(self, catalog_client, seed):
        req = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"])
        item = db.session.query(CountItem).filter_by(request_id=req.id).one()

        assert item.system_inventory == 50
        assert item.unit_cost_cents == 250
        assert item.division_code == "D1"
        assert item.division_name == "Hardware"
        assert item.group_name == "Bolts"
        assert item.physical_count is None

    def test_division_filter(self, catalog_client, seed):
        req = create_request(catalog_client, seed.coordinator, [seed.t01], divisions=["D2"])
        codes = sorted(item.item_code for item in req.items)
        assert codes == ["B200", "B201"]
        assert req.filter_divisions == ["D2"]
        assert req.filter_specific_codes is None

    def test_numbers_are_sequential(self, catalog_client, seed):
        first = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"])
        second = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A101"])
        year = current_year()
        assert (first.request_number, second.request_number) == (f"INV-{year}-0001", f"INV-{year}-0002")

    def test_new_sequence_continues_after_existing_numbers(self, catalog_client, seed):
        db.session.add(InventoryRequest(
            request_number=f"INV-{current_year()}-0041",
            request_type="manual",
            status="cancelled",
            created_by=seed.admin,
            location_ids=[seed.t01],
        ))
        db.session.commit()

        req = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"])
        assert req.request_number == f"INV-{current_year()}-0042"

    def test_unknown_codes_raise_empty_filter_result(self, catalog_client, seed):
        with pytest.raises(EmptyFilterResult):
            create_request(catalog_client, seed.coordinator, [seed.t01], codes=["NOPE"])

    def test_no_inventory_at_any_location(self, catalog_client, seed):
        # D2 products are only stocked at "01"
        with pytest.raises(EmptyInventoryResult):
            create_request(catalog_client, seed.coordinator, [seed.t02], divisions=["D2"])
        assert db.session.query(InventoryRequest).count() == 0

    def test_failed_location_is_skipped(self, catalog_engine, seed):
        client = FailingLocationCatalog(catalog_engine, failing_code="02")
        req = create_request(client, seed.coordinator, [seed.t01, seed.t02], codes=["A100"])

        assert [item.location_id for item in req.items] == [seed.t01]
        assert req.location_ids == [seed.t01, seed.t02]

        created = db.session.query(InventoryHistory).filter_by(
            entity_type="request", entity_id=req.id, action="created"
        ).one()
        assert created.new_value["skipped_location_ids"] == [seed.t02]

    def test_unknown_location_is_skipped(self, catalog_client, seed):
        req = create_request(catalog_client, seed.coordinator, [seed.t01, 9999], codes=["A101"])
        assert len(req.items) == 1

    def test_location_without_code_is_skipped(self, catalog_client, seed):
        location = Location(name="Unmapped", code=None)
        db.session.add(location)
        db.session.commit()

        with pytest.raises(EmptyInventoryResult):
            create_request(catalog_client, seed.coordinator, [location.id], codes=["A100"])

    def test_manager_limited_to_own_location(self, catalog_client, seed):
        req = create_request(catalog_client, seed.manager, [seed.t01], codes=["A100"])
        assert req.created_by == seed.manager

        with pytest.raises(OutOfScope):
            create_request(catalog_client, seed.manager, [seed.t01, seed.t02], codes=["A100"])

    def test_counter_cannot_create(self, catalog_client, seed):
        with pytest.raises(Forbidden):
            create_request(catalog_client, seed.counter, [seed.t01], codes=["A100"])

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"request_type": "weekly"},
            {"attachment_files": "scan.pdf"},
        ],
    )
    def test_invalid_input(self, catalog_client, seed, kwargs):
        with pytest.raises(ValidationError):
            create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"], **kwargs)

    def test_empty_locations(self, catalog_client, seed):
        with pytest.raises(ValidationError):
            create_request(catalog_client, seed.coordinator, [], codes=["A100"])


# =============================================================================
# TRANSITIONS
# =============================================================================

class TestSendAndCancel:

    def test_send_draft(self, catalog_client, seed):
        req = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"])
        sent = request_service.send_request(user_id=seed.coordinator, request_id=req.id)
        assert sent.status == "sent"
        assert sent.sent_at is not None

    def test_send_twice_is_invalid(self, catalog_client, seed):
        request_id = create_sent_request(catalog_client, seed)
        with pytest.raises(InvalidTransition):
            request_service.send_request(user_id=seed.coordinator, request_id=request_id)

    def test_manager_cannot_send_other_location(self, catalog_client, seed):
        req = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"])
        with pytest.raises(Forbidden):
            request_service.send_request(user_id=seed.manager_t02, request_id=req.id)

    def test_cancel_requires_reason(self, catalog_client, seed):
        request_id = create_sent_request(catalog_client, seed)
        with pytest.raises(CommentRequired):
            request_service.cancel_request(user_id=seed.coordinator, request_id=request_id, reason="  ")

    def test_cancel_before_counting(self, catalog_client, seed):
        request_id = create_sent_request(catalog_client, seed)
        req = request_service.cancel_request(user_id=seed.coordinator, request_id=request_id, reason="Duplicate")
        assert req.status == "cancelled"
        assert req.cancelled_by == seed.coordinator
        assert req.cancellation_reason == "Duplicate"

    def test_cannot_cancel_after_count(self, catalog_client, seed):
        request_id = create_sent_request(catalog_client, seed, codes=["A100"])
        item = db.session.query(CountItem).filter_by(request_id=request_id).one()
        assignment_service.assign_items(
            user_id=seed.manager, request_id=request_id, location_id=seed.t01,
            mode="manual", item_ids=[item.id], assign_to=seed.counter,
        )
        count_item_service.record_count(user_id=seed.counter, item_id=item.id, physical_count=50)

        with pytest.raises(InvalidTransition):
            request_service.cancel_request(user_id=seed.coordinator, request_id=request_id, reason="Too late")

    def test_manager_cannot_cancel(self, catalog_client, seed):
        request_id = create_sent_request(catalog_client, seed)
        with pytest.raises(Forbidden):
            request_service.cancel_request(user_id=seed.manager, request_id=request_id, reason="No")


class TestDeriveRequestStatus:

    @pytest.mark.parametrize(
        "current, statuses, expected",
        [
            ("sent", ["pending", "pending"], "sent"),
            ("sent", ["assigned", "pending"], "in_progress"),
            ("in_progress", ["approved", "rejected"], "in_progress"),
            ("in_progress", ["approved", "audited"], "completed"),
            ("sent", ["adjusted"], "completed"),
            ("completed", ["rejected"], "completed"),
            ("draft", ["approved"], "draft"),
            ("cancelled", ["approved"], "cancelled"),
            ("sent", [], "sent"),
        ],
    )
    def test_derivation(self, current, statuses, expected):
        assert derive_request_status(current, statuses) == expected


# =============================================================================
# LISTING
# =============================================================================

class TestListRequests:

    def test_counter_sees_only_own_location(self, catalog_client, seed):
        create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A101"])
        create_request(catalog_client, seed.coordinator, [seed.t02], codes=["A100"])

        rows, total = request_service.list_requests(user_id=seed.counter_t02)
        assert total == 1
        assert rows[0].location_ids == [seed.t02]

        rows, total = request_service.list_requests(user_id=seed.coordinator)
        assert total == 2

    def test_foreign_location_filter_rejected(self, catalog_client, seed):
        with pytest.raises(Forbidden):
            request_service.list_requests(user_id=seed.counter, location_id=seed.t02)

    def test_detail_hides_other_location_items(self, catalog_client, seed):
        req = create_request(catalog_client, seed.coordinator, [seed.t01, seed.t02], codes=["A100"])
        detail = request_service.get_request_detail(user_id=seed.manager_t02, request_id=req.id)
        assert detail["item_count"] == 1
        assert detail["items"][0]["location_id"] == seed.t02
        assert detail["status_counts"] == {"pending": 1}


# =============================================================================
# HTTP
# =============================================================================

class TestRequestRoutes:

    def test_create_and_send(self, client, seed):
        headers = auth_headers(seed.coordinator)
        resp = client.post("/api/inventory/requests", headers=headers, json={
            "request_type": "group",
            "location_ids": [seed.t01],
            "filter_groups": ["G200"],
            "comments": "Paint aisle",
        })
        assert resp.status_code == 201
        body = resp.json
        assert body["status"] == "draft"
        assert body["item_count"] == 2
        assert body["comments"] == "Paint aisle"

        resp = client.post(f"/api/inventory/requests/{body['id']}/send", headers=headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "sent"

        resp = client.post(f"/api/inventory/requests/{body['id']}/send", headers=headers)
        assert resp.status_code == 409
        assert resp.json["code"] == "INVALID_TRANSITION"

    def test_missing_field(self, client, seed):
        resp = client.post("/api/inventory/requests", headers=auth_headers(seed.coordinator), json={
            "location_ids": [seed.t01],
            "filter_specific_codes": ["A100"],
        })
        assert resp.status_code == 400
        assert resp.json["code"] == "VALIDATION_ERROR"

    def test_empty_filter_result_is_422(self, client, seed):
        resp = client.post("/api/inventory/requests", headers=auth_headers(seed.coordinator), json={
            "request_type": "division",
            "location_ids": [seed.t01],
            "filter_divisions": ["D9"],
        })
        assert resp.status_code == 422
        assert resp.json["code"] == "EMPTY_FILTER_RESULT"

    def test_counter_lacks_create_permission(self, client, seed):
        resp = client.post("/api/inventory/requests", headers=auth_headers(seed.counter), json={})
        assert resp.status_code == 403
        assert resp.json["code"] == "PERMISSION_DENIED"

    def test_cancel_route(self, client, catalog_client, seed):
        request_id = create_sent_request(catalog_client, seed)
        headers = auth_headers(seed.coordinator)

        resp = client.post(f"/api/inventory/requests/{request_id}/cancel", headers=headers, json={})
        assert resp.status_code == 400
        assert resp.json["code"] == "COMMENT_REQUIRED"

        resp = client.post(f"/api/inventory/requests/{request_id}/cancel", headers=headers,
                           json={"reason": "Wrong filter"})
        assert resp.status_code == 200
        assert resp.json["status"] == "cancelled"

    def test_list_and_detail(self, client, catalog_client, seed):
        request_id = create_sent_request(catalog_client, seed)
        headers = auth_headers(seed.manager)

        resp = client.get("/api/inventory/requests?status=sent", headers=headers)
        assert resp.status_code == 200
        assert resp.json["total"] == 1

        resp = client.get(f"/api/inventory/requests/{request_id}", headers=headers)
        assert resp.status_code == 200
        assert [item["item_code"] for item in resp.json["items"]] == ["A100", "A101"]

        resp = client.get("/api/inventory/requests/9999", headers=headers)
        assert resp.status_code == 404

    def test_catalog_search(self, client, seed):
        headers = auth_headers(seed.manager)
        resp = client.get("/api/inventory/catalog/products/search?q=hex", headers=headers)
        assert resp.status_code == 200
        assert [product["code"] for product in resp.json["products"]] == ["A100", "A101"]

        resp = client.get("/api/inventory/catalog/products/search", headers=headers)
        assert resp.status_code == 400


def test_create_without_catalog_is_503():
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:", "CATALOG_DATABASE_URL": None})
    with app.app_context():
        db.create_all()
        location = Location(name="Main Store", code="T01")
        user = User(username="coordinator", role="inventory_coordinator", is_active=True)
        db.session.add_all([location, user])
        db.session.commit()

        resp = app.test_client().post("/api/inventory/requests", headers=auth_headers(user.id), json={
            "request_type": "manual",
            "location_ids": [location.id],
            "filter_specific_codes": ["A100"],
        })
        assert resp.status_code == 503
        assert resp.json["code"] == "CATALOG_UNAVAILABLE"

        db.session.remove()
        db.drop_all()


# =============================================================================
# CONCURRENT NUMBERING
# =============================================================================

@pytest.mark.concurrent
def test_concurrent_creation_allocates_unique_numbers(tmp_path):
    catalog_engine = make_catalog_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'workflow.db'}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
        },
        catalog_client=CatalogClient(engine=catalog_engine),
    )
    client = app.extensions["countflow.catalog"]

    with app.app_context():
        db.create_all()
        location = Location(name="Main Store", code="T01")
        coordinator = User(username="coordinator", role="inventory_coordinator", is_active=True)
        db.session.add_all([location, coordinator])
        db.session.commit()
        location_id, coordinator_id = location.id, coordinator.id

        # First allocation of the year creates the sequence row
        numbers = [create_request(client, coordinator_id, [location_id], codes=["A100"]).request_number]
        db.session.remove()

    errors = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                req = create_request(client, coordinator_id, [location_id], codes=["A100"])
                with lock:
                    numbers.append(req.request_number)
            except Exception as exc:  # collected and asserted below
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    year = current_year()
    assert sorted(numbers) == [f"INV-{year}-{n:04d}" for n in range(1, 6)]

    with app.app_context():
        db.drop_all()
    catalog_engine.dispose()
