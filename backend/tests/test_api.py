# Overview: End-to-end HTTP tests for authentication, the counting flow, reports and health.

"""
API Tests

Drives the workflow through the Flask test client the way the store
front-end does: bearer tokens, JSON bodies, {"error", "code"} on failure.
"""

import pytest

from countflow import create_app
from countflow.catalog import CatalogClient
from countflow.extensions import db

from conftest import auth_headers, count_and_approve


API = "/api/inventory"


def _item_ids(detail):
    return {item["item_code"]: item["id"] for item in detail["items"]}


# =============================================================================
# AUTHENTICATION
# =============================================================================

class TestAuthentication:

    def test_missing_token(self, client, seed):
        resp = client.get(f"{API}/requests")
        assert resp.status_code == 401
        assert resp.json["code"] == "UNAUTHENTICATED"

    def test_unknown_token(self, client, seed):
        resp = client.get(f"{API}/requests", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401

    def test_malformed_header(self, client, seed):
        resp = client.get(f"{API}/requests", headers={"Authorization": "Token abc"})
        assert resp.status_code == 401

    def test_missing_permission(self, client, seed):
        resp = client.post(f"{API}/items/submit-batch", headers=auth_headers(seed.approver),
                           json={"item_ids": [1]})
        assert resp.status_code == 403
        assert resp.json["code"] == "PERMISSION_DENIED"
        assert resp.json["required_permission"] == "RECORD_COUNTS"


# =============================================================================
# COUNTING FLOW
# =============================================================================

class TestCountingFlow:

    def test_count_review_and_recount(self, client, seed):
        manager = auth_headers(seed.manager)
        counter = auth_headers(seed.counter)

        resp = client.post(f"{API}/requests", headers=manager, json={
            "request_type": "manual",
            "location_ids": [seed.t01],
            "filter_specific_codes": ["A100", "A101"],
            "comments": "Fasteners aisle",
        })
        assert resp.status_code == 201
        assert resp.json["status"] == "draft"
        assert resp.json["item_count"] == 2
        request_id = resp.json["id"]
        ids = _item_ids(resp.json)

        assert client.post(f"{API}/requests/{request_id}/send", headers=manager).status_code == 200

        resp = client.post(f"{API}/items/assign", headers=manager, json={
            "request_id": request_id,
            "location_id": seed.t01,
            "mode": "manual",
            "item_ids": [ids["A100"], ids["A101"]],
            "assign_to": seed.counter,
        })
        assert resp.status_code == 200
        assert resp.json["assigned_count"] == 2

        resp = client.get(f"{API}/my-work-pool", headers=counter)
        assert [item["item_code"] for item in resp.json["items"]] == ["A100", "A101"]

        resp = client.post(f"{API}/items/{ids['A100']}/count-result", headers=counter,
                           json={"physical_count": 47})
        assert resp.status_code == 200
        assert resp.json["difference"] == -3
        assert resp.json["adjustment_type"] == "negative"
        assert resp.json["cost_impact_cents"] == -750

        resp = client.post(f"{API}/items/{ids['A101']}/count-result", headers=counter,
                           json={"physical_count": 10})
        assert resp.json["difference"] == 0
        assert resp.json["adjustment_type"] == "none"

        resp = client.post(f"{API}/items/submit-batch", headers=counter,
                           json={"item_ids": [ids["A100"], ids["A101"]]})
        assert resp.json == {"affected_count": 2}

        resp = client.get(f"{API}/manager/review-pool", headers=manager)
        assert len(resp.json["items"]) == 2

        resp = client.post(f"{API}/items/{ids['A100']}/approve", headers=manager, json={})
        assert resp.status_code == 200
        assert resp.json["status"] == "approved"

        resp = client.post(f"{API}/items/{ids['A101']}/reject", headers=manager, json={})
        assert resp.status_code == 400
        assert resp.json["code"] == "COMMENT_REQUIRED"

        resp = client.post(f"{API}/items/{ids['A101']}/reject", headers=manager,
                           json={"comment": "Count the back shelf too"})
        assert resp.status_code == 200
        assert resp.json["status"] == "rejected"

        resp = client.post(f"{API}/items/{ids['A101']}/count-result", headers=counter,
                           json={"physical_count": 12})
        assert resp.status_code == 200
        assert resp.json["status"] == "counted"
        assert resp.json["difference"] == 2

        resp = client.get(f"{API}/items/{ids['A101']}/history", headers=manager)
        assert [event["action"] for event in resp.json["history"]] == [
            "assigned", "counted", "submitted_for_review", "rejected", "counted",
        ]

        resp = client.get(f"{API}/requests/{request_id}", headers=manager)
        assert resp.json["status"] == "in_progress"

    def test_counting_someone_elses_item(self, client, catalog_client, seed):
        _request_id, ids = count_and_approve(catalog_client, seed, {"A100": 47})
        resp = client.post(f"{API}/items/{ids['A100']}/count-result", headers=auth_headers(seed.counter2),
                           json={"physical_count": 1})
        assert resp.status_code == 403
        assert resp.json["code"] == "NOT_ASSIGNEE"

    def test_count_missing_field(self, client, catalog_client, seed):
        _request_id, ids = count_and_approve(catalog_client, seed, {"A100": 47})
        resp = client.post(f"{API}/items/{ids['A100']}/count-result", headers=auth_headers(seed.counter), json={})
        assert resp.status_code == 400
        assert resp.json["code"] == "VALIDATION_ERROR"

    def test_comment_route(self, client, catalog_client, seed):
        _request_id, ids = count_and_approve(catalog_client, seed, {"A100": 47})
        resp = client.patch(f"{API}/items/{ids['A100']}/comment", headers=auth_headers(seed.auditor),
                            json={"comment": "Pallet moved to bay 4"})
        assert resp.status_code == 200
        assert resp.json["auditor_comment"] == "Pallet moved to bay 4"


# =============================================================================
# REPORTS
# =============================================================================

class TestReports:

    @pytest.fixture
    def reconciled(self, catalog_client, seed):
        return count_and_approve(catalog_client, seed, {"A100": 47, "A101": 10, "B200": 6, "B201": 8})

    def test_summary(self, client, seed, reconciled):
        request_id, _ids = reconciled
        resp = client.get(f"{API}/reports/summary?request_id={request_id}", headers=auth_headers(seed.coordinator))
        assert resp.status_code == 200
        assert resp.json["totals"] == {
            "item_count": 4,
            "counted_count": 4,
            "total_difference": -2,
            "total_cost_impact_cents": 1249,
            "positive_units": 1,
            "negative_units": 3,
        }
        assert resp.json["by_status"] == {"approved": 4}
        assert [row["division_code"] for row in resp.json["by_division"]] == ["D1", "D2"]

    def test_by_division(self, client, seed, reconciled):
        resp = client.get(f"{API}/reports/by-division?division_code=D2", headers=auth_headers(seed.manager))
        assert resp.status_code == 200
        assert resp.json["totals"]["total_cost_impact_cents"] == 1999
        assert [row["location_id"] for row in resp.json["by_location"]] == [seed.t01]
        assert sorted(item["item_code"] for item in resp.json["items"]) == ["B200", "B201"]

    def test_by_division_requires_code(self, client, seed):
        resp = client.get(f"{API}/reports/by-division", headers=auth_headers(seed.coordinator))
        assert resp.status_code == 400

    def test_by_location(self, client, seed, reconciled):
        resp = client.get(f"{API}/reports/by-location?location_id={seed.t01}", headers=auth_headers(seed.auditor))
        assert resp.status_code == 200
        assert resp.json["location"]["code"] == "T01"
        assert resp.json["totals"]["item_count"] == 4

    def test_manager_cannot_report_other_location(self, client, seed, reconciled):
        resp = client.get(f"{API}/reports/by-location?location_id={seed.t01}", headers=auth_headers(seed.manager_t02))
        assert resp.status_code == 403
        assert resp.json["code"] == "OUT_OF_SCOPE"

    def test_manager_summary_is_scoped(self, client, seed, reconciled):
        resp = client.get(f"{API}/reports/summary", headers=auth_headers(seed.manager_t02))
        assert resp.json["totals"]["item_count"] == 0

    def test_counter_has_no_reports(self, client, seed):
        resp = client.get(f"{API}/reports/summary", headers=auth_headers(seed.counter))
        assert resp.status_code == 403


# =============================================================================
# HEALTH
# =============================================================================

class TestHealth:

    def test_healthy(self, client, seed):
        resp = client.get(f"{API}/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["database"]["details"]["locations"] == 2
        assert resp.json["checks"]["catalog"]["status"] == "healthy"

    def _health_with_catalog(self, catalog_client):
        app = create_app(
            {"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"},
            catalog_client=catalog_client,
        )
        with app.app_context():
            db.create_all()
            resp = app.test_client().get(f"{API}/health")
            db.session.remove()
            db.drop_all()
        return resp

    def test_degraded_without_catalog(self):
        resp = self._health_with_catalog(None)
        assert resp.status_code == 200
        assert resp.json["status"] == "degraded"
        assert resp.json["checks"]["catalog"]["warning"] == "not_configured"

    def test_unreachable_catalog(self):
        # Never opened, so every catalog call fails
        resp = self._health_with_catalog(CatalogClient("sqlite:///catalog.db"))
        assert resp.status_code == 503
        assert resp.json["status"] == "unhealthy"
        assert resp.json["checks"]["database"]["status"] == "healthy"
