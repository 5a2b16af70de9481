# Overview: Pytest coverage for counting, batch submission, manager review and comments.

"""
Count Item State Machine Tests

pending -> assigned -> counted -> reviewing -> approved | rejected,
with rejected looping back to counted on recount.
"""

import pytest

from countflow.errors import (
    CommentRequired,
    Forbidden,
    InvalidTransition,
    NotAssignee,
    OutOfScope,
    ValidationError,
)
from countflow.extensions import db
from countflow.models import CountItem, InventoryRequest
from countflow.services import assignment_service, count_item_service, request_service
from countflow.services.count_item_service import compute_adjustment

from conftest import create_request, create_sent_request


@pytest.fixture
def assigned(catalog_client, seed):
    """A sent request at T01 with A100 and A101 assigned to the first counter."""
    request_id = create_sent_request(catalog_client, seed, codes=["A100", "A101"])
    items = db.session.query(CountItem).filter_by(request_id=request_id).all()
    ids = {item.item_code: item.id for item in items}
    assignment_service.assign_items(
        user_id=seed.manager,
        request_id=request_id,
        location_id=seed.t01,
        mode="manual",
        item_ids=list(ids.values()),
        assign_to=seed.counter,
    )
    ids["request_id"] = request_id
    return ids


def _count_and_submit(seed, item_id, physical_count):
    count_item_service.record_count(user_id=seed.counter, item_id=item_id, physical_count=physical_count)
    count_item_service.submit_batch(user_id=seed.counter, item_ids=[item_id])


# =============================================================================
# RECONCILIATION
# =============================================================================

class TestComputeAdjustment:

    @pytest.mark.parametrize(
        "physical, system, cost, expected",
        [
            (47, 50, 250, (-3, "negative", -750)),
            (10, 10, 40, (0, "none", 0)),
            (12, 5, 1999, (7, "positive", 13993)),
            (0, 8, 650, (-8, "negative", -5200)),
        ],
    )
    def test_difference_type_and_cost(self, physical, system, cost, expected):
        assert tuple(compute_adjustment(physical, system, cost)) == expected


# =============================================================================
# COUNTING
# =============================================================================

class TestRecordCount:

    def test_count_sets_derived_fields(self, seed, assigned):
        item = count_item_service.record_count(
            user_id=seed.counter, item_id=assigned["A100"], physical_count=47, counter_comment="Two boxes damaged"
        )
        assert item.status == "counted"
        assert item.physical_count == 47
        assert item.difference == -3
        assert item.adjustment_type == "negative"
        assert item.cost_impact_cents == -750
        assert item.counted_by == seed.counter
        assert item.counter_comment == "Two boxes damaged"

    def test_request_moves_to_in_progress(self, seed, assigned):
        req = db.session.get(InventoryRequest, assigned["request_id"])
        assert req.status == "in_progress"

    def test_only_assignee_may_count(self, seed, assigned):
        with pytest.raises(NotAssignee):
            count_item_service.record_count(user_id=seed.counter2, item_id=assigned["A100"], physical_count=1)

    def test_manager_is_not_assignee(self, seed, assigned):
        with pytest.raises(NotAssignee):
            count_item_service.record_count(user_id=seed.manager, item_id=assigned["A100"], physical_count=1)

    @pytest.mark.parametrize("value", [-1, 1.5, "10", True, None])
    def test_invalid_count_value(self, seed, assigned, value):
        with pytest.raises(ValidationError):
            count_item_service.record_count(user_id=seed.counter, item_id=assigned["A100"], physical_count=value)

    def test_pending_item_cannot_be_counted(self, catalog_client, seed):
        request_id = create_sent_request(catalog_client, seed, codes=["A100"])
        item = db.session.query(CountItem).filter_by(request_id=request_id).one()
        item.assigned_to = seed.counter
        db.session.commit()

        with pytest.raises(InvalidTransition):
            count_item_service.record_count(user_id=seed.counter, item_id=item.id, physical_count=3)

    def test_counted_item_cannot_be_recounted(self, seed, assigned):
        count_item_service.record_count(user_id=seed.counter, item_id=assigned["A100"], physical_count=47)
        with pytest.raises(InvalidTransition):
            count_item_service.record_count(user_id=seed.counter, item_id=assigned["A100"], physical_count=48)

    def test_cancelled_request_blocks_counting(self, seed, assigned):
        request_service.cancel_request(user_id=seed.coordinator, request_id=assigned["request_id"], reason="Stop")
        with pytest.raises(InvalidTransition):
            count_item_service.record_count(user_id=seed.counter, item_id=assigned["A100"], physical_count=47)

    def test_work_pool_filters(self, seed, assigned):
        pool = count_item_service.get_work_pool(user_id=seed.counter)
        assert [item.item_code for item in pool] == ["A100", "A101"]

        pool = count_item_service.get_work_pool(user_id=seed.counter, group="G101")
        assert [item.item_code for item in pool] == ["A101"]

        assert count_item_service.get_work_pool(user_id=seed.counter2) == []


class TestSubmitBatch:

    def test_only_counted_own_items_advance(self, seed, assigned):
        count_item_service.record_count(user_id=seed.counter, item_id=assigned["A100"], physical_count=47)

        affected = count_item_service.submit_batch(
            user_id=seed.counter, item_ids=[assigned["A100"], assigned["A101"], 9999]
        )
        assert affected == 1

        assert db.session.get(CountItem, assigned["A100"]).status == "reviewing"
        assert db.session.get(CountItem, assigned["A101"]).status == "assigned"

    def test_resubmission_is_noop(self, seed, assigned):
        count_item_service.record_count(user_id=seed.counter, item_id=assigned["A100"], physical_count=47)
        assert count_item_service.submit_batch(user_id=seed.counter, item_ids=[assigned["A100"]]) == 1
        assert count_item_service.submit_batch(user_id=seed.counter, item_ids=[assigned["A100"]]) == 0

    def test_other_users_items_are_ignored(self, seed, assigned):
        count_item_service.record_count(user_id=seed.counter, item_id=assigned["A100"], physical_count=47)
        assert count_item_service.submit_batch(user_id=seed.counter2, item_ids=[assigned["A100"]]) == 0

    def test_empty_batch(self, seed):
        assert count_item_service.submit_batch(user_id=seed.counter, item_ids=[]) == 0

    def test_submission_bumps_version(self, seed, assigned):
        item = count_item_service.record_count(user_id=seed.counter, item_id=assigned["A100"], physical_count=47)
        version = item.version_id
        count_item_service.submit_batch(user_id=seed.counter, item_ids=[assigned["A100"]])
        db.session.expire_all()
        assert db.session.get(CountItem, assigned["A100"]).version_id == version + 1


# =============================================================================
# REVIEW
# =============================================================================

class TestReview:

    def test_approve(self, seed, assigned):
        _count_and_submit(seed, assigned["A100"], 47)
        item = count_item_service.approve_item(user_id=seed.manager, item_id=assigned["A100"], comment="OK")
        assert item.status == "approved"
        assert item.approved_by == seed.manager
        assert item.manager_comment == "OK"

    def test_reject_requires_comment(self, seed, assigned):
        _count_and_submit(seed, assigned["A100"], 47)
        with pytest.raises(CommentRequired):
            count_item_service.reject_item(user_id=seed.manager, item_id=assigned["A100"], comment=" ")
        assert db.session.get(CountItem, assigned["A100"]).status == "reviewing"

    def test_rejected_item_is_recounted(self, seed, assigned):
        _count_and_submit(seed, assigned["A101"], 10)
        count_item_service.reject_item(user_id=seed.manager, item_id=assigned["A101"], comment="Check back shelf")

        item = count_item_service.record_count(user_id=seed.counter, item_id=assigned["A101"], physical_count=12)
        assert item.status == "counted"
        assert item.difference == 2
        assert item.adjustment_type == "positive"
        assert item.manager_comment == "Check back shelf"

    def test_review_only_from_reviewing(self, seed, assigned):
        count_item_service.record_count(user_id=seed.counter, item_id=assigned["A100"], physical_count=47)
        with pytest.raises(InvalidTransition):
            count_item_service.approve_item(user_id=seed.manager, item_id=assigned["A100"])

    def test_approve_twice_is_invalid(self, seed, assigned):
        _count_and_submit(seed, assigned["A100"], 47)
        count_item_service.approve_item(user_id=seed.manager, item_id=assigned["A100"])
        with pytest.raises(InvalidTransition):
            count_item_service.approve_item(user_id=seed.manager, item_id=assigned["A100"])

    def test_manager_of_other_location(self, seed, assigned):
        _count_and_submit(seed, assigned["A100"], 47)
        with pytest.raises(OutOfScope):
            count_item_service.approve_item(user_id=seed.manager_t02, item_id=assigned["A100"])

    def test_admin_reviews_any_location(self, seed, assigned):
        _count_and_submit(seed, assigned["A100"], 47)
        item = count_item_service.approve_item(user_id=seed.admin, item_id=assigned["A100"])
        assert item.status == "approved"

    def test_counter_cannot_review(self, seed, assigned):
        _count_and_submit(seed, assigned["A100"], 47)
        with pytest.raises(Forbidden):
            count_item_service.approve_item(user_id=seed.counter, item_id=assigned["A100"])

    def test_review_pool_is_location_scoped(self, seed, assigned):
        _count_and_submit(seed, assigned["A100"], 47)
        assert [item.id for item in count_item_service.get_review_pool(user_id=seed.manager)] == [assigned["A100"]]
        assert count_item_service.get_review_pool(user_id=seed.manager_t02) == []

    def test_all_approved_completes_request(self, seed, assigned):
        for code in ("A100", "A101"):
            _count_and_submit(seed, assigned[code], 10)
            count_item_service.approve_item(user_id=seed.manager, item_id=assigned[code])

        req = db.session.get(InventoryRequest, assigned["request_id"])
        assert req.status == "completed"
        assert req.completed_at is not None


# =============================================================================
# COMMENTS AND HISTORY
# =============================================================================

class TestComments:

    @pytest.mark.parametrize(
        "role_attr, field",
        [
            ("counter", "counter_comment"),
            ("manager", "manager_comment"),
            ("auditor", "auditor_comment"),
            ("coordinator", "coordinator_comment"),
        ],
    )
    def test_comment_goes_to_role_field(self, seed, assigned, role_attr, field):
        item = count_item_service.add_comment(
            user_id=getattr(seed, role_attr), item_id=assigned["A100"], comment="Shelf relabelled"
        )
        assert getattr(item, field) == "Shelf relabelled"

    def test_counter_comments_only_own_items(self, seed, assigned):
        with pytest.raises(NotAssignee):
            count_item_service.add_comment(user_id=seed.counter2, item_id=assigned["A100"], comment="x")

    def test_approver_cannot_comment(self, seed, assigned):
        with pytest.raises(Forbidden):
            count_item_service.add_comment(user_id=seed.approver, item_id=assigned["A100"], comment="x")

    def test_blank_comment(self, seed, assigned):
        with pytest.raises(ValidationError):
            count_item_service.add_comment(user_id=seed.manager, item_id=assigned["A100"], comment="")


class TestItemHistory:

    def test_history_follows_transitions(self, seed, assigned):
        _count_and_submit(seed, assigned["A100"], 47)
        count_item_service.approve_item(user_id=seed.manager, item_id=assigned["A100"])

        history = count_item_service.get_item_history(user_id=seed.manager, item_id=assigned["A100"])
        assert [event.action for event in history] == ["assigned", "counted", "submitted_for_review", "approved"]
        counted = history[1]
        assert counted.actor_user_id == seed.counter
        assert counted.old_value["status"] == "assigned"
        assert counted.new_value["difference"] == -3

    def test_history_is_location_scoped(self, seed, assigned):
        with pytest.raises(Forbidden):
            count_item_service.get_item_history(user_id=seed.counter_t02, item_id=assigned["A100"])


def test_draft_request_blocks_counting(catalog_client, seed):
    req = create_request(catalog_client, seed.coordinator, [seed.t01], codes=["A100"])
    item = req.items[0]
    item.assigned_to = seed.counter
    item.status = "assigned"
    db.session.commit()

    with pytest.raises(InvalidTransition):
        count_item_service.record_count(user_id=seed.counter, item_id=item.id, physical_count=5)
