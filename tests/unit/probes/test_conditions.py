"""Tests for ready-made conditions over JSON snapshots."""

from converge.engine.models import ObservationStatus
from converge.probes.conditions import (
    collection_empty,
    dig,
    field_equals,
    named_item_state,
    ready_condition,
    summary_state,
)


def _status(snapshot, condition):
    return condition.evaluate(snapshot).status


class TestDig:
    def test_nested_path(self):
        assert dig({"a": {"b": {"c": 1}}}, "a.b.c") == 1

    def test_missing_returns_default(self):
        assert dig({"a": {}}, "a.b.c") is None
        assert dig({"a": 5}, "a.b", default="x") == "x"


class TestSummaryState:
    def test_deployed(self):
        snap = {"status": {"summary": {"state": "deployed"}}}
        assert _status(snap, summary_state()) == ObservationStatus.SATISFIED

    def test_failed(self):
        snap = {"status": {"summary": {"state": "failed"}}}
        obs = summary_state().evaluate(snap)
        assert obs.status == ObservationStatus.FAILED
        assert obs.reason == "status.summary.state=failed"

    def test_in_progress_and_missing_are_pending(self):
        assert _status({"status": {"summary": {"state": "pending-install"}}}, summary_state()) == ObservationStatus.PENDING
        assert _status({}, summary_state()) == ObservationStatus.PENDING


class TestReadyCondition:
    def test_ready_true(self):
        snap = {"status": {"conditions": [{"type": "Uploaded", "status": "True"}, {"type": "Ready", "status": "True"}]}}
        assert _status(snap, ready_condition()) == ObservationStatus.SATISFIED

    def test_ready_false_is_pending_by_default(self):
        snap = {"status": {"conditions": [{"type": "Ready", "status": "False", "reason": "Error", "message": "s3 denied"}]}}
        obs = ready_condition().evaluate(snap)
        assert obs.status == ObservationStatus.PENDING
        assert "s3 denied" in obs.reason

    def test_ready_error_fails_when_configured(self):
        snap = {"status": {"conditions": [{"type": "Ready", "status": "False", "reason": "Error", "message": "s3 denied"}]}}
        obs = ready_condition(fail_on_error=True).evaluate(snap)
        assert obs.status == ObservationStatus.FAILED
        assert obs.reason == "Ready=False: s3 denied"

    def test_no_conditions_yet(self):
        obs = ready_condition().evaluate({"status": {}})
        assert obs.status == ObservationStatus.PENDING
        assert obs.reason == "no Ready condition reported"


class TestFieldEquals:
    def test_active(self):
        cond = field_equals("state", "active", failed=("error",))
        assert _status({"state": "active"}, cond) == ObservationStatus.SATISFIED
        assert _status({"state": "provisioning"}, cond) == ObservationStatus.PENDING
        assert _status({"state": "error"}, cond) == ObservationStatus.FAILED
        assert _status({}, cond) == ObservationStatus.PENDING

    def test_falsy_expected_value(self):
        cond = field_equals("spec.paused", False)
        assert _status({"spec": {"paused": False}}, cond) == ObservationStatus.SATISFIED


class TestCollectionEmpty:
    def test_empty(self):
        assert _status({"items": []}, collection_empty()) == ObservationStatus.SATISFIED

    def test_items_left(self):
        obs = collection_empty().evaluate({"items": [{"name": "a"}, {"name": "b"}]})
        assert obs.status == ObservationStatus.PENDING
        assert obs.reason == "2 item(s) left in items"

    def test_missing_key_pending(self):
        assert _status({}, collection_empty()) == ObservationStatus.PENDING


class TestNamedItemState:
    LIST = {"data": [{"name": "local", "state": "active"}, {"name": "downstream", "state": "provisioning"}]}

    def test_found_and_matching(self):
        assert _status(self.LIST, named_item_state("local", "active")) == ObservationStatus.SATISFIED

    def test_found_not_matching(self):
        assert _status(self.LIST, named_item_state("downstream", "active")) == ObservationStatus.PENDING

    def test_not_listed(self):
        obs = named_item_state("ghost", "active").evaluate(self.LIST)
        assert obs.status == ObservationStatus.PENDING
        assert obs.reason == "ghost not listed yet"

    def test_failed_state(self):
        cond = named_item_state("downstream", "active", failed=("provisioning",))
        assert _status(self.LIST, cond) == ObservationStatus.FAILED
