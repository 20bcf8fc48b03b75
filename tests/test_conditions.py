"""Unit tests for conditions and the Ready aggregate."""

from plugins.reconcilers.rabbitmq.conditions import (
    READY,
    Condition,
    ConditionStatus,
    Conditions,
)


class TestCondition:
    def test_round_trip_dict(self):
        cond = Condition("VhostReady", "True", "VhostExists", "ok", "2024-01-01T00:00:00")
        assert Condition.from_dict(cond.to_dict()) == cond

    def test_from_dict_defaults(self):
        cond = Condition.from_dict({"type": "X"})
        assert cond.status == "Unknown"
        assert not cond.is_true


class TestConditions:
    """Tests for the Conditions set."""

    def test_starts_empty_even_with_previous(self):
        previous = [{"type": "VhostReady", "status": "True"}]
        conditions = Conditions(previous)
        assert len(conditions) == 0
        assert "VhostReady" not in conditions

    def test_set_and_get(self):
        conditions = Conditions()
        conditions.set_true("VhostReady", "VhostExists", "exists")
        assert conditions.is_true("VhostReady")
        assert conditions.get("VhostReady").reason == "VhostExists"
        assert not conditions.is_true("Other")

    def test_transition_time_kept_when_status_unchanged(self):
        previous = [
            {
                "type": "VhostReady",
                "status": "True",
                "reason": "VhostExists",
                "last_transition_time": "2024-01-01T00:00:00+00:00",
            }
        ]
        conditions = Conditions(previous)
        cond = conditions.set_true("VhostReady", "VhostExists")
        assert cond.last_transition_time == "2024-01-01T00:00:00+00:00"

    def test_transition_time_changes_with_status(self):
        previous = [
            {
                "type": "VhostReady",
                "status": "False",
                "last_transition_time": "2024-01-01T00:00:00+00:00",
            }
        ]
        conditions = Conditions(previous)
        cond = conditions.set_true("VhostReady", "VhostExists")
        assert cond.last_transition_time != "2024-01-01T00:00:00+00:00"

    def test_marker_does_not_reset_transition_time(self):
        previous = [
            {
                "type": "QueueReady",
                "status": "True",
                "reason": "QueueExists",
                "last_transition_time": "2024-01-01T00:00:00+00:00",
            }
        ]
        conditions = Conditions(previous)

        marker = conditions.mark_evaluating("QueueReady")
        assert marker.status == "Unknown"
        assert conditions.get("QueueReady") is marker

        cond = conditions.set_true("QueueReady", "QueueExists")
        assert cond.last_transition_time == "2024-01-01T00:00:00+00:00"

    def test_marker_left_in_place_counts_as_transition(self):
        previous = [
            {
                "type": "QueueReady",
                "status": "True",
                "last_transition_time": "2024-01-01T00:00:00+00:00",
            }
        ]
        conditions = Conditions(previous)

        cond = conditions.mark_evaluating("QueueReady")
        assert cond.last_transition_time != "2024-01-01T00:00:00+00:00"

    def test_explicit_unknown_is_compared_within_pass(self):
        conditions = Conditions()
        first = conditions.set_unknown("QueueReady", "Waiting")
        second = conditions.set_unknown("QueueReady", "StillWaiting")
        assert second.last_transition_time == first.last_transition_time

    def test_to_list(self):
        conditions = Conditions()
        conditions.set_unknown("A")
        conditions.set_false("B", "Broken", "it broke")
        items = conditions.to_list()
        assert [c["type"] for c in items] == ["A", "B"]
        assert items[1]["status"] == "False"
        assert items[1]["message"] == "it broke"


class TestAggregate:
    """Tests for Conditions.aggregate."""

    def test_all_true(self):
        conditions = Conditions()
        conditions.set_true("A", "AOk")
        conditions.set_true("B", "BOk")
        ready = conditions.aggregate(["A", "B"])
        assert ready.type == READY
        assert ready.is_true
        assert ready.reason == "Ready"

    def test_first_false_wins(self):
        conditions = Conditions()
        conditions.set_true("A", "AOk")
        conditions.set_false("B", "BBroken", "b is broken")
        conditions.set_false("C", "CBroken", "c is broken")
        ready = conditions.aggregate(["A", "B", "C"])
        assert ready.status == ConditionStatus.FALSE.value
        assert ready.reason == "BBroken"
        assert ready.message == "b is broken"

    def test_unknown_constituent(self):
        conditions = Conditions()
        conditions.set_unknown("A", "Waiting", "still waiting")
        ready = conditions.aggregate(["A"])
        assert ready.status == "Unknown"
        assert ready.reason == "Waiting"

    def test_missing_constituent(self):
        conditions = Conditions()
        conditions.set_true("A", "AOk")
        ready = conditions.aggregate(["A", "B"])
        assert ready.status == "Unknown"
        assert ready.message == "B not evaluated"

    def test_false_constituent_never_yields_ready(self):
        for statuses in (["True", "False"], ["False", "True"], ["Unknown", "True"]):
            conditions = Conditions()
            for i, status in enumerate(statuses):
                conditions.set(f"C{i}", ConditionStatus(status), "r")
            assert not conditions.aggregate(["C0", "C1"]).is_true
