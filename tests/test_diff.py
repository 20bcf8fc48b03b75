"""Unit tests for the generic desired/observed diff."""

from plugins.reconcilers.rabbitmq.diff import DiffResult, deep_equal, diff, index_by


class TestDeepEqual:
    """Tests for deep_equal."""

    def test_scalars(self):
        assert deep_equal("a", "a")
        assert not deep_equal("a", "b")
        assert deep_equal(1, 1.0)
        assert not deep_equal(1, "1")

    def test_bool_is_not_a_number(self):
        assert deep_equal(True, True)
        assert not deep_equal(True, 1)
        assert not deep_equal(0, False)

    def test_nested(self):
        assert deep_equal({"a": [1, {"b": True}]}, {"a": [1, {"b": True}]})
        assert not deep_equal({"a": [1, {"b": True}]}, {"a": [1, {"b": 1}]})

    def test_dict_keys_must_match(self):
        assert not deep_equal({"a": 1}, {"a": 1, "b": 2})

    def test_list_order_matters(self):
        assert not deep_equal([1, 2], [2, 1])

    def test_none(self):
        assert deep_equal(None, None)
        assert not deep_equal(None, {})


class TestDiff:
    """Tests for the diff algorithm."""

    def test_empty(self):
        result = diff({}, {}, lambda a, b: a == b)
        assert isinstance(result, DiffResult)
        assert result.empty

    def test_create_update_delete_unchanged(self):
        desired = {"a": 1, "b": 2, "c": 3}
        observed = {"b": 2, "c": 30, "d": 4}

        result = diff(desired, observed, lambda a, b: a == b)

        assert result.create == {"a": 1}
        assert result.update == {"c": 3}
        assert result.delete == {"d": 4}
        assert result.unchanged == ["b"]
        assert not result.empty

    def test_every_key_accounted_for_once(self):
        desired = {k: k for k in "abcdef"}
        observed = {k: k.upper() if k in "bd" else k for k in "cdefgh"}

        result = diff(desired, observed, lambda a, b: a == b)

        buckets = [
            set(result.create),
            set(result.update),
            set(result.delete),
            set(result.unchanged),
        ]
        union = set().union(*buckets)
        assert union == set(desired) | set(observed)
        assert sum(len(b) for b in buckets) == len(union)

    def test_equal_receives_desired_then_observed(self):
        seen = []

        def equal(want, have):
            seen.append((want, have))
            return True

        diff({"k": "want"}, {"k": "have"}, equal)
        assert seen == [("want", "have")]

    def test_preserves_desired_order(self):
        desired = {"z": 1, "a": 2, "m": 3}
        result = diff(desired, {}, lambda a, b: a == b)
        assert list(result.create) == ["z", "a", "m"]

    def test_does_not_mutate_inputs(self):
        observed = {"x": 1}
        diff({}, observed, lambda a, b: a == b)
        assert observed == {"x": 1}


class TestIndexBy:
    def test_index(self):
        items = [{"vhost": "a", "n": 1}, {"vhost": "b", "n": 2}]
        assert index_by(items, key=lambda p: p["vhost"]) == {
            "a": {"vhost": "a", "n": 1},
            "b": {"vhost": "b", "n": 2},
        }
