"""Reducer composition tests.

Tests structural sharing in combine_reducers and sequential chaining in
merge_reducers.
"""

from flowstore.core.domain import Event
from flowstore.core.reducers import combine_reducers, merge_reducers


def count(state, event):
    if state is None:
        return 0
    return state + 1 if event.action == "count" else state


def items(state, event):
    if state is None:
        return []
    return [*state, event.payload] if event.action == "add" else state


class TestCombineReducers:
    def test_initial_state_from_none(self):
        """Test that a None state is built into a mapping of initial values."""
        reducer = combine_reducers({"count": count, "items": items})
        assert reducer(None, Event("init")) == {"count": 0, "items": []}

    def test_returns_same_state_when_nothing_changes(self):
        """Test that a no-op event returns the very same state object."""
        reducer = combine_reducers({"count": count, "items": items})
        state = reducer(None, Event("init"))
        assert reducer(state, Event("noop")) is state

    def test_copies_on_write_and_shares_unchanged_keys(self):
        """Test that only the changed key is replaced in a new state object."""
        reducer = combine_reducers({"count": count, "items": items})
        state = reducer(None, Event("init"))
        next_state = reducer(state, Event("count"))
        assert next_state is not state
        assert next_state["count"] == 1
        assert next_state["items"] is state["items"]
        assert state["count"] == 0

    def test_keeps_keys_without_reducer(self):
        """Test that keys not owned by any reducer survive a change."""
        reducer = combine_reducers({"count": count})
        next_state = reducer({"count": 1, "other": "x"}, Event("count"))
        assert next_state == {"count": 2, "other": "x"}


class TestMergeReducers:
    def test_first_result_feeds_second(self):
        """Test that the merged reducer applies the first reducer, then the second."""
        calls = []

        def first(state, event):
            calls.append("first")
            return (state or 0) + 1

        def second(state, event):
            calls.append("second")
            return state * 10

        merged = merge_reducers(first, second)
        assert merged(1, Event("any")) == 20
        assert calls == ["first", "second"]

    def test_missing_first_returns_second(self):
        """Test that merging onto None yields the second reducer itself."""
        assert merge_reducers(None, count) is count
