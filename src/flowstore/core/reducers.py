"""Reducer composition with structural sharing.

- combine_reducers: Builds a mapping-state reducer from per-key reducers
- merge_reducers: Chains two whole-state reducers sequentially

Both return the input state object unchanged when nothing changed, so
listeners can detect changes by identity.
"""
from typing import Mapping

from flowstore.core.domain import Event, Reducer, State


def combine_reducers(reducers: Mapping[str, Reducer]) -> Reducer:
    """Combine per-key reducers into one reducer over a mapping state.

    Each key's reducer receives the previous value stored under that key (or
    None when the state or the key is missing). The state is copied the first
    time a key's value changes identity, and only the changed keys are
    replaced in the copy.

    Args:
        reducers: Mapping of state key to the reducer owning that key.

    Returns:
        A reducer returning the very same state object when no key changed.
    """
    entries = list(reducers.items())

    def combined(state: State, event: Event) -> State:
        next_state = state
        for key, reducer in entries:
            prev_value = None if next_state is None else next_state.get(key)
            next_value = reducer(prev_value, event)
            if next_value is not prev_value:
                if next_state is state:
                    next_state = {} if state is None else {**state}
                next_state[key] = next_value
        return next_state

    return combined


def merge_reducers(first: Reducer | None, second: Reducer) -> Reducer:
    """Chain two whole-state reducers: first runs, its output feeds second.

    Args:
        first: Reducer applied first, or None to use second alone.
        second: Reducer applied to first's result.

    Returns:
        The merged reducer.
    """
    if first is None:
        return second

    def merged(state: State, event: Event) -> State:
        return second(first(state, event), event)

    return merged
