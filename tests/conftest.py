"""Shared pytest fixtures and test utilities.

This module provides reducers, test doubles and store fixtures for testing
Flowstore without file logging side effects.
"""

import pytest

from flowstore.core.domain import Event, Init, State
from flowstore.core.store import Store


def counter(state: State, event: Event) -> State:
    """Counter reducer: 0 initially, "increase" adds one, "decrease" subtracts one."""
    if state is None:
        return 0
    if event.action == "increase":
        return state + 1
    if event.action == "decrease":
        return state - 1
    return state


def history(state: State, event: Event) -> State:
    """Reducer keeping every reduced event, in order, as a tuple."""
    if state is None:
        return ()
    if event.action is Init:
        return state
    return state + (event,)


class EventRecorder:
    """In-memory listener double.

    Captures every event it is called with, enabling verification of
    notification order and content.
    """

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    @property
    def actions(self) -> list:
        return [event.action for event in self.events]

    @property
    def payloads(self) -> list:
        return [event.payload for event in self.events]


@pytest.fixture
def store():
    """Provide a counter Store without file logging, disposed after the test."""
    counter_store = Store(counter, log_dir="")
    yield counter_store
    counter_store.dispose()


@pytest.fixture
def history_store():
    """Provide a Store whose state is the tuple of every reduced event."""
    history_store = Store(history, log_dir="")
    yield history_store
    history_store.dispose()


@pytest.fixture
def recorder():
    """Provide a fresh EventRecorder."""
    return EventRecorder()
