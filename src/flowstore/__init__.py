"""Flowstore: a state container coupled to a structured-concurrency task engine.

Application logic runs as flows inside cancellation-scoped contexts. Flows
dispatch actions, wait for other actions and orchestrate each other through
race/all/throttle/debounce/latest/every, while pure reducers turn every
settled action into a new immutable state snapshot.
"""

from flowstore.core.cancellation import CancellationToken
from flowstore.core.context import ActionContext, RaceResult
from flowstore.core.domain import (
    ActionKind,
    ActionResult,
    Event,
    Failure,
    FlowCancelled,
    Init,
    Loading,
    Signal,
    State,
    StoreDisposedError,
)
from flowstore.core.reducers import combine_reducers, merge_reducers
from flowstore.core.store import ANY_CHANGE, Store, create_store
from flowstore.core.task import Task, TaskGroup, TaskStatus
from flowstore.helpers import compose, create_selector, delay, lazy

__all__ = [
    "Store",
    "create_store",
    "ANY_CHANGE",
    "Task",
    "TaskGroup",
    "TaskStatus",
    "ActionContext",
    "RaceResult",
    "CancellationToken",
    "Event",
    "ActionResult",
    "ActionKind",
    "Signal",
    "Loading",
    "Failure",
    "Init",
    "State",
    "FlowCancelled",
    "StoreDisposedError",
    "combine_reducers",
    "merge_reducers",
    "compose",
    "create_selector",
    "delay",
    "lazy",
]
