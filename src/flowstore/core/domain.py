"""Core domain types for the Flowstore framework.

This module defines the fundamental types shared by the store and the task
engine:
- State: Type alias for an application-defined immutable snapshot
- Reducer: Pure function computing the next state from state and an Event
- Signal: Well-known synthetic actions emitted by the engine (Loading, Failure)
- Event: The unit of reduction passed to every reducer call
- ActionKind: The variant an action resolves to when it is spawned
- FlowCancelled / StoreDisposedError: The framework's exception types
- mark_reducer_error / is_reducer_error: Tell reducer errors apart from action errors
"""
import enum
import inspect
from dataclasses import dataclass
from typing import Any, Callable


class FlowCancelled(Exception):
    """Raised by a context operation whose owning task has been cancelled.

    This is a control signal, not an error. Every task boundary catches it
    and settles silently: it never reaches reducers as a Failure event and
    never rejects a Task.
    """


class StoreDisposedError(RuntimeError):
    """Raised when a disposed Store is asked to dispatch, subscribe or add flows."""


type State = Any
"""State is an opaque, application-defined snapshot.

The store never inspects it except through reducers and selectors. Reducers
must treat it as immutable and return either the same object (no change) or
a new one.
"""


class Signal:
    """A synthetic action emitted by the task engine.

    Signals are used as action identities only. They cannot be dispatched
    directly and are never invoked.

    Attributes:
        name: Human readable name shown in logs and reprs.
    """
    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<Signal {self.name}>"


Loading = Signal("Loading")
"""Emitted as soon as an asynchronous action is dispatched.

Reducers receive Event(action=Loading, target=<real action>, payload=...).
"""

Failure = Signal("Failure")
"""Emitted once when an action raises or its awaitable fails.

Reducers receive Event(action=Failure, target=<real action>, payload=..., error=...).
"""

Init = Signal("Init")
"""Used to derive the initial state from an empty (None) state."""


@dataclass(frozen=True)
class Event:
    """A reduction event.

    Attributes:
        action: The dispatched action, or Loading/Failure for synthetic events.
        payload: The payload the action was dispatched with.
        result: The action's result on success.
        error: The exception raised by the action, for Failure events.
        target: The real action wrapped by a Loading/Failure event.
        state: The snapshot after reduction. Only set for default-channel
            listeners.
    """
    action: Any
    payload: Any = None
    result: Any = None
    error: Exception | None = None
    target: Any = None
    state: State = None


@dataclass(frozen=True)
class ActionResult:
    """Resolution value of ActionContext.action()."""
    action: Any
    payload: Any = None
    result: Any = None


type Reducer = Callable[[State, Event], State]
type Listener = Callable[[Event], Any]


class ActionKind(enum.Enum):
    """The variant an action resolves to when a task is spawned for it."""
    EVENT = "event"
    SYNC = "sync"
    ASYNC = "async"
    SIGNAL = "signal"


def classify_action(action: Any) -> ActionKind:
    """Resolve which variant of action this is.

    Args:
        action: Any hashable action identity.

    Returns:
        SIGNAL for engine signals, ASYNC for coroutine functions, SYNC for
        other callables and EVENT for plain identities such as strings.
    """
    if isinstance(action, Signal):
        return ActionKind.SIGNAL
    if inspect.iscoroutinefunction(action):
        return ActionKind.ASYNC
    if callable(action):
        return ActionKind.SYNC
    return ActionKind.EVENT


def action_name(action: Any) -> str:
    """Return a readable name for an action, for log messages."""
    if isinstance(action, Signal):
        return action.name
    if isinstance(action, str):
        return action
    return getattr(action, "__qualname__", None) or repr(action)


def mark_reducer_error(error: Exception) -> None:
    """Tag an exception raised by a reducer so task boundaries re-raise it without a Failure event."""
    error._flowstore_reducer_error = True


def is_reducer_error(error: Exception) -> bool:
    """Return True if error was raised by a reducer while reducing an event."""
    return getattr(error, "_flowstore_reducer_error", False)
