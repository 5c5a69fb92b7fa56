"""State container.

The Store owns the current state snapshot and the reducer composition, and
routes every dispatch through the task engine:
- dispatch: Spawns a task; its outcome is reduced into a new snapshot
- subscribe: Registers listeners on the default channel or on one action
- get_state: Reads the snapshot, optionally through selectors
- reducer: Adds per-key or whole-state reducers at runtime
- flow: Starts long-running flows once per store
- dispose: Tears down flows, timers and listener registries

Each Store instance represents one single-process state tree.
"""
from __future__ import annotations

import logging
import os
import uuid
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Mapping

from flowstore.core.cancellation import CancellationToken
from flowstore.core.domain import (
    Event,
    Init,
    Listener,
    Reducer,
    Signal,
    State,
    StoreDisposedError,
    action_name,
    mark_reducer_error,
)
from flowstore.core.reducers import combine_reducers, merge_reducers
from flowstore.core.task import Task, TaskGroup, start_task

if TYPE_CHECKING:
    from flowstore.core.context import ListenerRegistration


class _AnyChange:
    def __repr__(self) -> str:
        return "<any change>"


ANY_CHANGE = _AnyChange()
"""Subscription key of the default channel, notified on every state change."""


class Store:
    """Single-state-tree container coupled to the task engine.

    Typical usage:
        def counter(state, event):
            if state is None:
                return 0
            if event.action == "increase":
                return state + 1
            return state

        store = Store(counter)
        store.dispatch("increase")
        store.get_state()  # 1

    Attributes:
        id: Unique 8-character hex identifier for this store.
        logger: Per-store logger, named flowstore.store.<id>.
        log_dir: Directory the store's log file is written to, or None.
    """
    def __init__(self, reducer: Reducer | None = None, *, log_dir: str | None = None) -> None:
        """Initialize a store and derive its initial state.

        Args:
            reducer: Optional root reducer. Called with state None and an Init
                event to produce the initial state.
            log_dir: Directory for a per-store log file. Defaults to the
                FLOWSTORE_LOG_DIR environment variable; None disables file
                logging.
        """
        self.id: str = uuid.uuid4().hex[:8]
        self.log_dir = log_dir if log_dir is not None else os.environ.get("FLOWSTORE_LOG_DIR")
        self.logger = logging.getLogger(f"flowstore.store.{self.id}")
        if self.log_dir:
            self._attach_log_file(self.log_dir)

        self._root_reducer: Reducer | None = reducer
        self._merged_reducers: list[Reducer] = []
        self._key_reducers: dict[str, Reducer] = {}
        self._combined_reducer: Reducer | None = None
        self._subscriptions: dict[Any, dict[Listener, None]] = {}
        self._flows: dict[Any, Task] = {}
        self._dispatched_once: dict[Any, Task] = {}
        self._registrations: set[ListenerRegistration] = set()
        self._running: set[Task] = set()
        self.disposed = False

        self._state: State = self._reduce(None, Event(Init))
        self.logger.info(f"Store created: id={self.id}")
        self.logger.debug(f"Initial state: {self._state!r}")

    def _attach_log_file(self, log_dir: str) -> None:
        timestamp = datetime.now().strftime('%Y%m%d%H%M%S')
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, f"{timestamp}-{self.id}.log")
        self.logger.setLevel(logging.DEBUG)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s"))
        self.logger.addHandler(file_handler)
        self.logger.propagate = False
        self.logger.debug(f"Log file: {log_path}")

    # -- Reduction --------------------------------------------------------------

    def _reduce(self, state: State, event: Event) -> State:
        if self._root_reducer is not None:
            state = self._root_reducer(state, event)
        if self._combined_reducer is not None:
            state = self._combined_reducer(state, event)
        return state

    def reducer(self, *args: Any) -> Store:
        """Add reducers to the composition.

        Accepted forms:
            reducer("key", fn): fn owns state["key"]
            reducer({"key": fn, ...}): several per-key reducers
            reducer(fn1, fn2, ...): whole-state reducers chained after the root reducer

        Adding a reducer that is already registered is a no-op. When the
        composition changed, the initial state is derived again and the
        default channel is notified if it differs from the current state.

        Returns:
            The store, for chaining.

        Raises:
            ValueError: If called without arguments or with an unsupported form.
        """
        self._check_alive()
        if not args:
            raise ValueError("reducer() needs at least one argument")

        changed = False
        if isinstance(args[0], str):
            if len(args) != 2 or not callable(args[1]):
                raise ValueError("reducer(key, fn) expects a key and a reducer function")
            changed = self._add_key_reducers({args[0]: args[1]})
        elif isinstance(args[0], Mapping):
            if len(args) != 1:
                raise ValueError("reducer(mapping) expects a single mapping")
            changed = self._add_key_reducers(args[0])
        else:
            for reducer in args:
                if not callable(reducer):
                    raise ValueError(f"Not a reducer: {reducer!r}")
                if any(reducer is merged for merged in self._merged_reducers):
                    continue
                self._merged_reducers.append(reducer)
                self._root_reducer = merge_reducers(self._root_reducer, reducer)
                changed = True

        if changed:
            self.logger.info("Reducers changed, deriving initial state")
            next_state = self._reduce(None, Event(Init))
            if next_state is not self._state:
                self._state = next_state
                self._notify(ANY_CHANGE, Event(Init, state=next_state))
        return self

    def _add_key_reducers(self, reducers: Mapping[str, Reducer]) -> bool:
        changed = False
        for key, reducer in reducers.items():
            if self._key_reducers.get(key) is reducer:
                continue
            self._key_reducers[key] = reducer
            changed = True
        if changed:
            self._combined_reducer = combine_reducers(self._key_reducers)
        return changed

    # -- State access -----------------------------------------------------------

    def get_state(self, selector: Any = None) -> Any:
        """Read the current state.

        Args:
            selector: None for the whole snapshot, a key for one property, a
                function called with the snapshot, or a list/tuple of keys and
                functions for a list of values.

        Returns:
            The selected value(s).
        """
        if selector is None:
            return self._state
        if isinstance(selector, (list, tuple)):
            return [self._select(item) for item in selector]
        return self._select(selector)

    def _select(self, selector: Any) -> Any:
        state = self._state
        if callable(selector):
            return selector(state)
        if state is None:
            return None
        if isinstance(state, Mapping):
            return state.get(selector)
        return getattr(state, selector, None)

    @property
    def state(self) -> State:
        return self._state

    # -- Subscriptions ----------------------------------------------------------

    def subscribe(self, *args: Any) -> Callable[[], None]:
        """Register a listener.

        subscribe(listener) listens on the default channel, notified with the
        new state after every state change. subscribe(action, listener) is
        notified with the event every time that action settles, whether or
        not the state changed.

        Returns:
            A function removing the listener. Calling it twice is harmless.
        """
        self._check_alive()
        if len(args) == 1:
            key, listener = ANY_CHANGE, args[0]
        elif len(args) == 2:
            key, listener = args
        else:
            raise TypeError(f"subscribe() takes 1 or 2 arguments ({len(args)} given)")
        listeners = self._subscriptions.setdefault(key, {})
        listeners[listener] = None

        def unsubscribe() -> None:
            listeners.pop(listener, None)

        return unsubscribe

    def _notify(self, key: Any, event: Event) -> None:
        listeners = self._subscriptions.get(key)
        if not listeners:
            return
        for listener in list(listeners):
            listener(event)

    # -- Dispatch ---------------------------------------------------------------

    def dispatch(
        self,
        action: Any,
        payload: Any = None,
        *,
        token: CancellationToken | None = None,
        event: Event | None = None,
    ) -> Task:
        """Run an action and reduce its outcome into the state.

        Args:
            action: A callable action(context, payload), a coroutine function,
                or a plain identity such as a string.
            payload: Payload for the action.
            token: Parent cancellation token; passed by ActionContext.dispatch.
            event: Triggering event exposed to the action as context.event.

        Returns:
            The Task for this dispatch.

        Raises:
            StoreDisposedError: If the store was disposed.
            Exception: Errors raised synchronously by the action or by a reducer.
        """
        self._check_alive()
        self.logger.debug(f"Dispatch: {action_name(action)} payload={payload!r}")

        def on_settle(result: Any, error: Exception | None = None, signal: Signal | None = None) -> None:
            if signal is not None:
                reduced = Event(signal, payload=payload, result=result, error=error, target=action)
            else:
                reduced = Event(action, payload=payload, result=result)
            self._apply(reduced)

        return start_task(action, self, on_settle, payload, token, event)

    def _apply(self, event: Event) -> None:
        if self.disposed:
            return
        try:
            next_state = self._reduce(self._state, event)
        except Exception as error:
            self.logger.error(f"Reducer failed on {action_name(event.action)} - {type(error).__name__}: {error}")
            mark_reducer_error(error)
            raise
        if next_state is not self._state:
            self._state = next_state
            self.logger.debug(f"State changed by {action_name(event.action)}")
            self._notify(ANY_CHANGE, replace(event, state=next_state))
        self._notify(event.action, event)

    def dispatch_once(self, action: Any, payload: Any = None, *, token: CancellationToken | None = None) -> Task:
        """Dispatch an action the first time it is requested on this store.

        Returns:
            The Task of the first dispatch of this action.
        """
        self._check_alive()
        task = self._dispatched_once.get(action)
        if task is None:
            task = self._dispatched_once[action] = self.dispatch(action, payload, token=token)
        return task

    # -- Flows ------------------------------------------------------------------

    def flow(self, *flows: Any) -> Task | TaskGroup:
        """Start flows that are not running on this store yet.

        Args:
            *flows: Flow functions, each run as a root task.

        Returns:
            The flow's Task when one flow is given, otherwise a TaskGroup over
            all of them. Flows started earlier return their existing task.
        """
        self._check_alive()
        if not flows:
            raise ValueError("flow() needs at least one flow")
        for flow in flows:
            if flow not in self._flows:
                self.logger.info(f"Flow started: {action_name(flow)}")
                self._flows[flow] = self.dispatch(flow)
        if len(flows) == 1:
            return self._flows[flows[0]]
        return TaskGroup(self._flows[flow] for flow in flows)

    # -- Lifecycle --------------------------------------------------------------

    def dispose(self) -> None:
        """Cancel every flow, running task and pending timer and drop all listeners.

        The store cannot be used afterwards. Disposing twice is a no-op.
        """
        if self.disposed:
            return
        for task in self._flows.values():
            task.cancel()
        for task in list(self._running):
            task.cancel()
        self._running.clear()
        for registration in list(self._registrations):
            registration.close()
        self._registrations.clear()
        self._subscriptions.clear()
        self._flows.clear()
        self._dispatched_once.clear()
        self.disposed = True
        self.logger.info(f"Store disposed: id={self.id}")

    def _check_alive(self) -> None:
        if self.disposed:
            raise StoreDisposedError(f"Store {self.id} has been disposed")

    def _track_registration(self, registration: ListenerRegistration) -> None:
        self._registrations.add(registration)
        registration.on_close = self._registrations.discard

    def _keep_alive(self, task: Task) -> None:
        self._running.add(task)
        task._runner.add_done_callback(lambda _: self._running.discard(task))

    def __repr__(self) -> str:
        return f"<Store {self.id}>"


def create_store(reducer: Reducer | None = None, *, log_dir: str | None = None) -> Store:
    """Create a Store. See Store.__init__ for the arguments."""
    return Store(reducer, log_dir=log_dir)
