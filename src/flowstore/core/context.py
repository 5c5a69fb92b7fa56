"""Action context and combinators.

An ActionContext is the capability set handed to every running action as its
first argument. It is bound to the task's cancellation token: once the token
is cancelled, every operation raises FlowCancelled instead of running, which
cuts off all further effects of a cancelled flow without manual checks.

Operations:
- dispatch / dispatch_once: Spawn child tasks under this context's token
- select: Read the store's current state
- action: Wait for the next dispatch of one or more actions
- race / all: Combine awaitables
- throttle / debounce / latest / every: Register action listeners that spawn
  handler tasks under a concurrency policy
- lazy / delay / flow / reducer: Passthroughs to helpers and the store
"""
from __future__ import annotations

import asyncio
import functools
import inspect
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping

from flowstore.core.cancellation import CancellationToken
from flowstore.core.domain import ActionResult, Event, FlowCancelled, action_name
from flowstore.helpers.lazy import lazy as create_lazy
from flowstore.helpers.timing import delay as sleep

if TYPE_CHECKING:
    from flowstore.core.store import Store
    from flowstore.core.task import Task

type Policy = Callable[[ListenerRegistration, Event], None]


def _guarded(method: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(method)
    def wrapper(self: ActionContext, *args: Any, **kwargs: Any) -> Any:
        if self.token.is_cancelled():
            raise FlowCancelled(f"{method.__name__}() called from a cancelled task")
        return method(self, *args, **kwargs)
    return wrapper


def _as_list(actions: Any) -> list[Any]:
    return list(actions) if isinstance(actions, (list, tuple)) else [actions]


def _to_future(value: Any) -> asyncio.Future:
    if inspect.isawaitable(value):
        return asyncio.ensure_future(value)
    future = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


class RaceResult(dict):
    """Result of ActionContext.race().

    Holds every entry settled by the time the race resolved, keyed like the
    input mapping, plus "$key" naming the entry that won.
    """

    @property
    def key(self) -> str | None:
        return self.get("$key")


@dataclass(eq=False)
class ListenerRegistration:
    """Bookkeeping for one action listener registered by a combinator.

    Attributes:
        action: The action key listened to.
        handler: The action dispatched when the policy lets an event through.
        payload: Static payload, or a callable computing it from the event.
        last_run: Monotonic timestamp of the last handler run (throttle).
        timer_task: Pending trailing-edge timer (debounce).
        previous_task: Task spawned by the last handler run (debounce, latest).
        on_close: Called with the registration once it is closed.
    """
    action: Any
    handler: Any
    payload: Any = None
    last_run: float | None = None
    timer_task: asyncio.Task | None = field(default=None, repr=False)
    previous_task: Task | None = field(default=None, repr=False)
    unsubscribe: Callable[[], None] | None = field(default=None, repr=False)
    on_close: Callable[[ListenerRegistration], None] | None = field(default=None, repr=False)

    def resolve_payload(self, event: Event) -> Any:
        """Evaluate the payload for a triggering event."""
        return self.payload(event) if callable(self.payload) else self.payload

    def close(self) -> None:
        """Stop listening and cancel any pending timer."""
        if self.timer_task is not None:
            self.timer_task.cancel()
            self.timer_task = None
        if self.unsubscribe is not None:
            self.unsubscribe()
            self.unsubscribe = None
        if self.on_close is not None:
            self.on_close(self)
            self.on_close = None


class ActionContext:
    """Capabilities injected into a running action.

    Attributes:
        token: Cancellation token of the task this context belongs to.
        event: The event that triggered this task when it was spawned by a
            combinator listener, otherwise None.
    """

    def __init__(self, store: Store, token: CancellationToken, event: Event | None = None) -> None:
        self._store = store
        self.token = token
        self.event = event

    @property
    def cancelled(self) -> bool:
        return self.token.is_cancelled()

    # -- Dispatch ---------------------------------------------------------------

    @_guarded
    def dispatch(self, action: Any, payload: Any = None, *, event: Event | None = None) -> Task:
        """Dispatch an action as a child of the current task.

        Cancelling the current task cancels the child as well.
        """
        return self._store.dispatch(action, payload, token=self.token, event=event)

    @_guarded
    def dispatch_once(self, action: Any, payload: Any = None) -> Task:
        """Dispatch an action unless it was already dispatched once on this store."""
        return self._store.dispatch_once(action, payload, token=self.token)

    @_guarded
    def select(self, selector: Any = None) -> Any:
        """Read the store's state as it is right now. See Store.get_state()."""
        return self._store.get_state(selector)

    @_guarded
    def flow(self, *flows: Any) -> Any:
        return self._store.flow(*flows)

    @_guarded
    def reducer(self, *args: Any) -> Store:
        return self._store.reducer(*args)

    @_guarded
    def lazy(self, *loaders: Any) -> Callable[[Any, Any], Any]:
        return create_lazy(*loaders)

    @_guarded
    def delay(self, seconds: float, value: Any = None) -> Any:
        return sleep(seconds, value)

    # -- Awaitable combinators --------------------------------------------------

    @_guarded
    def action(self, actions: Any) -> asyncio.Future:
        """Wait for the next dispatch of any of the given actions.

        Args:
            actions: An action or a list of actions.

        Returns:
            A future resolving to an ActionResult for the first matching
            dispatch. The subscriptions are removed as soon as it resolves
            or is cancelled.
        """
        waiter = asyncio.get_running_loop().create_future()
        unsubscribes: list[Callable[[], None]] = []

        def release(_: asyncio.Future | None = None) -> None:
            for unsubscribe in unsubscribes:
                unsubscribe()

        def listener_for(action: Any) -> Callable[[Event], None]:
            def listener(event: Event) -> None:
                if waiter.done():
                    return
                release()
                waiter.set_result(ActionResult(action, event.payload, event.result))
            return listener

        for action in _as_list(actions):
            unsubscribes.append(self._store.subscribe(action, listener_for(action)))
        waiter.add_done_callback(release)
        return waiter

    @_guarded
    async def race(self, awaitables: Mapping[str, Any]) -> RaceResult:
        """Resolve as soon as the first entry settles.

        The result holds every entry that settled by then, plus "$key" for
        the entry that settled first (ties go to the earlier entry). Entries
        still running are not cancelled: they keep running and write their
        value into the returned result when they finish.

        Raises:
            ValueError: If awaitables is empty.
            Exception: The winning entry's error if it failed.
        """
        if not awaitables:
            raise ValueError("race() needs at least one entry")
        result = RaceResult()
        futures: dict[str, asyncio.Future] = {}
        for key, value in awaitables.items():
            future = _to_future(value)
            future.add_done_callback(functools.partial(_record, result, key))
            futures[key] = future

        done, _ = await asyncio.wait(futures.values(), return_when=asyncio.FIRST_COMPLETED)
        winner = next(key for key, future in futures.items() if future in done)
        futures[winner].result()
        result["$key"] = winner
        self._store.logger.debug(f"Race won by {winner!r}")
        return result

    @_guarded
    async def all(self, awaitables: Mapping[str, Any]) -> dict[str, Any]:
        """Resolve once every entry settled, with a mapping of their results.

        Raises:
            Exception: The first error raised by any entry.
        """
        keys = list(awaitables)
        values = await asyncio.gather(*(_to_future(awaitables[key]) for key in keys))
        return dict(zip(keys, values))

    # -- Listener combinators ---------------------------------------------------

    @_guarded
    def throttle(self, actions: Any, seconds: float, handler: Any, payload: Any = None) -> Callable[[], None]:
        """Run handler on a matching action unless it ran less than `seconds` ago.

        The first matching action always runs the handler.

        Returns:
            A function removing the listener(s).
        """
        def policy(registration: ListenerRegistration, event: Event) -> None:
            now = time.monotonic()
            if registration.last_run is not None and now - registration.last_run < seconds:
                self._store.logger.debug(f"Throttled {action_name(registration.handler)}")
                return
            self._run_handler(registration, event)

        return self._register(actions, handler, payload, policy)

    @_guarded
    def debounce(self, actions: Any, seconds: float, handler: Any, payload: Any = None) -> Callable[[], None]:
        """Run handler `seconds` after the last of a burst of matching actions.

        Every matching action cancels the pending timer and the task started
        by the previous run, then starts a new timer.

        Returns:
            A function removing the listener(s).
        """
        def policy(registration: ListenerRegistration, event: Event) -> None:
            if registration.previous_task is not None:
                registration.previous_task.cancel()
            if registration.timer_task is not None:
                registration.timer_task.cancel()
            registration.timer_task = asyncio.get_running_loop().create_task(
                self._run_later(registration, event, seconds)
            )

        return self._register(actions, handler, payload, policy)

    @_guarded
    def latest(self, actions: Any, handler: Any, payload: Any = None) -> Callable[[], None]:
        """Run handler on every matching action, cancelling the previous run if unsettled.

        Returns:
            A function removing the listener(s).
        """
        def policy(registration: ListenerRegistration, event: Event) -> None:
            previous = registration.previous_task
            if previous is not None and not previous.done():
                self._store.logger.debug(f"Cancelling previous run of {action_name(registration.handler)}")
                previous.cancel()
            self._run_handler(registration, event)

        return self._register(actions, handler, payload, policy)

    @_guarded
    def every(self, actions: Any, handler: Any, payload: Any = None) -> Callable[[], None]:
        """Run handler as an independent task on every matching action.

        Returns:
            A function removing the listener(s).
        """
        return self._register(actions, handler, payload, self._run_handler)

    def _register(self, actions: Any, handler: Any, payload: Any, policy: Policy) -> Callable[[], None]:
        registrations = []
        for action in _as_list(actions):
            registration = ListenerRegistration(action, handler, payload)
            registration.unsubscribe = self._store.subscribe(
                action, functools.partial(self._on_trigger, registration, policy)
            )
            self._store._track_registration(registration)
            registrations.append(registration)
            self._store.logger.debug(f"Listening for {action_name(action)} -> {action_name(handler)}")

        def unsubscribe() -> None:
            for registration in registrations:
                registration.close()

        return unsubscribe

    def _on_trigger(self, registration: ListenerRegistration, policy: Policy, event: Event) -> None:
        if self.token.is_cancelled() or self._store.disposed:
            registration.close()
            return
        policy(registration, event)

    def _run_handler(self, registration: ListenerRegistration, event: Event) -> None:
        registration.last_run = time.monotonic()
        registration.previous_task = self.dispatch(
            registration.handler, registration.resolve_payload(event), event=event
        )

    async def _run_later(self, registration: ListenerRegistration, event: Event, seconds: float) -> None:
        await asyncio.sleep(seconds)
        registration.timer_task = None
        if self.token.is_cancelled() or self._store.disposed:
            registration.close()
            return
        try:
            self._run_handler(registration, event)
        except FlowCancelled:
            registration.close()
        except Exception as error:
            # The Failure event already carries the error.
            self._store.logger.error(f"Debounced handler failed: {action_name(registration.handler)} - {type(error).__name__}: {error}")


def _record(result: RaceResult, key: str, future: asyncio.Future) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    result[key] = future.result()
