"""Task engine.

Runs one action invocation inside its own cancellation scope and folds the
outcome back into the store through a settle callback:
- Synchronous results settle immediately
- Awaitable results emit Loading first, then the real action or Failure
- FlowCancelled raised anywhere inside the action settles the task silently

Each Task owns exactly one CancellationToken, derived from the dispatching
context's token so that cancelling a parent cancels its whole subtree.
"""
from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator

from flowstore.core.cancellation import CancellationToken
from flowstore.core.context import ActionContext
from flowstore.core.domain import (
    ActionKind,
    Event,
    Failure,
    FlowCancelled,
    Loading,
    Signal,
    action_name,
    classify_action,
    is_reducer_error,
)

if TYPE_CHECKING:
    from flowstore.core.store import Store

type SettleCallback = Callable[[Any, Exception | None, Signal | None], None]
"""Called as on_settle(result, error, signal) where signal is Loading/Failure or None."""


class TaskStatus(enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Task:
    """Handle to one action invocation.

    A Task is awaitable. Awaiting a successful task returns its result and
    awaiting a failed one raises the action's error. A cancelled task never
    settles, so awaiting it does not return.

    Attributes:
        action: The action this task runs.
        token: The task's cancellation token.
        is_async: True when the action produced an awaitable.
        result: The action's result once the task succeeded, else None.
        error: The action's error once the task failed, else None.
    """

    def __init__(
        self,
        action: Any,
        token: CancellationToken,
        *,
        is_async: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.action = action
        self.token = token
        self.is_async = is_async
        self.result: Any = None
        self.error: Exception | None = None
        self._status = TaskStatus.PENDING
        self._future: asyncio.Future | None = None
        self._runner: asyncio.Task | None = None
        self._logger = logger or logging.getLogger("flowstore.core.task")

    @property
    def status(self) -> TaskStatus:
        if self._status is TaskStatus.PENDING and self.token.is_cancelled():
            return TaskStatus.CANCELLED
        return self._status

    @property
    def cancelled(self) -> bool:
        return self.status is TaskStatus.CANCELLED

    def done(self) -> bool:
        """Return True once the task succeeded or failed."""
        return self._status in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)

    def cancel(self) -> None:
        """Cancel this task and every task dispatched from inside it."""
        self.token.cancel()

    def __await__(self):
        return self._ensure_future().__await__()

    def __repr__(self) -> str:
        return f"<Task {action_name(self.action)} {self.status.value}>"

    def _ensure_future(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
            if self._status is TaskStatus.SUCCEEDED:
                self._future.set_result(self.result)
            elif self._status is TaskStatus.FAILED:
                self._future.set_exception(self.error)
        return self._future

    def _succeed(self, result: Any) -> None:
        self.result = result
        self._status = TaskStatus.SUCCEEDED
        if self._future is not None and not self._future.done():
            self._future.set_result(result)

    def _fail(self, error: Exception) -> None:
        self.error = error
        self._status = TaskStatus.FAILED
        if self._future is not None and not self._future.done():
            self._future.set_exception(error)

    def _abandon(self) -> None:
        self._status = TaskStatus.CANCELLED

    async def _settle(self, awaitable: Any, on_settle: SettleCallback) -> None:
        name = action_name(self.action)
        try:
            result = await awaitable
        except FlowCancelled:
            self._logger.debug(f"Task cancelled: {name}")
            self._abandon()
            return
        except Exception as error:
            if is_reducer_error(error):
                self._fail(error)
                return
            if self.token.is_cancelled():
                self._logger.debug(f"Task cancelled, dropping failure: {name} - {type(error).__name__}")
                self._abandon()
                return
            self._logger.error(f"Action failed: {name} - {type(error).__name__}: {error}")
            try:
                on_settle(None, error, Failure)
            except Exception as reducer_error:
                self._fail(reducer_error)
                return
            self._fail(error)
            return

        if self.token.is_cancelled():
            self._logger.debug(f"Task cancelled, dropping result: {name}")
            self._abandon()
            return
        try:
            on_settle(result, None, None)
        except Exception as reducer_error:
            self._fail(reducer_error)
            return
        self._succeed(result)
        self._logger.debug(f"Task settled: {name}")


class TaskGroup:
    """Aggregate handle over several tasks, as returned by Store.flow().

    Awaiting the group gathers every task's result into a list. Indexing and
    iteration expose the individual tasks.
    """

    def __init__(self, tasks: Iterable[Task]) -> None:
        self._tasks = list(tasks)
        self._cancelled = False
        self._gathered: asyncio.Future | None = None

    def cancel(self) -> None:
        """Cancel every task in the group."""
        if self._cancelled:
            return
        self._cancelled = True
        for task in self._tasks:
            task.cancel()

    def __await__(self):
        if self._gathered is None:
            self._gathered = asyncio.gather(*self._tasks)
        return self._gathered.__await__()

    def __getitem__(self, index: int) -> Task:
        return self._tasks[index]

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks)


def start_task(
    action: Any,
    store: Store,
    on_settle: SettleCallback,
    payload: Any = None,
    parent_token: CancellationToken | None = None,
    event: Event | None = None,
) -> Task:
    """Spawn a task running action(context, payload).

    Args:
        action: The action to run. Plain identities are settled with a None
            result without being invoked.
        store: The store the action's context is bound to.
        on_settle: Callback folding the outcome into the store.
        payload: Payload passed to the action.
        parent_token: Token of the dispatching context, if any.
        event: Triggering event exposed as context.event, for combinator
            handlers.

    Returns:
        The Task for this invocation.

    Raises:
        ValueError: If action is a Loading/Failure signal.
        RuntimeError: If the action is asynchronous and no event loop is running.
        Exception: Any exception raised synchronously by the action, after the
            Failure event was emitted. Reducer errors from nested dispatches
            propagate without a Failure event.
    """
    kind = classify_action(action)
    if kind is ActionKind.SIGNAL:
        raise ValueError(f"{action!r} is emitted by the task engine and cannot be dispatched")

    name = action_name(action)
    logger = store.logger
    token = CancellationToken(parent_token)
    task = Task(action, token, logger=logger)

    if kind is ActionKind.EVENT:
        result = None
    else:
        if kind is ActionKind.ASYNC:
            # Fail before the coroutine object exists.
            _running_loop(name)
        context = ActionContext(store, token, event=event)
        try:
            result = action(context, payload)
        except FlowCancelled:
            logger.debug(f"Task cancelled before settling: {name}")
            task._abandon()
            return task
        except Exception as error:
            if is_reducer_error(error):
                raise
            if token.is_cancelled():
                logger.debug(f"Task cancelled, dropping failure: {name} - {type(error).__name__}")
                task._abandon()
                return task
            logger.error(f"Action failed: {name} - {type(error).__name__}: {error}")
            on_settle(None, error, Failure)
            raise

    if inspect.isawaitable(result):
        task.is_async = True
        try:
            loop = _running_loop(name)
            on_settle(None, None, Loading)
        except Exception:
            _discard(result)
            raise
        logger.debug(f"Task started asynchronously: {name}")
        # Eager start: the body runs until its first suspension before dispatch returns.
        task._runner = asyncio.eager_task_factory(loop, task._settle(result, on_settle))
        store._keep_alive(task)
        return task

    if token.is_cancelled():
        logger.debug(f"Task cancelled, dropping result: {name}")
        task._abandon()
        return task
    on_settle(result, None, None)
    task._succeed(result)
    logger.debug(f"Task settled synchronously: {name}")
    return task


def _running_loop(name: str) -> asyncio.AbstractEventLoop:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        raise RuntimeError(f"Asynchronous action {name} needs a running event loop") from None


def _discard(awaitable: Any) -> None:
    # Close never-started coroutines so they don't warn about not being awaited.
    if inspect.iscoroutine(awaitable):
        awaitable.close()
