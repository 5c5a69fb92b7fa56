"""Lazily resolved actions.

lazy() wraps loaders that produce actions (typically by importing a module)
into a single action. The loaders are resolved once, on first invocation.
Invocations arriving while loading are queued and replayed in order as soon
as every loader resolved; later invocations run the resolved actions directly.
"""
import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Callable

logger = logging.getLogger("flowstore.helpers.lazy")


def lazy(*loaders: Any) -> Callable[[Any, Any], Any]:
    """Create an action that resolves its real action(s) on first use.

    Each loader is either an awaitable or a zero-argument callable returning
    an action, an awaitable of one, or a container (such as a module) whose
    ``default`` attribute is the action.

    With one loader the wrapper returns the resolved action's result. With
    several it returns the list of their results, awaiting them together
    when any of them is asynchronous.

    If a loader fails, every queued invocation fails with its error and the
    next invocation starts loading again.

    Args:
        *loaders: The loaders to resolve.

    Returns:
        An action usable with dispatch().
    """
    resolved: list[Any] | None = None
    loading: asyncio.Task | None = None
    queue: deque[tuple[Any, Any, asyncio.Future]] = deque()

    async def load() -> None:
        nonlocal resolved, loading
        try:
            values = await asyncio.gather(*(_load(loader) for loader in loaders))
        except Exception as error:
            logger.error(f"Lazy action failed to load: {type(error).__name__}: {error}")
            loading = None
            while queue:
                _, _, call = queue.popleft()
                if not call.done():
                    call.set_exception(error)
            return

        resolved = [getattr(value, "default", value) for value in values]
        logger.debug(f"Lazy action resolved, replaying {len(queue)} queued call(s)")
        while queue:
            context, payload, call = queue.popleft()
            if call.done():
                continue
            try:
                result = _invoke_all(resolved, context, payload)
            except Exception as error:
                call.set_exception(error)
                continue
            if inspect.isawaitable(result):
                _forward(asyncio.ensure_future(result), call)
            else:
                call.set_result(result)

    def wrapper(context: Any, payload: Any = None) -> Any:
        nonlocal loading
        if resolved is not None:
            return _invoke_all(resolved, context, payload)
        loop = asyncio.get_running_loop()
        call = loop.create_future()
        queue.append((context, payload, call))
        if loading is None:
            logger.debug(f"Loading lazy action from {len(loaders)} loader(s)")
            loading = loop.create_task(load())
        return call

    return wrapper


async def _load(loader: Any) -> Any:
    value = loader() if callable(loader) else loader
    if inspect.isawaitable(value):
        value = await value
    return value


def _invoke_all(actions: list[Any], context: Any, payload: Any) -> Any:
    results = [action(context, payload) for action in actions]
    if len(results) == 1:
        return results[0]
    if any(inspect.isawaitable(result) for result in results):
        return _collect(results)
    return results


async def _collect(results: list[Any]) -> list[Any]:
    awaited = iter(await asyncio.gather(*(result for result in results if inspect.isawaitable(result))))
    return [next(awaited) if inspect.isawaitable(result) else result for result in results]


def _forward(source: asyncio.Future, target: asyncio.Future) -> None:
    def copy(done: asyncio.Future) -> None:
        if done.cancelled():
            target.cancel()
            return
        error = done.exception()
        if target.done():
            return
        if error is not None:
            target.set_exception(error)
        else:
            target.set_result(done.result())

    source.add_done_callback(copy)
