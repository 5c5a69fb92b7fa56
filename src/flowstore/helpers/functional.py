"""Function composition and memoized selectors."""
from typing import Any, Callable


def compose(*funcs: Callable[..., Any]) -> Callable[..., Any]:
    """Compose functions right to left.

    compose(f, g, h)(*args) is f(g(h(*args))). The rightmost function may
    take any arguments; the others take the previous function's result.

    Args:
        *funcs: Functions to compose.

    Returns:
        The identity function when funcs is empty, the single function when
        only one is given, otherwise the composition.
    """
    if not funcs:
        return lambda arg: arg
    if len(funcs) == 1:
        return funcs[0]

    def composed(*args: Any, **kwargs: Any) -> Any:
        result = funcs[-1](*args, **kwargs)
        for func in reversed(funcs[:-1]):
            result = func(result)
        return result

    return composed


def create_selector(*args: Callable[..., Any]) -> Callable[..., Any]:
    """Build a memoized selector.

    The last argument combines the outputs of the input selectors before it.
    The combiner only runs again when an input selector returns a value that
    is not identical to the one it returned last time.

    Example:
        >>> total = create_selector(lambda s: s["items"], lambda items: sum(items))
        >>> total({"items": [1, 2]})
        3

    Args:
        *args: Input selectors followed by the combiner.

    Returns:
        A selector accepting the same arguments as the input selectors.
    """
    if not args:
        raise ValueError("create_selector() needs at least a combiner")
    *input_selectors, combiner = args
    last_inputs: list[Any] | None = None
    last_result: Any = None

    def selector(*inputs: Any) -> Any:
        nonlocal last_inputs, last_result
        values = [input_selector(*inputs) for input_selector in input_selectors]
        if last_inputs is None or any(value is not last for value, last in zip(values, last_inputs)):
            last_inputs = values
            last_result = combiner(*values)
        return last_result

    return selector
