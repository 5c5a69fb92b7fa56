"""Helper utilities for Flowstore.

Exports:
    delay: Awaitable that settles with a value after a number of seconds.
    lazy: Action wrapper resolving its real action(s) on first use.
    compose: Right-to-left function composition.
    create_selector: Memoized selector built from input selectors.
"""

from flowstore.helpers.functional import compose, create_selector
from flowstore.helpers.lazy import lazy
from flowstore.helpers.timing import delay

__all__ = ["compose", "create_selector", "delay", "lazy"]
