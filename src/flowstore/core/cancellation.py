"""Hierarchical cooperative cancellation."""
from __future__ import annotations


class CancellationToken:
    """One-way cancel flag linked to an optional parent token.

    A token reports cancelled when it was cancelled itself or when any of its
    ancestors was. The ancestor chain is walked on every check and never
    cached, so cancelling a parent is observed by every descendant without
    any bookkeeping. Cancellation never travels upward.

    Attributes:
        parent: The token this one was derived from, or None for a root token.
    """
    __slots__ = ("parent", "_cancelled")

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self.parent = parent
        self._cancelled = False

    def cancel(self) -> None:
        """Cancel this token and, implicitly, every token derived from it."""
        self._cancelled = True

    def is_cancelled(self) -> bool:
        """Return True if this token or any ancestor has been cancelled."""
        token: CancellationToken | None = self
        while token is not None:
            if token._cancelled:
                return True
            token = token.parent
        return False

    @property
    def cancelled(self) -> bool:
        return self.is_cancelled()

    def child(self) -> CancellationToken:
        """Derive a new token that is cancelled whenever this one is."""
        return CancellationToken(self)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled()})"
