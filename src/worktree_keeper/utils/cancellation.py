"""Cooperative cancellation for long-running multi-worktree operations."""

import threading


class CancellationToken:
    """
    A flag long-running operations poll between worktrees.

    Sweeps and sync runs check the token before starting each worktree and
    never mid-worktree, so cancelling never leaves a worktree half-repaired.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: "CancellationToken | None") -> bool:
    """Check an optional token."""
    return token is not None and token.cancelled
