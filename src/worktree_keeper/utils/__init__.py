"""Utility helpers for worktree-keeper."""

from worktree_keeper.utils.cancellation import CancellationToken, is_cancelled
from worktree_keeper.utils.io import atomic_write_text, exclusive_file_lock

__all__ = [
    "CancellationToken",
    "atomic_write_text",
    "exclusive_file_lock",
    "is_cancelled",
]
