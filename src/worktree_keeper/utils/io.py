"""Small IO helpers for safe persistence.

Provides atomic_write_text() which writes to a temp file in the same
filesystem and atomically replaces the destination, then sets the
requested permissions.

Also provides the cross-platform advisory lock used to serialize registry
mutations via exclusive_file_lock().
"""
from __future__ import annotations

import logging
import os
import sys
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

from worktree_keeper.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


def _try_lock(file_handle: TextIO) -> bool:
    """Attempt a non-blocking exclusive lock, returning whether it was taken."""
    try:
        if sys.platform == "win32":
            import msvcrt

            # Windows: lock first byte (advisory lock)
            msvcrt.locking(file_handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(file_handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        return True
    except OSError:
        return False


def _unlock(file_handle: TextIO) -> None:
    try:
        if sys.platform == "win32":
            import msvcrt

            msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)
        else:
            import fcntl

            fcntl.flock(file_handle, fcntl.LOCK_UN)
    except OSError:
        logger.warning(f"Could not release lock on {file_handle.name}")


@contextmanager
def exclusive_file_lock(
    lock_path: str | Path,
    attempts: int = 5,
    backoff: float = 0.2,
) -> Iterator[None]:
    """Cross-platform exclusive advisory lock context manager.

    On Unix, uses fcntl.flock with LOCK_EX | LOCK_NB.
    On Windows, uses msvcrt.locking (non-blocking).
    Acquisition is retried with exponential backoff; after `attempts`
    failures LockTimeoutError is raised. The lock is released on every
    exit path, including exceptions raised inside the block.

    Usage:
        with exclusive_file_lock(repo_path / "worktree-keeper.lock"):
            mutate_registry()
    """
    path = Path(lock_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    attempts = max(1, attempts)

    with open(path, "a+") as handle:
        for attempt in range(attempts):
            if _try_lock(handle):
                break
            if attempt < attempts - 1:
                delay = backoff * (2 ** attempt)
                logger.debug(
                    f"Lock {path} busy, retrying in {delay:.2f}s "
                    f"({attempt + 1}/{attempts})"
                )
                time.sleep(delay)
        else:
            raise LockTimeoutError(path, attempts)

        try:
            yield
        finally:
            _unlock(handle)


def atomic_write_text(path: str | Path, data: str, perms: int = 0o600) -> None:
    """Atomically write text content to path with the given permissions.

    Steps:
    - Ensure parent directory exists
    - Write to a NamedTemporaryFile in the same directory
    - fsync the temp file
    - os.replace() to move into place atomically
    - chmod the target path to perms

    If writing or os.replace() fails, the temp file is cleaned up before
    re-raising.
    """
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)

    tmp_name: str | None = None
    try:
        # Write to a temp file in the same directory for atomic replace
        with tempfile.NamedTemporaryFile(
            "w",
            dir=str(dest.parent),
            delete=False,
            encoding="utf-8",
            newline="\n",
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())

        os.replace(tmp_name, dest)
        tmp_name = None  # Successfully replaced, no cleanup needed

        try:
            os.chmod(dest, perms)
        except PermissionError:
            logger.warning(
                f"Could not set permissions {oct(perms)} on {dest}. "
                f"File was written but permissions may be wrong."
            )
    finally:
        # Clean up temp file if replace failed
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
