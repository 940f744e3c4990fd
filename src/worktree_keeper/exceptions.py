"""Exception hierarchy for worktree-keeper.

Every error names the entity it concerns, either the repository path or
the worktree id, so callers can attribute failures in multi-target runs.
"""

import builtins
from pathlib import Path
from typing import Optional, Union


class WorktreeKeeperError(Exception):
    """Base exception for all worktree-keeper errors."""

    exit_code = 1

    def __init__(
        self,
        message: str,
        repository: Optional[Union[str, Path]] = None,
        worktree: Optional[str] = None,
    ):
        self.message = message
        self.repository = str(repository) if repository is not None else None
        self.worktree = worktree

        parts = []
        if repository is not None:
            parts.append(f"[repository {repository}]")
        if worktree is not None:
            parts.append(f"[worktree {worktree}]")
        parts.append(message)

        super().__init__(" ".join(parts))


class NotFoundError(WorktreeKeeperError):
    """Raised when a repository or worktree does not exist."""

    exit_code = 3


class AmbiguousRepositoryError(WorktreeKeeperError):
    """Raised when a workspace holds more than one bare repository."""

    exit_code = 4

    def __init__(self, workspace: Union[str, Path], candidates: list[Path]):
        self.candidates = list(candidates)
        names = ", ".join(sorted(c.name for c in self.candidates))
        super().__init__(
            f"Multiple bare repositories found: {names}",
            repository=workspace,
        )


class WorktreeConflictError(WorktreeKeeperError):
    """Raised when a branch is already checked out in another worktree."""

    exit_code = 5

    def __init__(self, branch: str, existing: str):
        self.branch = branch
        self.existing = existing
        super().__init__(
            f"Branch '{branch}' is already checked out in worktree '{existing}'",
            worktree=existing,
        )


class BaseBranchNotFoundError(WorktreeKeeperError):
    """Raised when the base branch for a new branch cannot be resolved."""

    exit_code = 6

    def __init__(self, base_branch: str, repository: Union[str, Path]):
        self.base_branch = base_branch
        super().__init__(
            f"Base branch not found: {base_branch}",
            repository=repository,
        )


class PathExistsError(WorktreeKeeperError):
    """Raised when the target path for a new worktree already exists."""

    exit_code = 7

    def __init__(self, path: Union[str, Path], worktree: Optional[str] = None):
        self.path = Path(path)
        super().__init__(f"Path already exists: {path}", worktree=worktree)


class DivergenceUnrepairableError(WorktreeKeeperError):
    """Raised when repair left at least one divergence in place."""

    exit_code = 8

    def __init__(self, worktree: str, failures: list[str]):
        self.failures = list(failures)
        super().__init__(
            "Unrepairable divergences: " + "; ".join(self.failures),
            worktree=worktree,
        )


class TimeoutError(WorktreeKeeperError, builtins.TimeoutError):
    """Raised when a git operation exceeds its deadline.

    State is left at the last consistent checkpoint and the operation is
    safe to retry.
    """

    exit_code = 9


class LockTimeoutError(WorktreeKeeperError):
    """Raised when the registry lock could not be acquired."""

    exit_code = 10

    def __init__(self, lock_path: Union[str, Path], attempts: int):
        self.lock_path = Path(lock_path)
        self.attempts = attempts
        super().__init__(
            f"Could not acquire registry lock {lock_path} after {attempts} attempts",
            repository=self.lock_path.parent,
        )


class SyncConflictError(WorktreeKeeperError):
    """Per-worktree integration failure, reported in sync results."""

    exit_code = 11


class VcsError(WorktreeKeeperError):
    """Raised when an underlying git command fails."""

    def __init__(
        self,
        message: str,
        repository: Optional[Union[str, Path]] = None,
        worktree: Optional[str] = None,
        stderr: str = "",
    ):
        self.stderr = stderr
        super().__init__(message, repository=repository, worktree=worktree)


class FormatError(ValueError):
    """Raised when an on-disk metadata file does not parse."""
