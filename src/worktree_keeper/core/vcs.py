"""
Narrow port to the underlying version-control tool.

Every git primitive the rest of the package needs goes through VcsPort.
GitVcs implements it with GitPython's command wrapper, translating
GitCommandError into VcsError or TimeoutError. Methods that ask "is this
there?" return None/False when the answer is no; only genuine failures
raise.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from git import Git, Repo
from git.exc import (
    GitCommandError,
    GitCommandNotFound,
    InvalidGitRepositoryError,
    NoSuchPathError,
)

from worktree_keeper.config import IntegrationStrategy
from worktree_keeper.exceptions import NotFoundError, TimeoutError, VcsError

logger = logging.getLogger(__name__)

_TIMEOUT_MARKER = "did not complete in"


@dataclass
class WorktreeRecord:
    """One entry of ``git worktree list --porcelain``."""

    path: Path
    head: str = ""
    branch_ref: Optional[str] = None
    is_bare: bool = False
    is_detached: bool = False
    is_locked: bool = False
    is_prunable: bool = False

    @property
    def branch(self) -> Optional[str]:
        if self.branch_ref and self.branch_ref.startswith("refs/heads/"):
            return self.branch_ref[len("refs/heads/"):]
        return self.branch_ref


@dataclass
class IntegrationResult:
    """Outcome of integrating an upstream into a worktree."""

    success: bool
    message: str = ""


def parse_worktree_porcelain(output: str) -> list[WorktreeRecord]:
    """
    Parse ``git worktree list --porcelain`` output.

    Args:
        output: Raw command output, records separated by blank lines.

    Returns:
        Records in the order git reports them.
    """
    records: list[WorktreeRecord] = []
    current: Optional[WorktreeRecord] = None

    for line in output.split("\n"):
        line = line.rstrip("\r")

        if not line.strip():
            if current is not None:
                records.append(current)
                current = None
            continue

        if line.startswith("worktree "):
            if current is not None:
                records.append(current)
            current = WorktreeRecord(path=Path(line[9:]))
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.head = line[5:]
        elif line.startswith("branch "):
            current.branch_ref = line[7:]
        elif line == "detached":
            current.is_detached = True
        elif line == "bare":
            current.is_bare = True
        elif line == "locked" or line.startswith("locked "):
            current.is_locked = True
        elif line == "prunable" or line.startswith("prunable "):
            current.is_prunable = True

    if current is not None:
        records.append(current)

    return records


class VcsPort(ABC):
    """Abstract interface for the git primitives worktree-keeper uses.

    Implementations: GitVcs (real), and test doubles built on MagicMock.
    """

    @property
    @abstractmethod
    def repo_path(self) -> Path:
        """Path of the bare repository this port operates on."""

    @abstractmethod
    def list_worktrees(self) -> list[WorktreeRecord]:
        """List registered worktrees, including the bare entry."""

    @classmethod
    @abstractmethod
    def clone_bare(
        cls,
        url: str,
        path: Path,
        *,
        remote: str = "origin",
        timeout: Optional[int] = None,
    ) -> "VcsPort":
        """Clone url into a new bare repository at path and return a port for it."""

    @abstractmethod
    def local_branches(self) -> list[str]:
        """List local branch names."""

    @abstractmethod
    def current_branch(self, worktree_path: Path) -> Optional[str]:
        """Get the branch checked out in a working tree, None when detached."""

    @abstractmethod
    def add_worktree(
        self,
        path: Path,
        branch: str,
        *,
        create_branch: bool = False,
        base: Optional[str] = None,
    ) -> None:
        """Register a worktree, optionally creating the branch from base."""

    @abstractmethod
    def remove_worktree(self, path: Path) -> None:
        """Deregister a worktree; works when its directory is already gone."""

    @abstractmethod
    def delete_branch(self, branch: str) -> None:
        """Delete a local branch."""

    @abstractmethod
    def fetch(self, remote: str, *, prune: bool = True, timeout: Optional[int] = None) -> None:
        """Fetch a remote into the shared object store."""

    @abstractmethod
    def resolve(self, spec: str) -> Optional[str]:
        """Resolve a revision spec to an object id, None if it does not exist."""

    @abstractmethod
    def get_config(self, key: str) -> Optional[str]:
        """Read a key from the shared repository config, None if unset."""

    @abstractmethod
    def set_config(self, key: str, value: str) -> None:
        """Write a key to the shared repository config."""

    @abstractmethod
    def read_blob(self, rev: str, path: str) -> Optional[str]:
        """Read a file from a commit's tree, None if absent."""

    @abstractmethod
    def set_upstream(self, branch: str, upstream: str) -> None:
        """Bind a local branch to a remote-tracking branch."""

    @abstractmethod
    def has_local_changes(self, worktree_path: Path) -> bool:
        """Check if a worktree has uncommitted or untracked changes."""

    @abstractmethod
    def commit_counts(self, worktree_path: Path, upstream: str) -> tuple[int, int]:
        """Return (behind, ahead) of a worktree's HEAD relative to upstream."""

    @abstractmethod
    def integrate(
        self,
        worktree_path: Path,
        upstream: str,
        strategy: IntegrationStrategy = IntegrationStrategy.MERGE,
    ) -> IntegrationResult:
        """Integrate upstream into a worktree, leaving it valid on failure.

        Raises VcsError when a failed integration cannot be aborted.
        """

    def branch_exists(self, branch: str) -> bool:
        """Check if a local branch exists."""
        return self.resolve(f"refs/heads/{branch}^{{commit}}") is not None

    def remote_branch_exists(self, remote: str, branch: str) -> bool:
        """Check if a remote-tracking branch exists."""
        return self.resolve(f"refs/remotes/{remote}/{branch}^{{commit}}") is not None

    def remote_url(self, remote: str) -> Optional[str]:
        """Get the URL of a remote, None if it is not configured."""
        return self.get_config(f"remote.{remote}.url")

    def get_upstream(self, branch: str) -> Optional[str]:
        """Get the remote-tracking branch a local branch tracks, e.g. origin/main."""
        remote = self.get_config(f"branch.{branch}.remote")
        merge = self.get_config(f"branch.{branch}.merge")
        if not remote or not merge:
            return None
        if merge.startswith("refs/heads/"):
            merge = merge[len("refs/heads/"):]
        return f"{remote}/{merge}"

    def set_branch_description(self, branch: str, description: str) -> None:
        """Persist a branch description."""
        self.set_config(f"branch.{branch}.description", description)


class GitVcs(VcsPort):
    """VcsPort backed by GitPython."""

    def __init__(self, repo_path: Union[str, Path], timeout: int = 60):
        """
        Open the bare repository.

        Args:
            repo_path: Path to the bare repository.
            timeout: Default per-command timeout in seconds.

        Raises:
            NotFoundError: If the path is not a git repository.
        """
        self._repo_path = Path(repo_path)
        self.timeout = timeout
        try:
            self.repo = Repo(self._repo_path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise NotFoundError(
                "Not a git repository", repository=self._repo_path
            ) from e

    @property
    def repo_path(self) -> Path:
        return self._repo_path

    def _run(
        self,
        command: str,
        *args: str,
        cwd: Optional[Path] = None,
        timeout: Optional[int] = None,
        git_options: Optional[dict] = None,
        strip: bool = True,
    ) -> str:
        """Run a git command in the bare repository or in a worktree."""
        git = Git(str(cwd)) if cwd is not None else self.repo.git
        if git_options:
            git = git(**git_options)

        deadline = timeout or self.timeout
        try:
            return getattr(git, command)(
                *args,
                kill_after_timeout=deadline,
                strip_newline_in_stdout=strip,
            )
        except GitCommandNotFound as e:
            raise VcsError("git executable not found", repository=self._repo_path) from e
        except GitCommandError as e:
            if _TIMEOUT_MARKER in str(e.stderr):
                raise TimeoutError(
                    f"git {command} did not complete in {deadline}s",
                    repository=self._repo_path,
                ) from e
            raise

    def _fail(self, action: str, error: GitCommandError, worktree: Optional[str] = None) -> VcsError:
        stderr = str(error.stderr).strip()
        return VcsError(
            f"Failed to {action}: {stderr}",
            repository=self._repo_path,
            worktree=worktree,
            stderr=stderr,
        )

    def list_worktrees(self) -> list[WorktreeRecord]:
        try:
            output = self._run("worktree", "list", "--porcelain")
        except GitCommandError as e:
            raise self._fail("list worktrees", e) from e
        return parse_worktree_porcelain(output)

    def add_worktree(
        self,
        path: Path,
        branch: str,
        *,
        create_branch: bool = False,
        base: Optional[str] = None,
    ) -> None:
        if create_branch:
            args = ["add", "-b", branch, str(path), base or "HEAD"]
        else:
            args = ["add", str(path), branch]

        # Hook state is reconciled explicitly after registration
        try:
            self._run(
                "worktree",
                *args,
                git_options={"c": f"core.hooksPath={os.devnull}"},
            )
        except GitCommandError as e:
            raise self._fail(f"add worktree for '{branch}'", e, worktree=str(path)) from e

    @classmethod
    def clone_bare(
        cls,
        url: str,
        path: Path,
        *,
        remote: str = "origin",
        timeout: Optional[int] = None,
    ) -> "GitVcs":
        deadline = timeout or 300
        path = Path(path)
        try:
            Git(str(path.parent)).clone(
                "--bare", "--origin", remote, url, str(path),
                kill_after_timeout=deadline,
            )
        except GitCommandNotFound as e:
            raise VcsError("git executable not found", repository=path) from e
        except GitCommandError as e:
            if _TIMEOUT_MARKER in str(e.stderr):
                raise TimeoutError(
                    f"git clone did not complete in {deadline}s", repository=path
                ) from e
            stderr = str(e.stderr).strip()
            raise VcsError(
                f"Failed to clone {url}: {stderr}", repository=path, stderr=stderr
            ) from e

        logger.info(f"Cloned {url} into {path}")
        return cls(path, timeout=timeout or 60)

    def local_branches(self) -> list[str]:
        try:
            output = self._run("for_each_ref", "--format=%(refname)", "refs/heads/")
        except GitCommandError as e:
            raise self._fail("list branches", e) from e
        return [
            line[len("refs/heads/"):]
            for line in output.splitlines()
            if line.startswith("refs/heads/")
        ]

    def current_branch(self, worktree_path: Path) -> Optional[str]:
        try:
            return self._run("symbolic_ref", "--quiet", "--short", "HEAD", cwd=worktree_path) or None
        except GitCommandError as e:
            # Exit status 1 means HEAD is detached
            if e.status == 1:
                return None
            raise self._fail("read current branch", e, worktree=str(worktree_path)) from e

    def remove_worktree(self, path: Path) -> None:
        try:
            self._run("worktree", "remove", "--force", str(path))
        except GitCommandError as e:
            raise self._fail("remove worktree", e, worktree=str(path)) from e

    def delete_branch(self, branch: str) -> None:
        try:
            self._run("branch", "-D", branch)
        except GitCommandError as e:
            raise self._fail(f"delete branch '{branch}'", e) from e

    def fetch(self, remote: str, *, prune: bool = True, timeout: Optional[int] = None) -> None:
        args = [remote]
        if prune:
            args.append("--prune")
        try:
            self._run("fetch", *args, timeout=timeout)
        except GitCommandError as e:
            raise self._fail(f"fetch '{remote}'", e) from e

    def resolve(self, spec: str) -> Optional[str]:
        try:
            return self._run("rev_parse", "--verify", "--quiet", spec) or None
        except GitCommandError as e:
            if e.status == 1:
                return None
            raise self._fail(f"resolve '{spec}'", e) from e

    def get_config(self, key: str) -> Optional[str]:
        try:
            return self._run("config", "--get", key)
        except GitCommandError as e:
            # Exit status 1 means the key is not set
            if e.status == 1:
                return None
            raise self._fail(f"read config '{key}'", e) from e

    def set_config(self, key: str, value: str) -> None:
        try:
            self._run("config", key, value)
        except GitCommandError as e:
            raise self._fail(f"write config '{key}'", e) from e

    def read_blob(self, rev: str, path: str) -> Optional[str]:
        object_id = self.resolve(f"{rev}:{path}")
        if object_id is None:
            return None
        try:
            return self._run("cat_file", "blob", object_id, strip=False)
        except GitCommandError as e:
            raise self._fail(f"read '{path}' at {rev}", e) from e

    def set_upstream(self, branch: str, upstream: str) -> None:
        try:
            self._run("branch", f"--set-upstream-to={upstream}", branch)
        except GitCommandError as e:
            raise self._fail(f"set upstream of '{branch}' to '{upstream}'", e) from e

    def has_local_changes(self, worktree_path: Path) -> bool:
        try:
            output = self._run("status", "--porcelain", cwd=worktree_path)
        except GitCommandError as e:
            raise self._fail("read worktree status", e, worktree=str(worktree_path)) from e
        return bool(output.strip())

    def commit_counts(self, worktree_path: Path, upstream: str) -> tuple[int, int]:
        try:
            output = self._run(
                "rev_list", "--left-right", "--count", f"{upstream}...HEAD",
                cwd=worktree_path,
            )
        except GitCommandError as e:
            raise self._fail("count commits", e, worktree=str(worktree_path)) from e

        parts = output.split()
        if len(parts) == 2:
            return int(parts[0]), int(parts[1])

        return 0, 0

    def integrate(
        self,
        worktree_path: Path,
        upstream: str,
        strategy: IntegrationStrategy = IntegrationStrategy.MERGE,
    ) -> IntegrationResult:
        if strategy == IntegrationStrategy.REBASE:
            args = ["rebase", upstream]
        else:
            args = ["merge", "--no-edit", upstream]

        try:
            output = self._run(*args, cwd=worktree_path)
        except GitCommandError as e:
            self._abort_in_progress(worktree_path)
            return IntegrationResult(success=False, message=str(e.stderr).strip())

        return IntegrationResult(success=True, message=output)

    def _abort_in_progress(self, worktree_path: Path) -> None:
        """Abort a merge or rebase left in progress by a failed integration."""
        try:
            merging = self._run(
                "rev_parse", "--verify", "--quiet", "MERGE_HEAD", cwd=worktree_path
            )
        except GitCommandError:
            merging = ""
        if merging:
            logger.info(f"Aborting merge in {worktree_path}")
            try:
                self._run("merge", "--abort", cwd=worktree_path)
            except GitCommandError as e:
                raise self._fail("abort merge", e, worktree=str(worktree_path)) from e
            return

        for marker in ("rebase-merge", "rebase-apply"):
            try:
                state_dir = self._run("rev_parse", "--git-path", marker, cwd=worktree_path)
                if (worktree_path / state_dir).exists():
                    logger.info(f"Aborting rebase in {worktree_path}")
                    self._run("rebase", "--abort", cwd=worktree_path)
                    return
            except GitCommandError as e:
                raise self._fail("abort rebase", e, worktree=str(worktree_path)) from e
