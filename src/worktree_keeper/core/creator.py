"""
Worktree creation for the bare repository workspace.

Creating a worktree is a short protocol: pre-checks, registration
(creating the branch from a base when needed), an inline targeted repair
that also installs the branch's hooks, upstream binding and, optionally,
issue bookkeeping. The worktree is not handed back until the inline repair
leaves it healthy.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union

from worktree_keeper.core.repair import RepairEngine
from worktree_keeper.exceptions import (
    BaseBranchNotFoundError,
    DivergenceUnrepairableError,
    PathExistsError,
    WorktreeConflictError,
)
from worktree_keeper.models.worktree_info import Worktree, WorktreeCreateResult

logger = logging.getLogger(__name__)

_GITHUB_URL_RE = re.compile(r"github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$")

BRANCH_INFO_FILENAME = "BRANCH_INFO.md"


def issue_url(remote_url: Optional[str], issue: Union[int, str]) -> str:
    """
    Build a link to an issue from the remote's URL.

    Args:
        remote_url: URL of the origin remote, SSH or HTTPS form.
        issue: Issue number.

    Returns:
        The GitHub issue URL, or ``Issue #<n>`` for non-GitHub remotes.
    """
    match = _GITHUB_URL_RE.search(remote_url or "")
    if match is None:
        return f"Issue #{issue}"
    org, repo = match.groups()
    return f"https://github.com/{org}/{repo}/issues/{issue}"


def render_branch_info(branch: str, issue: Union[int, str], url: str) -> str:
    """Render the BRANCH_INFO.md written into worktrees created for an issue."""
    return (
        f"# Feature Branch: {branch.rsplit('/', 1)[-1]}\n"
        "\n"
        "## Issue Reference\n"
        f"- **Issue**: [{url}]({url})\n"
        f"- **Branch**: `{branch}`\n"
        "\n"
        "## Description\n"
        f"This branch implements functionality as specified in issue #{issue}.\n"
        "\n"
        "## Commit Message Convention\n"
        f"Use the format: `feat: description - fixes #{issue}` "
        f"or `feat: description - refs #{issue}`\n"
    )


class WorktreeCreator:
    """Registers new worktrees and brings them to a healthy state."""

    def __init__(self, repair_engine: RepairEngine, remote: str = "origin"):
        self.repair_engine = repair_engine
        self.remote = remote

    @property
    def registry(self):
        return self.repair_engine.registry

    @property
    def vcs(self):
        return self.registry.vcs

    def default_path(self, branch: str) -> Path:
        """Get the default location of a branch's worktree: ``<workspace>/<branch>``."""
        return self.registry.repository.workspace / branch

    def _resolve_base(self, base: str) -> str:
        if self.vcs.branch_exists(base):
            return base
        if self.vcs.remote_branch_exists(self.remote, base):
            return f"{self.remote}/{base}"
        raise BaseBranchNotFoundError(base, self.registry.repository.path)

    def create(
        self,
        branch: str,
        base: str = "main",
        issue: Optional[Union[int, str]] = None,
        path: Optional[Path] = None,
    ) -> WorktreeCreateResult:
        """
        Create a worktree for a branch.

        Args:
            branch: Branch to check out; created from base if it does not exist.
            base: Local branch, or branch on the remote, to create from.
            issue: Optional issue number to link the branch to.
            path: Target directory, ``<workspace>/<branch>`` by default.

        Returns:
            WorktreeCreateResult describing the new worktree.

        Raises:
            PathExistsError: If the target path already exists.
            WorktreeConflictError: If the branch is checked out elsewhere.
            BaseBranchNotFoundError: If a new branch's base cannot be resolved.
            DivergenceUnrepairableError: If the new worktree cannot be made healthy.
            LockTimeoutError: If the registry lock is held elsewhere.
            VcsError: If git refuses the registration.
        """
        target = Path(path).expanduser().resolve() if path else self.default_path(branch)
        if target.exists():
            raise PathExistsError(target)

        existing = self.registry.find_by_branch(branch)
        if existing is not None:
            raise WorktreeConflictError(branch, existing.id)

        create_branch = not self.vcs.branch_exists(branch)
        base_rev = self._resolve_base(base) if create_branch else None

        if create_branch:
            logger.info(f"Creating branch '{branch}' from '{base_rev}'")
        worktree = self.registry.register(
            target, branch, create_branch=create_branch, base=base_rev
        )

        result = self.repair_engine.repair_worktree(worktree)
        if not result.is_clean:
            raise DivergenceUnrepairableError(worktree.id, result.failure_messages())

        upstream = None
        if self.vcs.remote_branch_exists(self.remote, branch):
            upstream = f"{self.remote}/{branch}"
            self.vcs.set_upstream(branch, upstream)
            logger.info(f"Branch '{branch}' now tracks '{upstream}'")

        issue_ref = None
        if issue is not None:
            issue_ref = self._link_issue(worktree, branch, issue)

        marker = self.repair_engine.hook_installer.read_marker(worktree)

        return WorktreeCreateResult(
            worktree=self.registry.get(worktree.id),
            created_branch=create_branch,
            base_branch=base_rev,
            upstream=upstream,
            issue=issue_ref,
            hooks_version=marker.version if marker else None,
        )

    def _link_issue(self, worktree: Worktree, branch: str, issue: Union[int, str]) -> str:
        """Record the issue in the branch description and BRANCH_INFO.md."""
        url = issue_url(self.vcs.remote_url(self.remote), issue)
        self.vcs.set_branch_description(
            branch, f"Implements feature for issue #{issue} - {url}"
        )
        info_file = worktree.path / BRANCH_INFO_FILENAME
        info_file.write_text(render_branch_info(branch, issue, url), encoding="utf-8")
        logger.info(f"Linked '{branch}' to issue #{issue}")
        return url
