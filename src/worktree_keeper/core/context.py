"""Read-only listing and selection of worktrees for switching between them."""

import logging
from pathlib import Path
from typing import List, Optional

from worktree_keeper.core.registry import WorktreeRegistry
from worktree_keeper.exceptions import NotFoundError
from worktree_keeper.models.worktree_info import Worktree

logger = logging.getLogger(__name__)


class ContextSwitcher:
    """Looks worktrees up in the registry. Never mutates anything."""

    def __init__(self, registry: WorktreeRegistry):
        self.registry = registry

    def list(self) -> List[Worktree]:
        return self.registry.list()

    def _match(self, identifier: str, worktrees: List[Worktree]) -> Optional[Worktree]:
        candidate_path = Path(identifier).expanduser()
        if candidate_path.is_absolute():
            candidate_path = candidate_path.resolve()

        matchers = [
            lambda wt: wt.id == identifier,
            lambda wt: wt.branch == identifier,
            lambda wt: wt.name == identifier,
            lambda wt: candidate_path.is_absolute() and candidate_path == wt.path,
            lambda wt: bool(wt.branch) and wt.branch.endswith(f"/{identifier}"),
        ]

        # Earlier matchers win across all worktrees
        for matches in matchers:
            for wt in worktrees:
                if matches(wt):
                    return wt

        return None

    def select(self, identifier: str) -> Worktree:
        """
        Find a worktree by id, branch, directory name, or path.

        Exact matches win over branch-suffix matches, so ``x`` selects the
        worktree of ``feature/x`` only when nothing is named ``x`` outright.

        Args:
            identifier: Worktree id, branch name, directory name, or path.

        Returns:
            The matching Worktree.

        Raises:
            NotFoundError: If no worktree matches.
        """
        worktree = self._match(identifier, self.registry.list())
        if worktree is None:
            raise NotFoundError("No worktree matches", worktree=identifier)

        if not worktree.exists:
            logger.warning(f"Worktree {worktree.id} is registered but its directory is missing")
        return worktree
