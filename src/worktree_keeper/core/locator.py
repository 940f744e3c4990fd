"""Locate the single bare repository inside a workspace directory."""

import logging
from pathlib import Path
from typing import Union

from worktree_keeper.exceptions import AmbiguousRepositoryError, NotFoundError
from worktree_keeper.models.worktree_info import BareRepository

logger = logging.getLogger(__name__)


class RepositoryLocator:
    """Finds the bare repository a workspace is built around."""

    def __init__(self, suffix: str = ".git"):
        self.suffix = suffix

    def is_bare_repository(self, path: Path) -> bool:
        """Check the naming convention and the object-store marker."""
        return (
            path.is_dir()
            and path.name.endswith(self.suffix)
            and path.name != self.suffix
            and (path / "objects").is_dir()
        )

    def candidates(self, workspace_dir: Path) -> list[Path]:
        """List the workspace's immediate children that look like bare repositories."""
        return sorted(
            child for child in workspace_dir.iterdir()
            if self.is_bare_repository(child)
        )

    def locate(self, workspace_dir: Union[str, Path]) -> BareRepository:
        """
        Locate the bare repository for a workspace.

        Args:
            workspace_dir: Directory holding the bare repository and worktrees.

        Returns:
            BareRepository for the single match.

        Raises:
            NotFoundError: If the workspace does not exist or holds no bare repository.
            AmbiguousRepositoryError: If more than one candidate matches.
        """
        workspace = Path(workspace_dir).resolve()

        if not workspace.is_dir():
            raise NotFoundError("Workspace directory not found", repository=workspace)

        matches = self.candidates(workspace)

        if not matches:
            raise NotFoundError(
                f"No bare repository (*{self.suffix} with objects/) found",
                repository=workspace,
            )
        if len(matches) > 1:
            raise AmbiguousRepositoryError(workspace, matches)

        logger.debug(f"Found bare repository: {matches[0]}")
        return BareRepository(path=matches[0])
