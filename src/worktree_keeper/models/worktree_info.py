"""Pydantic models for the bare repository and its worktrees."""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from worktree_keeper.models.maintenance import RepairReport


class BareRepository(BaseModel):
    """The shared object store every worktree in a workspace links to."""

    path: Path = Field(description="Absolute path to the bare repository directory")

    @property
    def name(self) -> str:
        """Get the bare repository directory name."""
        return self.path.name

    @property
    def workspace(self) -> Path:
        """Get the workspace directory that holds the bare repository."""
        return self.path.parent

    @property
    def worktrees_dir(self) -> Path:
        """Get the directory holding per-worktree admin directories."""
        return self.path / "worktrees"

    def worktree_id_for(self, path: Path) -> str:
        """
        Derive the worktree id for a worktree path.

        The id is the path relative to the workspace, so a worktree at
        ``<workspace>/feature/x`` has id ``feature/x``. Worktrees living
        outside the workspace fall back to their directory name.

        Args:
            path: Absolute worktree path.

        Returns:
            The worktree id.
        """
        try:
            return path.relative_to(self.workspace).as_posix()
        except ValueError:
            return path.name


class Worktree(BaseModel):
    """A registered linked worktree."""

    id: str = Field(description="Worktree id, unique within the workspace")
    path: Path = Field(description="Absolute path to the worktree directory")
    admin_dir: Path = Field(
        description="Admin directory the registry assigns inside the bare repository"
    )
    branch: Optional[str] = Field(
        default=None, description="Bound branch name, None when HEAD is detached"
    )
    head_commit: str = Field(default="", description="Full SHA of the HEAD commit")
    is_detached: bool = Field(default=False, description="Whether HEAD is detached")
    is_locked: bool = Field(default=False, description="Whether the entry is locked")
    upstream: Optional[str] = Field(
        default=None, description="Remote-tracking ref the branch tracks"
    )

    @property
    def name(self) -> str:
        """Get the worktree directory name."""
        return self.path.name

    @property
    def display_branch(self) -> str:
        """Get the branch name for display, marking detached worktrees."""
        return self.branch or "(detached)"

    @property
    def short_commit(self) -> str:
        """Get the abbreviated HEAD commit."""
        return self.head_commit[:7]

    @property
    def exists(self) -> bool:
        """Whether the worktree directory is present on disk."""
        return self.path.is_dir()

    @property
    def link_file(self) -> Path:
        """Get the path of the worktree's ``.git`` link file."""
        return self.path / ".git"

    @property
    def hooks_dir(self) -> Path:
        """Get the worktree's private hooks directory."""
        return self.admin_dir / "hooks"

    @property
    def config_file(self) -> Path:
        """Get the worktree's ``config.worktree`` override file."""
        return self.admin_dir / "config.worktree"


class WorktreeCreateResult(BaseModel):
    """Result of creating a new worktree."""

    worktree: Worktree
    created_branch: bool = Field(
        default=False, description="Whether a new branch was created"
    )
    base_branch: Optional[str] = Field(
        default=None, description="Base the new branch was created from"
    )
    upstream: Optional[str] = Field(
        default=None, description="Remote-tracking ref bound as upstream"
    )
    issue: Optional[str] = Field(
        default=None, description="Issue reference persisted for the branch"
    )
    hooks_version: Optional[str] = Field(
        default=None, description="Hook set version installed in the worktree"
    )
    created_at: datetime = Field(default_factory=datetime.now)


class WorkspaceSetupResult(BaseModel):
    """Result of building a workspace from a remote or an existing clone."""

    workspace: Path = Field(description="Directory holding the bare repository and worktrees")
    repository: BareRepository
    source: str = Field(description="URL or path the bare repository was cloned from")
    worktrees: List[Worktree] = Field(
        default_factory=list, description="Worktrees created, in creation order"
    )
    fetch_error: Optional[str] = Field(
        default=None, description="Why the initial fetch failed, if it did"
    )
    repair: Optional[RepairReport] = Field(
        default=None, description="Full sweep run once the worktrees exist"
    )
