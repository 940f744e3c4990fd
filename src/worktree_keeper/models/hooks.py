"""Pydantic models for per-branch hook sets and their installation state."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class HookScript(BaseModel):
    """A single hook script declared by a branch."""

    name: str = Field(description="Git hook name, e.g. pre-commit")
    content: str = Field(description="Script body as committed on the branch")


class HookSet(BaseModel):
    """The versioned collection of hooks a branch declares."""

    branch: str = Field(description="Branch (or commit) the hook set was read from")
    version: str = Field(description="Declared hook set version")
    scripts: List[HookScript] = Field(default_factory=list)

    @property
    def hook_names(self) -> List[str]:
        return [script.name for script in self.scripts]


class HookMarker(BaseModel):
    """Contents of the installed-version marker in a worktree's hooks directory."""

    installed_by: str
    installed_at: datetime
    source_branch: str
    version: str
    hooks: List[str] = Field(default_factory=list)


class InstalledVersion(BaseModel):
    """Result of reconciling a worktree's hooks."""

    worktree_id: str
    version: Optional[str] = Field(
        default=None, description="Installed version, None when the branch has no hooks"
    )
    changed: bool = Field(
        default=False, description="Whether any file in the hooks directory was written"
    )
    hooks: List[str] = Field(default_factory=list)
    removed: List[str] = Field(
        default_factory=list, description="Hooks removed because they are no longer declared"
    )
