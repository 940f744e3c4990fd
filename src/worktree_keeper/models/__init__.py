"""
Pydantic models for worktree-keeper.

This package contains data models for:
- The bare repository and its worktrees
- Per-branch hook sets and installed-version markers
- Maintenance operations (repair, sync)
"""

from worktree_keeper.models.hooks import (
    HookMarker,
    HookScript,
    HookSet,
    InstalledVersion,
)
from worktree_keeper.models.maintenance import (
    Divergence,
    DivergenceKind,
    RepairReport,
    RepairResult,
    SyncOutcome,
    SyncReport,
    UnrepairedDivergence,
    WorktreeSyncResult,
)
from worktree_keeper.models.worktree_info import (
    BareRepository,
    Worktree,
    WorkspaceSetupResult,
    WorktreeCreateResult,
)

__all__ = [
    "HookMarker",
    "HookScript",
    "HookSet",
    "InstalledVersion",
    "Divergence",
    "DivergenceKind",
    "RepairReport",
    "RepairResult",
    "SyncOutcome",
    "SyncReport",
    "UnrepairedDivergence",
    "WorktreeSyncResult",
    "BareRepository",
    "Worktree",
    "WorkspaceSetupResult",
    "WorktreeCreateResult",
]
