"""
Core modules for worktree-keeper.

This package contains the core business logic for:
- Locating the bare repository
- Reading and mutating the worktree registry
- Worktree creation
- Health checks and repair
- Per-worktree hook installation
- Synchronization
- Context switching
"""

from worktree_keeper.core.context import ContextSwitcher
from worktree_keeper.core.creator import WorktreeCreator
from worktree_keeper.core.hooks import HookInstaller
from worktree_keeper.core.locator import RepositoryLocator
from worktree_keeper.core.manager import WorkspaceManager
from worktree_keeper.core.registry import WorktreeRegistry
from worktree_keeper.core.repair import RepairEngine
from worktree_keeper.core.sync import Synchronizer
from worktree_keeper.core.vcs import GitVcs, VcsPort

__all__ = [
    "ContextSwitcher",
    "WorktreeCreator",
    "HookInstaller",
    "RepositoryLocator",
    "WorkspaceManager",
    "WorktreeRegistry",
    "RepairEngine",
    "Synchronizer",
    "GitVcs",
    "VcsPort",
]
