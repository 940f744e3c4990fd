"""
worktree-keeper - bare repository + linked worktree workspace management.

This package keeps the metadata linking each worktree to a shared bare
repository consistent: it creates worktrees, detects and repairs drift,
installs per-branch hooks and synchronizes every worktree with its remote.
"""

__version__ = "0.1.0"

from worktree_keeper.config import Config, load_config

__all__ = [
    "__version__",
    "Config",
    "load_config",
]
