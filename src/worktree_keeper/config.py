"""
Configuration management for worktree-keeper.

Loads configuration from .wtkrc files in the following priority:
1. Path specified via --config flag
2. .wtkrc in current directory
3. .wtkrc.toml in current directory
4. ~/.config/worktree-keeper/config.toml
5. ~/.wtkrc
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class IntegrationStrategy(str, Enum):
    """How remote updates are integrated into a worktree."""

    MERGE = "merge"
    REBASE = "rebase"


class WorkspaceConfig(BaseModel):
    """Configuration for locating and mutating the shared repository."""

    bare_suffix: str = Field(
        default=".git",
        description="Directory name suffix identifying the bare repository",
    )
    remote: str = Field(
        default="origin",
        description="Remote used for fetching and tracking branches",
    )
    default_base: str = Field(
        default="main",
        description="Base branch for new branches when none is given",
    )
    command_timeout: int = Field(
        default=60,
        ge=1,
        description="Timeout in seconds for individual git commands",
    )
    lock_filename: str = Field(
        default="worktree-keeper.lock",
        description="Name of the registry lock file inside the bare repository",
    )
    lock_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts to take the registry lock before giving up",
    )
    lock_backoff: float = Field(
        default=0.2,
        ge=0,
        description="Initial backoff in seconds between lock attempts",
    )


class SyncConfig(BaseModel):
    """Configuration for sync operations."""

    strategy: IntegrationStrategy = Field(
        default=IntegrationStrategy.MERGE,
        description="Integration strategy (merge or rebase)",
    )
    prune_remote: bool = Field(
        default=True,
        description="Prune remote tracking branches on fetch",
    )
    fetch_timeout: int = Field(
        default=300,
        ge=1,
        description="Timeout in seconds for the shared fetch",
    )
    max_workers: int = Field(
        default=1,
        ge=1,
        description="Worktrees synchronized concurrently (capped at CPU count)",
    )


class HooksConfig(BaseModel):
    """Configuration for per-branch hook installation."""

    manifest_path: str = Field(
        default=".githooks/manifest.toml",
        description="Path of the hook manifest inside each branch",
    )
    scripts_dir: str = Field(
        default=".githooks",
        description="Directory inside each branch holding hook scripts",
    )
    marker_filename: str = Field(
        default=".hook-metadata",
        description="Installed-version marker inside each worktree's hooks directory",
    )
    installed_by: str = Field(
        default="worktree-keeper",
        description="Value recorded as installed_by in the marker",
    )


class RepairConfig(BaseModel):
    """Configuration for health checks and repair."""

    parallel_checks: bool = Field(
        default=False,
        description="Run read-only divergence checks in a thread pool",
    )
    fix_repository: bool = Field(
        default=True,
        description="Also check and fix repository-level settings",
    )


class Config(BaseModel):
    """Main configuration model for worktree-keeper."""

    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)
    repair: RepairConfig = Field(default_factory=RepairConfig)


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file or use defaults.

    Args:
        config_path: Optional explicit path to config file.

    Returns:
        Config instance with loaded or default values.
    """
    search_paths = [
        Path(config_path) if config_path else None,
        Path.cwd() / ".wtkrc",
        Path.cwd() / ".wtkrc.toml",
        Path.home() / ".config" / "worktree-keeper" / "config.toml",
        Path.home() / ".wtkrc",
    ]

    for path in search_paths:
        if path and path.exists():
            try:
                data = toml.load(path)
                return Config(**data)
            except (OSError, toml.TomlDecodeError, ValidationError) as e:
                logger.warning(f"Ignoring invalid config file {path}: {e}")
                continue

    return Config()


def save_config(config: Config, path: Path) -> None:
    """
    Save configuration to a TOML file.

    Args:
        config: Configuration to save.
        path: Path to save the config file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        toml.dump(config.model_dump(mode="json"), f)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.cwd() / ".wtkrc"
