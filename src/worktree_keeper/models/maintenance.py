"""
Pydantic models for maintenance features (repair and sync).

This module provides data models for:
- Divergences between a worktree's on-disk state and the registry
- Repair results, per worktree and per sweep
- Sync operation reporting
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class DivergenceKind(str, Enum):
    """Kinds of metadata drift the repair engine knows how to detect."""

    STALE_ENTRY = "stale_entry"
    LINK_MISSING = "link_missing"
    LINK_MALFORMED = "link_malformed"
    CONFIG_MISSING = "config_missing"
    CONFIG_MALFORMED = "config_malformed"
    HOOKS_OUTDATED = "hooks_outdated"
    WORKTREE_CONFIG_DISABLED = "worktree_config_disabled"
    FETCH_REFSPEC_MISSING = "fetch_refspec_missing"
    CHECK_FAILED = "check_failed"


REPOSITORY_DIVERGENCES = frozenset({
    DivergenceKind.WORKTREE_CONFIG_DISABLED,
    DivergenceKind.FETCH_REFSPEC_MISSING,
})


class Divergence(BaseModel):
    """A detected mismatch between actual and expected state."""

    kind: DivergenceKind = Field(..., description="What kind of drift was found")
    target: str = Field(
        ..., description="Worktree id, or the repository path for repository-level drift"
    )
    detail: str = Field(default="", description="Human-readable description")

    class Config:
        use_enum_values = True


class UnrepairedDivergence(BaseModel):
    """A divergence whose fix failed, with the reason."""

    divergence: Divergence
    error: str = Field(..., description="Why the fix could not be applied")


class RepairResult(BaseModel):
    """Result of repairing a single worktree (or the repository itself)."""

    target: str = Field(..., description="Worktree id or repository path")
    found: List[Divergence] = Field(
        default_factory=list,
        description="Divergences detected before repair"
    )
    repaired: List[Divergence] = Field(
        default_factory=list,
        description="Divergences that were fixed"
    )
    unrepaired: List[UnrepairedDivergence] = Field(
        default_factory=list,
        description="Divergences that need manual intervention"
    )
    pruned: bool = Field(
        default=False,
        description="Whether the worktree's registry entry was removed"
    )

    @property
    def is_clean(self) -> bool:
        """Whether every detected divergence was fixed."""
        return not self.unrepaired

    @property
    def was_healthy(self) -> bool:
        """Whether no divergence was detected at all."""
        return not self.found

    def failure_messages(self) -> List[str]:
        """Describe each unrepaired divergence in one line."""
        return [
            f"{item.divergence.kind}: {item.error}" for item in self.unrepaired
        ]


class RepairReport(BaseModel):
    """Report generated after a full-sweep repair."""

    timestamp: datetime = Field(..., description="When the sweep was performed")
    repository: Optional[RepairResult] = Field(
        default=None,
        description="Result of repository-level checks"
    )
    results: List[RepairResult] = Field(
        default_factory=list,
        description="Individual results for each worktree, in registry order"
    )
    cancelled: bool = Field(
        default=False,
        description="Whether the sweep stopped early on cancellation"
    )

    @property
    def worktrees_checked(self) -> int:
        return len(self.results)

    @property
    def healthy(self) -> int:
        return sum(1 for r in self.results if r.was_healthy)

    @property
    def repaired(self) -> int:
        return sum(1 for r in self.results if not r.was_healthy and r.is_clean)

    @property
    def pruned(self) -> int:
        return sum(1 for r in self.results if r.pruned)

    @property
    def failed(self) -> int:
        count = sum(1 for r in self.results if not r.is_clean)
        if self.repository and not self.repository.is_clean:
            count += 1
        return count


class SyncOutcome(str, Enum):
    """Outcome of synchronizing a single worktree."""

    UPDATED = "updated"
    UP_TO_DATE = "up_to_date"
    NO_REMOTE_TRACKING = "no_remote_tracking"
    CONFLICT = "conflict"
    SKIPPED_DETACHED = "skipped_detached"
    ERROR = "error"


class WorktreeSyncResult(BaseModel):
    """Result of syncing a single worktree."""

    worktree_id: str = Field(..., description="Id of the worktree")
    worktree_path: str = Field(..., description="Path to the worktree")
    branch_name: str = Field(..., description="Current branch name")
    outcome: SyncOutcome = Field(..., description="Result of the sync")
    message: str = Field(..., description="Human-readable status message")
    commits_pulled: int = Field(
        default=0,
        ge=0,
        description="Number of commits integrated from upstream"
    )
    commits_behind: int = Field(
        default=0,
        ge=0,
        description="Number of commits behind upstream before sync"
    )
    commits_ahead: int = Field(
        default=0,
        ge=0,
        description="Number of commits ahead of upstream"
    )
    upstream_branch: Optional[str] = Field(
        default=None,
        description="Name of the remote-tracking branch"
    )
    hooks_version: Optional[str] = Field(
        default=None,
        description="Hook set version installed after integrating"
    )
    hooks_error: Optional[str] = Field(
        default=None,
        description="Why hooks could not be reconciled after integrating"
    )

    class Config:
        use_enum_values = True


class SyncReport(BaseModel):
    """Report generated after a sync run."""

    timestamp: datetime = Field(..., description="When the sync was performed")
    fetched: bool = Field(
        default=False,
        description="Whether the shared fetch succeeded"
    )
    fetch_error: Optional[str] = Field(
        default=None,
        description="Why the shared fetch failed, if it did"
    )
    results: List[WorktreeSyncResult] = Field(
        default_factory=list,
        description="Individual results for each worktree, in registry order"
    )
    cancelled: bool = Field(
        default=False,
        description="Whether the run stopped early on cancellation"
    )

    def count(self, outcome: SyncOutcome) -> int:
        """Count results with the given outcome."""
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def outcomes(self) -> List[str]:
        """Outcomes in registry order."""
        return [SyncOutcome(r.outcome).value for r in self.results]

    @property
    def has_conflicts(self) -> bool:
        return self.count(SyncOutcome.CONFLICT) > 0

    @property
    def hook_failures(self) -> List[WorktreeSyncResult]:
        """Updated worktrees whose hooks could not be reconciled."""
        return [r for r in self.results if r.hooks_error]
