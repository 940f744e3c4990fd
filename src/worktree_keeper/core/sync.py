"""
Sync service for synchronizing worktrees with their remote branches.

This module provides functionality to:
- Fetch once into the shared object store
- Integrate remote updates into every registered worktree
- Reconcile hooks in worktrees whose checked-out commit changed
- Isolate per-worktree failures in the resulting report
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import List, Optional

from worktree_keeper.config import SyncConfig
from worktree_keeper.core.hooks import HookInstaller, HookScopeError
from worktree_keeper.core.registry import WorktreeRegistry
from worktree_keeper.exceptions import (
    SyncConflictError,
    TimeoutError,
    VcsError,
    WorktreeKeeperError,
)
from worktree_keeper.models.maintenance import (
    SyncOutcome,
    SyncReport,
    WorktreeSyncResult,
)
from worktree_keeper.models.worktree_info import Worktree
from worktree_keeper.utils.cancellation import CancellationToken, is_cancelled

logger = logging.getLogger(__name__)


class Synchronizer:
    """
    Service for synchronizing worktrees with their remote branches.

    The remote is fetched exactly once per run, against the bare
    repository, so every worktree sees the same remote state. Worktrees are
    then integrated independently; one worktree's failure is recorded and
    the run moves on. When a hook installer is given, every worktree that
    integrated new commits has its hooks reconciled before it is reported.
    """

    def __init__(
        self,
        registry: WorktreeRegistry,
        config: Optional[SyncConfig] = None,
        remote: str = "origin",
        hook_installer: Optional[HookInstaller] = None,
    ):
        self.registry = registry
        self.config = config or SyncConfig()
        self.remote = remote
        self.hook_installer = hook_installer

    @property
    def vcs(self):
        return self.registry.vcs

    def fetch(self, report: SyncReport) -> None:
        """Fetch the remote once, recording a failure on the report."""
        try:
            self.vcs.fetch(
                self.remote,
                prune=self.config.prune_remote,
                timeout=self.config.fetch_timeout,
            )
        except (VcsError, TimeoutError) as e:
            logger.warning(f"Fetch from '{self.remote}' failed, syncing against existing refs: {e}")
            report.fetch_error = str(e)
            return

        report.fetched = True
        logger.info(f"Fetched '{self.remote}'")

    def sync_worktree(self, worktree: Worktree) -> WorktreeSyncResult:
        """
        Integrate remote updates into a single worktree.

        Never raises for per-worktree failures; they are reported as the
        result's outcome.

        Args:
            worktree: Registered worktree to sync.

        Returns:
            WorktreeSyncResult with details of the operation.
        """
        base = {
            "worktree_id": worktree.id,
            "worktree_path": str(worktree.path),
            "branch_name": worktree.display_branch,
        }

        if worktree.is_detached or not worktree.branch:
            return WorktreeSyncResult(
                **base,
                outcome=SyncOutcome.SKIPPED_DETACHED,
                message="HEAD is detached; left untouched",
            )

        if not worktree.exists:
            return WorktreeSyncResult(
                **base,
                outcome=SyncOutcome.ERROR,
                message=f"Worktree path does not exist: {worktree.path}",
            )

        upstream = f"{self.remote}/{worktree.branch}"

        try:
            if not self.vcs.remote_branch_exists(self.remote, worktree.branch):
                return WorktreeSyncResult(
                    **base,
                    outcome=SyncOutcome.NO_REMOTE_TRACKING,
                    message=f"No remote branch {upstream}",
                )

            commits_behind, commits_ahead = self.vcs.commit_counts(worktree.path, upstream)

            if commits_behind == 0:
                return WorktreeSyncResult(
                    **base,
                    outcome=SyncOutcome.UP_TO_DATE,
                    message="Already up to date",
                    commits_ahead=commits_ahead,
                    upstream_branch=upstream,
                )

            integration = self.vcs.integrate(worktree.path, upstream, self.config.strategy)

        except (VcsError, TimeoutError) as e:
            logger.warning(f"Sync of {worktree.id} failed: {e}")
            return WorktreeSyncResult(
                **base,
                outcome=SyncOutcome.ERROR,
                message=f"Sync failed: {e.message}",
                upstream_branch=upstream,
            )

        if not integration.success:
            error = SyncConflictError(
                f"Could not integrate {upstream}: {integration.message}",
                worktree=worktree.id,
            )
            logger.warning(str(error))
            return WorktreeSyncResult(
                **base,
                outcome=SyncOutcome.CONFLICT,
                message=str(error),
                commits_behind=commits_behind,
                commits_ahead=commits_ahead,
                upstream_branch=upstream,
            )

        logger.info(f"Integrated {commits_behind} commit(s) from {upstream} into {worktree.id}")
        result = WorktreeSyncResult(
            **base,
            outcome=SyncOutcome.UPDATED,
            message=f"Successfully integrated {commits_behind} commits",
            commits_pulled=commits_behind,
            commits_ahead=commits_ahead,
            upstream_branch=upstream,
        )
        self._reconcile_hooks(worktree, result)
        return result

    def _reconcile_hooks(self, worktree: Worktree, result: WorktreeSyncResult) -> None:
        """Install the hook set of the worktree's new HEAD, recording any failure."""
        if self.hook_installer is None:
            return

        try:
            # The registry entry carries the post-integration HEAD
            current = self.registry.get(worktree.id)
            installed = self.hook_installer.reconcile(current)
        except (OSError, HookScopeError, WorktreeKeeperError) as e:
            logger.warning(f"Could not reconcile hooks for {worktree.id} after sync: {e}")
            result.hooks_error = str(e)
            return

        result.hooks_version = installed.version

    def _workers(self, count: int) -> int:
        return max(1, min(self.config.max_workers, os.cpu_count() or 1, count))

    def sync_all(self, cancel: Optional[CancellationToken] = None) -> SyncReport:
        """
        Fetch once, then sync every registered worktree.

        Args:
            cancel: Optional token polled before each worktree.

        Returns:
            SyncReport with one result per processed worktree, in registry order.
        """
        report = SyncReport(timestamp=datetime.now())
        self.fetch(report)

        worktrees = self.registry.list()
        workers = self._workers(len(worktrees))

        if workers == 1:
            for worktree in worktrees:
                if is_cancelled(cancel):
                    logger.info("Sync cancelled")
                    report.cancelled = True
                    break
                report.results.append(self.sync_worktree(worktree))
            return report

        report.results = self._sync_parallel(worktrees, workers, cancel, report)
        return report

    def _sync_parallel(
        self,
        worktrees: List[Worktree],
        workers: int,
        cancel: Optional[CancellationToken],
        report: SyncReport,
    ) -> List[WorktreeSyncResult]:
        def run(worktree: Worktree) -> Optional[WorktreeSyncResult]:
            if is_cancelled(cancel):
                return None
            return self.sync_worktree(worktree)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(run, worktrees))

        completed = [result for result in results if result is not None]
        if len(completed) < len(results):
            logger.info("Sync cancelled")
            report.cancelled = True
        return completed
