"""
Health checks and repair for registered worktrees.

This module provides functionality to:
- Detect divergences between a worktree's on-disk metadata and the registry
- Repair them with full overwrites from the authoritative source
- Sweep every registered worktree, collecting per-worktree results

Every fix rewrites its target completely from the registry (or the
branch, for hooks), so running a repair twice leaves the same state as
running it once.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import List, Optional, Union

from worktree_keeper.config import RepairConfig
from worktree_keeper.core.formats import (
    parse_link_file,
    read_git_config,
    render_link_file,
    worktree_config_problems,
    write_worktree_config,
)
from worktree_keeper.core.hooks import HookInstaller, HookScopeError
from worktree_keeper.core.registry import WorktreeRegistry
from worktree_keeper.exceptions import (
    FormatError,
    LockTimeoutError,
    VcsError,
    WorktreeKeeperError,
)
from worktree_keeper.models.maintenance import (
    Divergence,
    DivergenceKind,
    RepairReport,
    RepairResult,
    UnrepairedDivergence,
)
from worktree_keeper.models.worktree_info import Worktree
from worktree_keeper.utils.cancellation import CancellationToken, is_cancelled
from worktree_keeper.utils.io import atomic_write_text

logger = logging.getLogger(__name__)

# Hooks depend on a correct link file and config, so they are fixed last
_FIX_ORDER = {
    DivergenceKind.STALE_ENTRY: 0,
    DivergenceKind.LINK_MISSING: 1,
    DivergenceKind.LINK_MALFORMED: 1,
    DivergenceKind.CONFIG_MISSING: 2,
    DivergenceKind.CONFIG_MALFORMED: 2,
    DivergenceKind.HOOKS_OUTDATED: 3,
    DivergenceKind.WORKTREE_CONFIG_DISABLED: 4,
    DivergenceKind.FETCH_REFSPEC_MISSING: 5,
    DivergenceKind.CHECK_FAILED: 6,
}

_FIX_ERRORS = (OSError, VcsError, LockTimeoutError, HookScopeError)


class RepairEngine:
    """Detects and repairs metadata drift for worktrees of one bare repository."""

    def __init__(
        self,
        registry: WorktreeRegistry,
        hook_installer: HookInstaller,
        config: Optional[RepairConfig] = None,
        remote: str = "origin",
    ):
        self.registry = registry
        self.hook_installer = hook_installer
        self.config = config or RepairConfig()
        self.remote = remote

    @property
    def vcs(self):
        return self.registry.vcs

    @property
    def _repository_target(self) -> str:
        return str(self.registry.repository.path)

    # Detection

    def check(self, worktree: Worktree) -> List[Divergence]:
        """
        Detect divergences for a single worktree. Read-only.

        Args:
            worktree: Registry entry to check.

        Returns:
            Divergences in fix order; empty when the worktree is healthy.
        """
        if not worktree.exists:
            return [Divergence(
                kind=DivergenceKind.STALE_ENTRY,
                target=worktree.id,
                detail=f"directory {worktree.path} no longer exists",
            )]

        divergences = []

        link = self._check_link(worktree)
        if link is not None:
            divergences.append(link)

        config = self._check_config(worktree)
        if config is not None:
            divergences.append(config)

        hooks = self._check_hooks(worktree)
        if hooks is not None:
            divergences.append(hooks)

        return divergences

    def _check_link(self, worktree: Worktree) -> Optional[Divergence]:
        link_file = worktree.link_file

        if not link_file.is_file():
            return Divergence(
                kind=DivergenceKind.LINK_MISSING,
                target=worktree.id,
                detail=f"{link_file} is missing",
            )

        try:
            pointer = parse_link_file(link_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, FormatError) as e:
            return Divergence(
                kind=DivergenceKind.LINK_MALFORMED,
                target=worktree.id,
                detail=f"{link_file}: {e}",
            )

        if not pointer.is_absolute():
            pointer = worktree.path / pointer
        if pointer.resolve() != worktree.admin_dir.resolve():
            return Divergence(
                kind=DivergenceKind.LINK_MALFORMED,
                target=worktree.id,
                detail=f"{link_file} points at {pointer}, expected {worktree.admin_dir}",
            )

        return None

    def _check_config(self, worktree: Worktree) -> Optional[Divergence]:
        config_file = worktree.config_file

        if not config_file.is_file():
            return Divergence(
                kind=DivergenceKind.CONFIG_MISSING,
                target=worktree.id,
                detail=f"{config_file} is missing",
            )

        try:
            parsed = read_git_config(config_file)
        except FormatError as e:
            return Divergence(
                kind=DivergenceKind.CONFIG_MALFORMED,
                target=worktree.id,
                detail=f"{config_file}: {e}",
            )

        problems = worktree_config_problems(parsed, worktree.hooks_dir)
        if problems:
            return Divergence(
                kind=DivergenceKind.CONFIG_MALFORMED,
                target=worktree.id,
                detail="; ".join(problems),
            )

        return None

    def _check_hooks(self, worktree: Worktree) -> Optional[Divergence]:
        try:
            if not self.hook_installer.needs_reconcile(worktree):
                return None
            detail = "installed hooks differ from the branch's hook set"
        except (VcsError, HookScopeError) as e:
            detail = f"could not read hook state: {e}"

        return Divergence(
            kind=DivergenceKind.HOOKS_OUTDATED,
            target=worktree.id,
            detail=detail,
        )

    def check_repository(self) -> List[Divergence]:
        """Detect repository-level divergences that affect every worktree."""
        divergences = []

        enabled = (self.vcs.get_config("extensions.worktreeConfig") or "").lower()
        if enabled not in ("true", "yes", "on", "1"):
            divergences.append(Divergence(
                kind=DivergenceKind.WORKTREE_CONFIG_DISABLED,
                target=self._repository_target,
                detail="extensions.worktreeConfig is not enabled; config.worktree files are ignored",
            ))

        if self.vcs.remote_url(self.remote) is not None:
            if self.vcs.get_config(f"remote.{self.remote}.fetch") is None:
                divergences.append(Divergence(
                    kind=DivergenceKind.FETCH_REFSPEC_MISSING,
                    target=self._repository_target,
                    detail=f"remote '{self.remote}' has no fetch refspec",
                ))

        return divergences

    # Repair

    def repair(self, worktree: Worktree, divergences: List[Divergence]) -> RepairResult:
        """
        Fix the given divergences for a worktree.

        A failing fix is recorded as unrepaired and the remaining fixes still
        run; nothing is raised.

        Args:
            worktree: Registry entry the divergences belong to.
            divergences: Output of check() for that worktree.

        Returns:
            RepairResult listing what was fixed and what was not.
        """
        result = RepairResult(target=worktree.id, found=list(divergences))

        for divergence in sorted(divergences, key=lambda d: _FIX_ORDER[DivergenceKind(d.kind)]):
            kind = DivergenceKind(divergence.kind)
            try:
                if kind == DivergenceKind.STALE_ENTRY:
                    self._prune(worktree)
                    result.pruned = True
                elif kind in (DivergenceKind.LINK_MISSING, DivergenceKind.LINK_MALFORMED):
                    self._rewrite_link(worktree)
                elif kind in (DivergenceKind.CONFIG_MISSING, DivergenceKind.CONFIG_MALFORMED):
                    self._rewrite_config(worktree)
                elif kind == DivergenceKind.HOOKS_OUTDATED:
                    self.hook_installer.reconcile(worktree)
                else:
                    self._repair_repository_divergence(kind)
            except _FIX_ERRORS as e:
                logger.warning(f"Could not repair {kind.value} for {divergence.target}: {e}")
                result.unrepaired.append(UnrepairedDivergence(divergence=divergence, error=str(e)))
                continue

            logger.info(f"Repaired {kind.value} for {divergence.target}")
            result.repaired.append(divergence)

        return result

    def _prune(self, worktree: Worktree) -> None:
        if worktree.is_locked:
            raise VcsError(
                "entry is locked; run 'git worktree unlock' before it can be pruned",
                worktree=worktree.id,
            )
        self.registry.deregister(worktree)

    def _rewrite_link(self, worktree: Worktree) -> None:
        atomic_write_text(worktree.link_file, render_link_file(worktree.admin_dir), perms=0o644)

    def _rewrite_config(self, worktree: Worktree) -> None:
        config_file = worktree.config_file
        if config_file.is_file():
            try:
                read_git_config(config_file)
            except FormatError:
                logger.info(f"Replacing unparseable {config_file}")
                config_file.unlink()

        write_worktree_config(config_file, worktree.hooks_dir)

    def _repair_repository_divergence(self, kind: DivergenceKind) -> None:
        if kind == DivergenceKind.WORKTREE_CONFIG_DISABLED:
            self.vcs.set_config("extensions.worktreeConfig", "true")
        elif kind == DivergenceKind.FETCH_REFSPEC_MISSING:
            self.vcs.set_config(
                f"remote.{self.remote}.fetch",
                f"+refs/heads/*:refs/remotes/{self.remote}/*",
            )

    def repair_repository(self) -> RepairResult:
        """Check and fix repository-level divergences."""
        try:
            found = self.check_repository()
        except (OSError, WorktreeKeeperError) as e:
            logger.warning(f"Could not check repository settings: {e}")
            return _check_failed(self._repository_target, str(e))

        result = RepairResult(target=self._repository_target, found=found)

        for divergence in found:
            kind = DivergenceKind(divergence.kind)
            try:
                self._repair_repository_divergence(kind)
            except _FIX_ERRORS as e:
                logger.warning(f"Could not repair {kind.value}: {e}")
                result.unrepaired.append(UnrepairedDivergence(divergence=divergence, error=str(e)))
                continue
            logger.info(f"Repaired {kind.value} for {divergence.target}")
            result.repaired.append(divergence)

        return result

    # Modes

    def repair_worktree(self, worktree: Union[Worktree, str]) -> RepairResult:
        """
        Targeted mode: check and repair one worktree.

        Repository-level settings are fixed afterwards (when enabled) so the
        worktree's config.worktree is actually honored.

        Args:
            worktree: Worktree or worktree id.

        Returns:
            Combined RepairResult for the worktree.

        Raises:
            NotFoundError: If a worktree id is not registered.
        """
        if isinstance(worktree, str):
            worktree = self.registry.get(worktree)

        divergences, error = self._safe_check(worktree)
        if error is not None:
            result = _check_failed(worktree.id, error)
        else:
            result = self.repair(worktree, divergences)

        if self.config.fix_repository and not result.pruned:
            repository = self.repair_repository()
            result.found.extend(repository.found)
            result.repaired.extend(repository.repaired)
            result.unrepaired.extend(repository.unrepaired)

        return result

    def _safe_check(self, worktree: Worktree) -> tuple[List[Divergence], Optional[str]]:
        try:
            return self.check(worktree), None
        except (OSError, WorktreeKeeperError) as e:
            return [], str(e)

    def sweep(self, cancel: Optional[CancellationToken] = None) -> RepairReport:
        """
        Full-sweep mode: check and repair every registered worktree.

        Checks are read-only and may run in a thread pool; repairs run one
        worktree at a time in registry order. Cancellation is honored
        between worktrees only.

        Args:
            cancel: Optional token polled before each worktree.

        Returns:
            RepairReport with a result per processed worktree.
        """
        report = RepairReport(timestamp=datetime.now())
        worktrees = self.registry.list()

        checks = None
        if self.config.parallel_checks and len(worktrees) > 1:
            workers = min(len(worktrees), os.cpu_count() or 1)
            with ThreadPoolExecutor(max_workers=workers) as executor:
                checks = list(executor.map(self._safe_check, worktrees))

        for index, worktree in enumerate(worktrees):
            if is_cancelled(cancel):
                logger.info("Repair sweep cancelled")
                report.cancelled = True
                break

            divergences, error = checks[index] if checks is not None else self._safe_check(worktree)

            if error is not None:
                logger.warning(f"Could not check {worktree.id}: {error}")
                report.results.append(_check_failed(worktree.id, error))
                continue

            report.results.append(self.repair(worktree, divergences))

        if self.config.fix_repository and not report.cancelled:
            report.repository = self.repair_repository()

        return report


def _check_failed(target: str, error: str) -> RepairResult:
    divergence = Divergence(
        kind=DivergenceKind.CHECK_FAILED,
        target=target,
        detail="health check could not run",
    )
    return RepairResult(
        target=target,
        found=[divergence],
        unrepaired=[UnrepairedDivergence(divergence=divergence, error=error)],
    )


def describe_result(result: RepairResult) -> List[str]:
    """One line per divergence, for logs and CLI output."""
    lines = [f"fixed {d.kind}: {d.detail}" for d in result.repaired]
    lines.extend(f"FAILED {item.divergence.kind}: {item.error}" for item in result.unrepaired)
    return lines
