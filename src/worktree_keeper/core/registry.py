"""The authoritative list of worktrees registered with the bare repository."""

from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from worktree_keeper.config import WorkspaceConfig
from worktree_keeper.core.vcs import VcsPort, WorktreeRecord
from worktree_keeper.exceptions import NotFoundError, TimeoutError, VcsError
from worktree_keeper.models.worktree_info import BareRepository, Worktree
from worktree_keeper.utils.io import exclusive_file_lock

logger = logging.getLogger(__name__)


def _normalize(path: Path) -> Path:
    return Path(path).expanduser().resolve()


class WorktreeRegistry:
    """
    Reads and mutates the bare repository's worktree metadata.

    The registry never scans worktree directories to discover worktrees:
    entries come from ``git worktree list`` and the admin directories'
    ``gitdir`` back-pointers. Mutations run under an exclusive advisory
    lock file inside the bare repository.
    """

    def __init__(
        self,
        repository: BareRepository,
        vcs: VcsPort,
        config: Optional[WorkspaceConfig] = None,
    ):
        self.repository = repository
        self.vcs = vcs
        self.config = config or WorkspaceConfig()

    @property
    def lock_path(self) -> Path:
        return self.repository.path / self.config.lock_filename

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold the registry lock for the duration of a mutation."""
        with exclusive_file_lock(
            self.lock_path,
            attempts=self.config.lock_attempts,
            backoff=self.config.lock_backoff,
        ):
            yield

    def _admin_dir_names(self) -> set[str]:
        worktrees_dir = self.repository.worktrees_dir
        if not worktrees_dir.is_dir():
            return set()
        return {child.name for child in worktrees_dir.iterdir() if child.is_dir()}

    def _admin_dirs(self) -> dict[Path, Path]:
        """Map each registered worktree path to its admin directory."""
        mapping: dict[Path, Path] = {}

        for name in sorted(self._admin_dir_names()):
            admin_dir = self.repository.worktrees_dir / name
            gitdir_file = admin_dir / "gitdir"
            try:
                pointer = Path(gitdir_file.read_text(encoding="utf-8").strip())
            except OSError:
                logger.debug(f"No gitdir back-pointer in {admin_dir}")
                continue

            if not pointer.is_absolute():
                pointer = admin_dir / pointer
            mapping[_normalize(pointer.parent)] = admin_dir

        return mapping

    def _to_worktree(self, record: WorktreeRecord, admin_dirs: dict[Path, Path]) -> Worktree:
        path = _normalize(record.path)
        admin_dir = admin_dirs.get(path, self.repository.worktrees_dir / path.name)
        branch = None if record.is_detached else record.branch

        upstream = None
        if branch:
            try:
                upstream = self.vcs.get_upstream(branch)
            except VcsError as e:
                logger.warning(f"Could not read upstream of '{branch}': {e}")

        return Worktree(
            id=self.repository.worktree_id_for(path),
            path=path,
            admin_dir=admin_dir,
            branch=branch,
            head_commit=record.head,
            is_detached=record.is_detached or branch is None,
            is_locked=record.is_locked,
            upstream=upstream,
        )

    def list(self) -> List[Worktree]:
        """
        List all linked worktrees in registry order.

        Returns:
            Worktree objects for every registered entry except the bare
            repository itself.
        """
        records = self.vcs.list_worktrees()
        admin_dirs = self._admin_dirs()
        return [
            self._to_worktree(record, admin_dirs)
            for record in records
            if not record.is_bare
        ]

    def get(self, worktree_id: str) -> Worktree:
        """
        Get a worktree by id.

        Raises:
            NotFoundError: If no registered worktree has that id.
        """
        for worktree in self.list():
            if worktree.id == worktree_id:
                return worktree
        raise NotFoundError("Worktree not registered", worktree=worktree_id)

    def find_by_path(self, path: Path) -> Optional[Worktree]:
        target = _normalize(path)
        for worktree in self.list():
            if worktree.path == target:
                return worktree
        return None

    def find_by_branch(self, branch: str) -> Optional[Worktree]:
        for worktree in self.list():
            if worktree.branch == branch:
                return worktree
        return None

    def register(
        self,
        path: Path,
        branch: str,
        *,
        create_branch: bool = False,
        base: Optional[str] = None,
    ) -> Worktree:
        """
        Register a worktree at path for branch.

        Either the registry reflects the new entry afterwards or it reflects
        the prior state: a failed add is rolled back before the error is
        re-raised.

        Args:
            path: Absolute path for the new worktree.
            branch: Branch to check out.
            create_branch: Create branch from base in the same step.
            base: Base revision for a new branch.

        Returns:
            The registered Worktree.

        Raises:
            LockTimeoutError: If the registry lock is held elsewhere.
            VcsError: If git refuses the registration.
            TimeoutError: If git does not finish in time.
        """
        path = _normalize(path)

        with self.lock():
            before = self._admin_dir_names()
            path_existed = path.exists()

            try:
                self.vcs.add_worktree(
                    path, branch, create_branch=create_branch, base=base
                )
            except (VcsError, TimeoutError):
                self._rollback(path, before, path_existed, branch if create_branch else None)
                raise

            logger.info(f"Registered worktree {path} for branch '{branch}'")

        worktree = self.find_by_path(path)
        if worktree is None:
            raise VcsError(
                f"Worktree added but not found in registry: {path}",
                repository=self.repository.path,
            )
        return worktree

    def _rollback(
        self,
        path: Path,
        admin_before: set[str],
        path_existed: bool,
        created_branch: Optional[str],
    ) -> None:
        """Undo whatever a failed add left behind. Caller holds the lock."""
        for name in sorted(self._admin_dir_names() - admin_before):
            admin_dir = self.repository.worktrees_dir / name
            logger.warning(f"Rolling back partial registration {admin_dir}")
            try:
                self.vcs.remove_worktree(path)
            except (VcsError, TimeoutError) as e:
                logger.warning(f"git could not remove partial worktree, deleting metadata: {e}")
            if admin_dir.exists():
                shutil.rmtree(admin_dir, ignore_errors=True)

        if not path_existed and path.exists():
            shutil.rmtree(path, ignore_errors=True)

        if created_branch:
            try:
                if self.vcs.branch_exists(created_branch):
                    self.vcs.delete_branch(created_branch)
            except (VcsError, TimeoutError) as e:
                logger.warning(f"Could not delete partially created branch '{created_branch}': {e}")

    def deregister(self, worktree: Worktree) -> None:
        """
        Remove a worktree's registry entry (and its directory, if present).

        Raises:
            LockTimeoutError: If the registry lock is held elsewhere.
            VcsError: If git refuses the removal or the entry survives it.
        """
        with self.lock():
            self.vcs.remove_worktree(worktree.path)
            if worktree.admin_dir.exists():
                raise VcsError(
                    f"Registry entry survived removal: {worktree.admin_dir}",
                    repository=self.repository.path,
                    worktree=worktree.id,
                )
            logger.info(f"Deregistered worktree {worktree.id}")
