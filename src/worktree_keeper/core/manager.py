"""
Workspace-level facade over the worktree-keeper components.

WorkspaceManager wires the locator, git port, registry, hook installer,
repair engine, creator, synchronizer and context switcher for one
workspace, and exposes the operations the CLI calls. It also builds new
workspaces, from a remote (setup) or from an existing clone (migrate).
"""

import logging
import shutil
from pathlib import Path
from typing import List, Optional, Union

from worktree_keeper.config import Config
from worktree_keeper.core.context import ContextSwitcher
from worktree_keeper.core.creator import WorktreeCreator
from worktree_keeper.core.hooks import HookInstaller
from worktree_keeper.core.locator import RepositoryLocator
from worktree_keeper.core.registry import WorktreeRegistry
from worktree_keeper.core.repair import RepairEngine
from worktree_keeper.core.sync import Synchronizer
from worktree_keeper.core.vcs import GitVcs, VcsPort
from worktree_keeper.exceptions import (
    BaseBranchNotFoundError,
    DivergenceUnrepairableError,
    NotFoundError,
    PathExistsError,
    TimeoutError,
    VcsError,
    WorktreeKeeperError,
)
from worktree_keeper.models.hooks import InstalledVersion
from worktree_keeper.models.maintenance import RepairReport, RepairResult, SyncReport
from worktree_keeper.models.worktree_info import (
    BareRepository,
    WorkspaceSetupResult,
    Worktree,
    WorktreeCreateResult,
)
from worktree_keeper.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class WorkspaceManager:
    """
    Entry point for managing one bare repository and its worktrees.

    Every component receives the same explicit BareRepository; nothing is
    discovered from the current directory after construction.
    """

    def __init__(
        self,
        repository: BareRepository,
        vcs: VcsPort,
        config: Optional[Config] = None,
    ):
        self.repository = repository
        self.vcs = vcs
        self.config = config or Config()

        remote = self.config.workspace.remote
        self.registry = WorktreeRegistry(repository, vcs, self.config.workspace)
        self.hook_installer = HookInstaller(vcs, self.config.hooks)
        self.repair_engine = RepairEngine(
            self.registry, self.hook_installer, self.config.repair, remote=remote
        )
        self.creator = WorktreeCreator(self.repair_engine, remote=remote)
        self.synchronizer = Synchronizer(
            self.registry, self.config.sync, remote=remote, hook_installer=self.hook_installer
        )
        self.context = ContextSwitcher(self.registry)

    @classmethod
    def from_workspace(
        cls,
        workspace: Union[str, Path],
        config: Optional[Config] = None,
    ) -> "WorkspaceManager":
        """
        Locate the workspace's bare repository and build a manager for it.

        Args:
            workspace: Directory holding the bare repository and worktrees.
            config: Optional configuration, defaults otherwise.

        Raises:
            NotFoundError: If no bare repository is found.
            AmbiguousRepositoryError: If several are found.
        """
        config = config or Config()
        locator = RepositoryLocator(suffix=config.workspace.bare_suffix)
        repository = locator.locate(workspace)
        vcs = GitVcs(repository.path, timeout=config.workspace.command_timeout)
        return cls(repository, vcs, config)

    @classmethod
    def setup(
        cls,
        url: str,
        workspace: Union[str, Path],
        base: Optional[str] = None,
        name: Optional[str] = None,
        config: Optional[Config] = None,
    ) -> WorkspaceSetupResult:
        """
        Build a new workspace from a remote repository.

        The remote is cloned bare into ``<workspace>/<name>.git``, the fetch
        refspec and per-worktree config are enabled, the remote is fetched,
        a ``main`` worktree is created for the base branch, and a full repair
        sweep runs over the result.

        Args:
            url: Remote URL or path to clone.
            workspace: Directory to create; must be absent or empty.
            base: Branch on the remote for the first worktree.
            name: Bare repository name, derived from the URL by default.
            config: Optional configuration, defaults otherwise.

        Returns:
            WorkspaceSetupResult describing the new workspace.

        Raises:
            PathExistsError: If the workspace holds files already.
            BaseBranchNotFoundError: If the base branch is not on the remote.
            VcsError: If cloning or fetching fails.
        """
        config = config or Config()
        base = base or config.workspace.default_base
        remote = config.workspace.remote
        target = _prepare_workspace(workspace)
        bare_path = target / f"{name or repository_name(url)}{config.workspace.bare_suffix}"

        try:
            manager = cls._clone(url, bare_path, config)
            manager.vcs.fetch(remote, timeout=config.sync.fetch_timeout)

            if not manager.vcs.remote_branch_exists(remote, base):
                raise BaseBranchNotFoundError(f"{remote}/{base}", bare_path)

            created = manager.create(base, path=target / "main")
        except WorktreeKeeperError:
            logger.info(f"Setup failed, removing {target}")
            shutil.rmtree(target, ignore_errors=True)
            raise

        return WorkspaceSetupResult(
            workspace=target,
            repository=manager.repository,
            source=url,
            worktrees=[created.worktree],
            repair=manager.repair_engine.sweep(),
        )

    @classmethod
    def migrate(
        cls,
        source: Union[str, Path],
        workspace: Optional[Union[str, Path]] = None,
        force: bool = False,
        config: Optional[Config] = None,
    ) -> WorkspaceSetupResult:
        """
        Convert an existing clone into a bare repository plus worktrees.

        The clone itself is left untouched. Its current branch becomes the
        ``main`` worktree; ``feature/``, ``hotfix/`` and ``release/`` branches
        land at their branch path and any other branch under ``branches/``.
        The new bare repository's remote points wherever the clone's did.

        Args:
            source: Existing repository with a working tree.
            workspace: Directory to create, ``<source>-worktree`` by default.
            force: Migrate even with uncommitted changes (they are not carried over).
            config: Optional configuration, defaults otherwise.

        Returns:
            WorkspaceSetupResult describing the new workspace.

        Raises:
            NotFoundError: If source is not a repository with a working tree.
            VcsError: If source has uncommitted changes and force is not set.
            PathExistsError: If the workspace holds files already.
        """
        config = config or Config()
        remote = config.workspace.remote
        source_path = Path(source).expanduser().resolve()

        if not (source_path / ".git").exists():
            raise NotFoundError("Not a repository with a working tree", repository=source_path)

        source_vcs = GitVcs(source_path, timeout=config.workspace.command_timeout)
        if not force and source_vcs.has_local_changes(source_path):
            raise VcsError(
                "Repository has uncommitted changes; commit or stash them first",
                repository=source_path,
            )

        current = source_vcs.current_branch(source_path)
        branches = source_vcs.local_branches()
        remote_url = source_vcs.remote_url(remote)

        target = _prepare_workspace(workspace or source_path.parent / f"{source_path.name}-worktree")
        bare_path = target / f"{source_path.name}{config.workspace.bare_suffix}"

        try:
            manager = cls._clone(str(source_path), bare_path, config)
            if remote_url:
                manager.vcs.set_config(f"remote.{remote}.url", remote_url)

            fetch_error = None
            try:
                manager.vcs.fetch(remote, timeout=config.sync.fetch_timeout)
            except (VcsError, TimeoutError) as e:
                logger.warning(f"Fetch from '{remote}' failed, branches get no upstream: {e}")
                fetch_error = str(e)

            worktrees = []
            if current:
                worktrees.append(manager.create(current, path=target / "main").worktree)
            for branch in branches:
                if branch == current:
                    continue
                worktrees.append(
                    manager.create(branch, path=target / _migrated_path(branch)).worktree
                )
        except WorktreeKeeperError:
            logger.info(f"Migration failed, removing {target}")
            shutil.rmtree(target, ignore_errors=True)
            raise

        logger.info(f"Migrated {source_path} into {target} with {len(worktrees)} worktree(s)")
        return WorkspaceSetupResult(
            workspace=target,
            repository=manager.repository,
            source=str(source_path),
            worktrees=worktrees,
            fetch_error=fetch_error,
            repair=manager.repair_engine.sweep(),
        )

    @classmethod
    def _clone(cls, url: str, bare_path: Path, config: Config) -> "WorkspaceManager":
        vcs = GitVcs.clone_bare(
            url,
            bare_path,
            remote=config.workspace.remote,
            timeout=config.sync.fetch_timeout,
        )
        vcs.timeout = config.workspace.command_timeout

        manager = cls(BareRepository(path=bare_path), vcs, config)
        # A bare clone has no fetch refspec and no per-worktree config yet
        result = manager.repair_engine.repair_repository()
        if not result.is_clean:
            raise DivergenceUnrepairableError(str(bare_path), result.failure_messages())
        return manager

    def create(
        self,
        branch: str,
        base: Optional[str] = None,
        issue: Optional[Union[int, str]] = None,
        path: Optional[Path] = None,
    ) -> WorktreeCreateResult:
        """Create a worktree for branch; see WorktreeCreator.create."""
        return self.creator.create(
            branch,
            base=base or self.config.workspace.default_base,
            issue=issue,
            path=path,
        )

    def repair(
        self,
        worktree_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Union[RepairResult, RepairReport]:
        """
        Repair one worktree, or sweep all of them.

        Returns:
            RepairResult for a targeted repair, RepairReport for a sweep.
        """
        if worktree_id is not None:
            return self.repair_engine.repair_worktree(self.select(worktree_id))
        return self.repair_engine.sweep(cancel)

    def sync(self, cancel: Optional[CancellationToken] = None) -> SyncReport:
        return self.synchronizer.sync_all(cancel)

    def list(self) -> List[Worktree]:
        return self.context.list()

    def select(self, identifier: str) -> Worktree:
        return self.context.select(identifier)

    def remove(self, worktree_id: str, force: bool = False) -> Worktree:
        """
        Remove a worktree and its registry entry.

        Args:
            worktree_id: Worktree id, branch, name, or path.
            force: Remove even with uncommitted changes.

        Returns:
            The removed Worktree.

        Raises:
            NotFoundError: If no worktree matches.
            VcsError: If the worktree has local changes and force is not set.
        """
        worktree = self.select(worktree_id)

        if not force and worktree.exists and self.vcs.has_local_changes(worktree.path):
            raise VcsError(
                "Worktree has uncommitted changes; use force to remove it anyway",
                repository=self.repository.path,
                worktree=worktree.id,
            )

        self.registry.deregister(worktree)
        return worktree

    def find_containing(self, path: Union[str, Path]) -> Worktree:
        """
        Find the worktree a path belongs to.

        Raises:
            NotFoundError: If the path is not inside a registered worktree.
        """
        target = Path(path).expanduser().resolve()
        for worktree in self.registry.list():
            if target == worktree.path or worktree.path in target.parents:
                return worktree
        raise NotFoundError(f"Not inside a registered worktree: {target}")

    def reconcile_hooks(
        self,
        worktree_id: Optional[str] = None,
        path: Optional[Union[str, Path]] = None,
    ) -> InstalledVersion:
        """
        Install the hooks declared by a worktree's checked-out branch.

        Meant to run from a post-checkout trigger inside the worktree, so a
        path anywhere inside the worktree identifies it.

        Raises:
            NotFoundError: If the worktree cannot be identified.
        """
        if worktree_id is not None:
            worktree = self.select(worktree_id)
        else:
            worktree = self.find_containing(path or Path.cwd())
        return self.hook_installer.reconcile(worktree)


_MIGRATED_PREFIXES = ("feature/", "hotfix/", "release/")


def repository_name(url: str) -> str:
    """Derive a repository name from a clone URL or path."""
    name = url.rstrip("/").replace(":", "/").rsplit("/", 1)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name or "repository"


def _migrated_path(branch: str) -> str:
    if branch.startswith(_MIGRATED_PREFIXES):
        return branch
    return f"branches/{branch}"


def _prepare_workspace(workspace: Union[str, Path]) -> Path:
    target = Path(workspace).expanduser().resolve()
    if target.exists() and (not target.is_dir() or any(target.iterdir())):
        raise PathExistsError(target)
    target.mkdir(parents=True, exist_ok=True)
    return target
