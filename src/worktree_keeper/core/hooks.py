"""
Per-branch, per-worktree hook installation.

Hook scripts and their version are committed on each branch as a manifest
plus script files. The installer reads them from the commit checked out in
a worktree and installs them into that worktree's private hooks directory
(``<admin_dir>/hooks``), never into the bare repository's shared hooks.
A marker file records which version is installed, so reconciling an
up-to-date worktree writes nothing.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from worktree_keeper.config import HooksConfig
from worktree_keeper.core.formats import (
    parse_hook_manifest,
    parse_hook_marker,
    render_hook_marker,
)
from worktree_keeper.core.vcs import VcsPort
from worktree_keeper.exceptions import FormatError
from worktree_keeper.models.hooks import (
    HookMarker,
    HookScript,
    HookSet,
    InstalledVersion,
)
from worktree_keeper.models.worktree_info import Worktree
from worktree_keeper.utils.io import atomic_write_text

logger = logging.getLogger(__name__)

HOOK_PERMS = 0o755


class HookScopeError(ValueError):
    """Raised when a hooks directory escapes the worktree's admin directory."""


class HookInstaller:
    """Reconciles a worktree's installed hooks with its branch's hook set."""

    def __init__(self, vcs: VcsPort, config: Optional[HooksConfig] = None):
        self.vcs = vcs
        self.config = config or HooksConfig()

    def hooks_dir(self, worktree: Worktree) -> Path:
        """
        Resolve the hooks directory for a worktree.

        Raises:
            HookScopeError: If the directory would fall outside the
                worktree's own admin directory.
        """
        worktrees_dir = (Path(self.vcs.repo_path) / "worktrees").resolve()
        if worktree.admin_dir.resolve().parent != worktrees_dir:
            raise HookScopeError(
                f"Refusing to install hooks for {worktree.id}: "
                f"{worktree.admin_dir} is not an admin directory of {self.vcs.repo_path}"
            )
        return worktree.hooks_dir

    def marker_path(self, worktree: Worktree) -> Path:
        return self.hooks_dir(worktree) / self.config.marker_filename

    def _revision(self, worktree: Worktree) -> Optional[str]:
        if worktree.head_commit and set(worktree.head_commit) != {"0"}:
            return worktree.head_commit
        if worktree.branch:
            return f"refs/heads/{worktree.branch}"
        return None

    def read_hook_set(self, worktree: Worktree) -> Optional[HookSet]:
        """
        Read the hook set declared by the commit checked out in a worktree.

        A branch without a manifest, with a manifest that does not parse, or
        whose manifest names a script that is not committed declares no
        usable hooks; that is not an error. Failing to talk to git is.

        Returns:
            The HookSet, or None when the branch declares no usable hooks.

        Raises:
            VcsError: If git fails while reading the branch's tree.
        """
        revision = self._revision(worktree)
        if revision is None:
            return None

        text = self.vcs.read_blob(revision, self.config.manifest_path)
        if text is None:
            return None

        try:
            manifest = parse_hook_manifest(text)
        except FormatError as e:
            logger.warning(f"Ignoring unreadable hook manifest on {worktree.display_branch}: {e}")
            return None

        scripts = []
        for name in manifest.hooks:
            script_path = f"{self.config.scripts_dir.rstrip('/')}/{name}"
            content = self.vcs.read_blob(revision, script_path)
            if content is None:
                logger.warning(
                    f"Hook manifest on {worktree.display_branch} declares "
                    f"missing script {script_path}"
                )
                return None
            scripts.append(HookScript(name=name, content=content))

        return HookSet(
            branch=worktree.display_branch,
            version=manifest.version,
            scripts=scripts,
        )

    def read_marker(self, worktree: Worktree) -> Optional[HookMarker]:
        """Read the installed-version marker, None if absent or unreadable."""
        path = self.marker_path(worktree)
        try:
            return parse_hook_marker(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, FormatError) as e:
            logger.debug(f"Unreadable hook marker {path}: {e}")
            return None

    def _is_current(
        self,
        worktree: Worktree,
        hook_set: Optional[HookSet],
        marker: Optional[HookMarker],
    ) -> bool:
        hooks_dir = self.hooks_dir(worktree)

        if hook_set is None:
            return marker is None and not self.marker_path(worktree).exists()

        if marker is None or marker.version != hook_set.version:
            return False
        if sorted(marker.hooks) != sorted(hook_set.hook_names):
            return False
        return all((hooks_dir / name).is_file() for name in hook_set.hook_names)

    def needs_reconcile(self, worktree: Worktree) -> bool:
        """Whether reconcile() would change anything for this worktree."""
        return not self._is_current(
            worktree, self.read_hook_set(worktree), self.read_marker(worktree)
        )

    def reconcile(self, worktree: Worktree) -> InstalledVersion:
        """
        Bring a worktree's installed hooks in line with its branch.

        Args:
            worktree: The worktree whose checked-out commit declares the hooks.

        Returns:
            InstalledVersion describing the resulting state.

        Raises:
            OSError: If the hooks directory cannot be written.
        """
        hooks_dir = self.hooks_dir(worktree)
        hook_set = self.read_hook_set(worktree)
        marker = self.read_marker(worktree)
        previously_installed = marker.hooks if marker else []

        if self._is_current(worktree, hook_set, marker):
            logger.debug(f"Hooks for {worktree.id} already at {marker.version if marker else 'none'}")
            return InstalledVersion(
                worktree_id=worktree.id,
                version=hook_set.version if hook_set else None,
                changed=False,
                hooks=hook_set.hook_names if hook_set else [],
            )

        if hook_set is None:
            removed = self._remove_hooks(hooks_dir, previously_installed)
            self.marker_path(worktree).unlink(missing_ok=True)
            logger.info(f"Removed hooks from {worktree.id}: branch declares none")
            return InstalledVersion(
                worktree_id=worktree.id,
                version=None,
                changed=True,
                removed=removed,
            )

        hooks_dir.mkdir(parents=True, exist_ok=True)
        for script in hook_set.scripts:
            atomic_write_text(hooks_dir / script.name, script.content, perms=HOOK_PERMS)

        stale = [name for name in previously_installed if name not in hook_set.hook_names]
        removed = self._remove_hooks(hooks_dir, stale)

        new_marker = HookMarker(
            installed_by=self.config.installed_by,
            installed_at=datetime.now().astimezone(),
            source_branch=hook_set.branch,
            version=hook_set.version,
            hooks=hook_set.hook_names,
        )
        atomic_write_text(self.marker_path(worktree), render_hook_marker(new_marker), perms=0o644)

        previous = marker.version if marker else "none"
        logger.info(
            f"Installed hooks {hook_set.version} (was {previous}) in {worktree.id}: "
            f"{', '.join(hook_set.hook_names) or 'no scripts'}"
        )
        return InstalledVersion(
            worktree_id=worktree.id,
            version=hook_set.version,
            changed=True,
            hooks=hook_set.hook_names,
            removed=removed,
        )

    def _remove_hooks(self, hooks_dir: Path, names: list[str]) -> list[str]:
        removed = []
        for name in names:
            if name == self.config.marker_filename:
                continue
            path = hooks_dir / name
            if path.is_file():
                path.unlink()
                removed.append(name)
        return removed
