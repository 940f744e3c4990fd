"""Tests for WorktreeRegistry."""

import shutil
from pathlib import Path

import pytest

from worktree_keeper.config import WorkspaceConfig
from worktree_keeper.core.registry import WorktreeRegistry
from worktree_keeper.core.vcs import WorktreeRecord, parse_worktree_porcelain
from worktree_keeper.exceptions import LockTimeoutError, NotFoundError, VcsError
from worktree_keeper.utils.io import exclusive_file_lock


class TestParseWorktreePorcelain:
    """Tests for parsing git worktree list --porcelain."""

    def test_parse_bare_and_linked(self):
        output = (
            "worktree /ws/project.git\n"
            "bare\n"
            "\n"
            "worktree /ws/main\n"
            "HEAD 1111111111111111111111111111111111111111\n"
            "branch refs/heads/main\n"
            "\n"
            "worktree /ws/detached\n"
            "HEAD 2222222222222222222222222222222222222222\n"
            "detached\n"
            "locked reason here\n"
            "prunable gitdir file points to non-existent location\n"
        )

        records = parse_worktree_porcelain(output)

        assert [r.path for r in records] == [
            Path("/ws/project.git"), Path("/ws/main"), Path("/ws/detached")
        ]
        assert records[0].is_bare
        assert records[1].branch == "main"
        assert records[2].is_detached
        assert records[2].is_locked
        assert records[2].is_prunable
        assert records[2].branch is None

    def test_parse_empty(self):
        assert parse_worktree_porcelain("") == []


class TestWorktreeRegistry:
    """Integration tests against a real bare repository."""

    def test_list_excludes_bare_entry(self, manager, main_worktree):
        worktrees = manager.registry.list()

        assert [wt.id for wt in worktrees] == ["main"]
        assert worktrees[0].admin_dir.parent == manager.repository.worktrees_dir
        assert worktrees[0].upstream == "origin/main"

    def test_nested_worktree_id(self, manager, workspace):
        manager.create("feature/x")

        worktree = manager.registry.get("feature/x")

        assert worktree.path == workspace / "feature" / "x"
        assert worktree.branch == "feature/x"
        assert worktree.admin_dir.is_dir()

    def test_admin_dir_comes_from_back_pointer(self, manager, workspace, bare_repo, git):
        # Two worktrees whose directory names collide get distinct admin dirs
        git(bare_repo, "branch", "a", "main")
        git(bare_repo, "branch", "b", "main")
        git(bare_repo, "worktree", "add", "-q", str(workspace / "one" / "app"), "a")
        git(bare_repo, "worktree", "add", "-q", str(workspace / "two" / "app"), "b")

        first = manager.registry.get("one/app")
        second = manager.registry.get("two/app")

        assert first.admin_dir != second.admin_dir
        assert (first.admin_dir / "gitdir").read_text().strip() == str(first.path / ".git")
        assert (second.admin_dir / "gitdir").read_text().strip() == str(second.path / ".git")

    def test_get_missing(self, manager):
        with pytest.raises(NotFoundError):
            manager.registry.get("nope")

    def test_find_by_branch_and_path(self, manager, main_worktree):
        assert manager.registry.find_by_branch("main").id == "main"
        assert manager.registry.find_by_path(main_worktree.path).id == "main"
        assert manager.registry.find_by_branch("other") is None

    def test_register_and_deregister(self, manager, workspace, bare_repo):
        registry = manager.registry

        worktree = registry.register(workspace / "new", "new", create_branch=True, base="main")

        assert worktree.id == "new"
        assert worktree.path.is_dir()
        assert (bare_repo / "worktrees").is_dir()

        registry.deregister(worktree)

        assert registry.find_by_path(workspace / "new") is None
        assert not worktree.path.exists()
        assert not worktree.admin_dir.exists()

    def test_deregister_missing_directory(self, manager, raw_worktree):
        shutil.rmtree(raw_worktree.path)

        manager.registry.deregister(raw_worktree)

        assert manager.registry.list() == []

    def test_register_failure_leaves_no_entry(self, manager, workspace, git, bare_repo):
        with pytest.raises(VcsError):
            manager.registry.register(
                workspace / "bad", "bad", create_branch=True, base="no-such-base"
            )

        assert manager.registry.list() == []
        assert not (workspace / "bad").exists()
        assert manager.vcs.branch_exists("bad") is False

    def test_lock_released_after_failure(self, manager, workspace):
        with pytest.raises(VcsError):
            manager.registry.register(
                workspace / "bad", "bad", create_branch=True, base="no-such-base"
            )

        with exclusive_file_lock(manager.registry.lock_path, attempts=1):
            pass


class TestRegistryRollback:
    """Unit tests for rollback of partial registrations."""

    @pytest.fixture
    def registry(self, fake_repository, mock_vcs):
        config = WorkspaceConfig(lock_attempts=2, lock_backoff=0)
        return WorktreeRegistry(fake_repository, mock_vcs, config)

    def test_rolls_back_partial_add(self, registry, fake_repository, mock_vcs):
        target = fake_repository.workspace / "feature-x"

        def partial_add(path, branch, **kwargs):
            (fake_repository.worktrees_dir / "feature-x").mkdir()
            path.mkdir()
            (path / "half-written").write_text("")
            raise VcsError("checkout failed")

        mock_vcs.add_worktree.side_effect = partial_add
        mock_vcs.remove_worktree.side_effect = VcsError("not a working tree")
        mock_vcs.branch_exists.return_value = True

        with pytest.raises(VcsError, match="checkout failed"):
            registry.register(target, "feature-x", create_branch=True, base="main")

        assert list(fake_repository.worktrees_dir.iterdir()) == []
        assert not target.exists()
        mock_vcs.delete_branch.assert_called_once_with("feature-x")

    def test_existing_branch_is_not_deleted(self, registry, fake_repository, mock_vcs):
        mock_vcs.add_worktree.side_effect = VcsError("checkout failed")

        with pytest.raises(VcsError):
            registry.register(fake_repository.workspace / "main", "main")

        mock_vcs.delete_branch.assert_not_called()

    def test_lock_timeout(self, registry, mock_vcs):
        with exclusive_file_lock(registry.lock_path, attempts=1):
            with pytest.raises(LockTimeoutError) as exc_info:
                registry.register(Path("/tmp/x"), "x")

        assert exc_info.value.attempts == 2
        assert exc_info.value.exit_code == 10
        mock_vcs.add_worktree.assert_not_called()

    def test_list_uses_registry_not_directory_scan(self, registry, fake_repository, mock_vcs):
        (fake_repository.workspace / "stray").mkdir()
        mock_vcs.list_worktrees.return_value = [
            WorktreeRecord(path=fake_repository.path, is_bare=True),
        ]

        assert registry.list() == []
