"""
Tests for the git port.

Tests cover:
- Parsing ``git worktree list --porcelain``
- Absent things reported as None/False rather than errors
- Translation of GitCommandError into VcsError and TimeoutError
- Failed cleanup after a failed integration
"""

import builtins
from pathlib import Path
from unittest.mock import patch

import pytest
from git import Git
from git.exc import GitCommandError

from worktree_keeper.config import IntegrationStrategy
from worktree_keeper.core.vcs import GitVcs, parse_worktree_porcelain
from worktree_keeper.exceptions import NotFoundError, TimeoutError, VcsError


PORCELAIN = """worktree /ws/project.git
bare

worktree /ws/main
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /ws/detached
HEAD 2222222222222222222222222222222222222222
detached
locked moving disks

worktree /ws/gone
HEAD 3333333333333333333333333333333333333333
branch refs/heads/feature/gone
prunable gitdir file points to non-existent location
"""


class TestParsePorcelain:
    """Tests for parse_worktree_porcelain."""

    def test_parses_all_records_in_order(self):
        records = parse_worktree_porcelain(PORCELAIN)

        assert [r.path for r in records] == [
            Path("/ws/project.git"), Path("/ws/main"), Path("/ws/detached"), Path("/ws/gone"),
        ]

    def test_record_fields(self):
        bare, main, detached, gone = parse_worktree_porcelain(PORCELAIN)

        assert bare.is_bare
        assert main.branch == "main"
        assert main.head.startswith("1111")
        assert detached.is_detached and detached.branch is None
        assert detached.is_locked
        assert gone.branch == "feature/gone"
        assert gone.is_prunable

    def test_empty_output(self):
        assert parse_worktree_porcelain("") == []

    def test_no_trailing_blank_line(self):
        records = parse_worktree_porcelain("worktree /ws/main\nHEAD abc\nbranch refs/heads/main")

        assert len(records) == 1
        assert records[0].branch == "main"


class TestGitVcs:
    """Tests for GitVcs against a real bare repository."""

    @pytest.fixture
    def vcs(self, bare_repo):
        return GitVcs(bare_repo, timeout=30)

    def test_not_a_repository(self, temp_directory):
        with pytest.raises(NotFoundError):
            GitVcs(temp_directory / "missing.git")

    def test_lists_bare_entry(self, vcs, bare_repo):
        records = vcs.list_worktrees()

        assert records[0].is_bare
        assert records[0].path == bare_repo

    def test_missing_things_are_not_errors(self, vcs):
        assert vcs.get_config("branch.main.description") is None
        assert vcs.resolve("refs/heads/nope") is None
        assert vcs.read_blob("main", "no/such/file") is None
        assert vcs.branch_exists("nope") is False
        assert vcs.remote_branch_exists("origin", "nope") is False
        assert vcs.get_upstream("nope") is None

    def test_reads_committed_blob(self, vcs):
        manifest = vcs.read_blob("main", ".githooks/manifest.toml")

        assert 'version = "1"' in manifest

    def test_remote_lookup(self, vcs, origin_repo):
        assert vcs.branch_exists("main") is True
        assert vcs.remote_branch_exists("origin", "main") is True
        assert vcs.remote_url("origin") == str(origin_repo)

    def test_local_changes(self, vcs, main_worktree):
        assert vcs.has_local_changes(main_worktree.path) is False

        (main_worktree.path / "scratch.txt").write_text("wip\n")

        assert vcs.has_local_changes(main_worktree.path) is True

    def test_commit_counts(self, vcs, main_worktree, commit):
        commit(main_worktree.path, {"notes.txt": "local\n"}, "Local work")

        assert vcs.commit_counts(main_worktree.path, "origin/main") == (0, 1)

    def test_command_failure_becomes_vcs_error(self, vcs):
        with pytest.raises(VcsError) as exc_info:
            vcs.set_upstream("main", "origin/does-not-exist")

        assert exc_info.value.repository == str(vcs.repo_path)
        assert exc_info.value.stderr

    def test_timeout_becomes_timeout_error(self, vcs):
        error = GitCommandError(
            ["git", "fetch", "origin"], -9, stderr="Process did not complete in 1s"
        )

        with patch.object(Git, "execute", side_effect=error):
            with pytest.raises(TimeoutError) as exc_info:
                vcs.fetch("origin", timeout=1)

        assert isinstance(exc_info.value, builtins.TimeoutError)
        assert exc_info.value.exit_code == 9
        assert "did not complete in 1s" in str(exc_info.value)

    def test_hooks_disabled_while_adding(self, vcs, workspace):
        with patch.object(Git, "execute", return_value="") as execute:
            vcs.add_worktree(workspace / "feature", "feature", create_branch=True, base="main")

        command = execute.call_args[0][0]
        assert "core.hooksPath=/dev/null" in command
        assert command[-4:] == ["-b", "feature", str(workspace / "feature"), "main"]

    def test_failed_abort_becomes_vcs_error(self, vcs, main_worktree):
        def run(command, *args, **kwargs):
            if command == "merge" and args == ("--abort",):
                raise GitCommandError(
                    ["git", "merge", "--abort"], 128,
                    stderr="fatal: Unable to create 'index.lock': File exists.",
                )
            if command == "merge":
                raise GitCommandError(["git", "merge"], 1, stderr="CONFLICT (content)")
            if command == "rev_parse":
                return "b" * 40
            return ""

        with patch.object(GitVcs, "_run", side_effect=run):
            with pytest.raises(VcsError) as exc_info:
                vcs.integrate(main_worktree.path, "origin/main")

        assert exc_info.value.worktree == str(main_worktree.path)
        assert "abort merge" in str(exc_info.value)
        assert "index.lock" in exc_info.value.stderr

    def test_failed_rebase_abort_becomes_vcs_error(self, vcs, main_worktree):
        state_dir = main_worktree.path / "rebase-merge"
        state_dir.mkdir()

        def run(command, *args, **kwargs):
            if command == "rebase" and args == ("--abort",):
                raise GitCommandError(["git", "rebase", "--abort"], 1, stderr="error: could not abort")
            if command == "rebase":
                raise GitCommandError(["git", "rebase"], 1, stderr="CONFLICT (content)")
            if command == "rev_parse" and args[0] == "--git-path":
                return str(state_dir)
            raise GitCommandError(["git", command], 1, stderr="")

        with patch.object(GitVcs, "_run", side_effect=run):
            with pytest.raises(VcsError, match="abort rebase"):
                vcs.integrate(main_worktree.path, "origin/main", IntegrationStrategy.REBASE)

    def test_local_branches(self, vcs, bare_repo, git):
        git(bare_repo, "branch", "feature/x", "main")

        assert vcs.local_branches() == ["feature/x", "main"]

    def test_current_branch(self, vcs, main_worktree, git):
        assert vcs.current_branch(main_worktree.path) == "main"

        git(main_worktree.path, "checkout", "-q", "--detach")

        assert vcs.current_branch(main_worktree.path) is None

    def test_clone_bare(self, origin_repo, temp_directory):
        cloned = GitVcs.clone_bare(str(origin_repo), temp_directory / "copy.git", remote="upstream")

        assert cloned.repo_path == temp_directory / "copy.git"
        assert cloned.branch_exists("main") is True
        assert cloned.remote_url("upstream") == str(origin_repo)

    def test_clone_failure_becomes_vcs_error(self, temp_directory):
        with pytest.raises(VcsError, match="Failed to clone") as exc_info:
            GitVcs.clone_bare(str(temp_directory / "missing"), temp_directory / "copy.git")

        assert exc_info.value.stderr
        assert not (temp_directory / "copy.git").exists()
