"""
Pytest configuration and shared fixtures for worktree-keeper tests.

Most integration fixtures build a real workspace: an "origin" repository
standing in for the remote, and a workspace directory holding a bare clone
of it (``project.git``) set up the way a fresh workspace is.
"""

import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import MagicMock

import pytest

from worktree_keeper.config import Config
from worktree_keeper.core.manager import WorkspaceManager
from worktree_keeper.models.worktree_info import BareRepository, Worktree

HOOK_SCRIPT = "#!/bin/sh\nexit 0\n"


def run_git(cwd: Path, *args: str) -> str:
    """Run a git command for test setup, failing loudly."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def commit_files(repo: Path, files: dict, message: str) -> str:
    """Write files into a checkout, commit them, and return the new commit."""
    for name, content in files.items():
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        if name.startswith(".githooks/") and not name.endswith(".toml"):
            path.chmod(0o755)

    run_git(repo, "add", "-A")
    run_git(repo, "commit", "-q", "-m", message)
    return run_git(repo, "rev-parse", "HEAD")


def hook_files(version: str, hooks: list) -> dict:
    """Files declaring a hook set, as committed on a branch."""
    names = ", ".join(f'"{name}"' for name in hooks)
    files = {".githooks/manifest.toml": f'version = "{version}"\nhooks = [{names}]\n'}
    for name in hooks:
        files[f".githooks/{name}"] = HOOK_SCRIPT + f"# {name} v{version}\n"
    return files


def _identify(repo: Path) -> None:
    run_git(repo, "config", "user.email", "test@example.com")
    run_git(repo, "config", "user.name", "Test User")
    run_git(repo, "config", "commit.gpgsign", "false")


@pytest.fixture
def temp_directory() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture
def git() -> Callable[..., str]:
    """Expose run_git to tests."""
    return run_git


@pytest.fixture
def origin_repo(temp_directory: Path) -> Path:
    """Create the repository standing in for the remote, with hooks on main."""
    repo_path = temp_directory / "origin"
    repo_path.mkdir()

    run_git(repo_path, "init", "-q")
    run_git(repo_path, "checkout", "-q", "-b", "main")
    _identify(repo_path)

    files = {"README.md": "# Test Repository\n"}
    files.update(hook_files("1", ["pre-commit"]))
    commit_files(repo_path, files, "Initial commit")

    return repo_path


@pytest.fixture
def workspace(origin_repo: Path, temp_directory: Path) -> Path:
    """
    Create a workspace holding a bare clone of origin.

    The bare repository gets the fetch refspec, remote-tracking refs and
    the worktreeConfig extension, like a freshly set up workspace.
    """
    workspace_path = temp_directory / "workspace"
    workspace_path.mkdir()
    bare_path = workspace_path / "project.git"

    run_git(temp_directory, "clone", "-q", "--bare", str(origin_repo), str(bare_path))
    _identify(bare_path)
    run_git(bare_path, "config", "remote.origin.fetch", "+refs/heads/*:refs/remotes/origin/*")
    run_git(bare_path, "config", "extensions.worktreeConfig", "true")
    run_git(bare_path, "fetch", "-q", "origin")

    return workspace_path


@pytest.fixture
def bare_repo(workspace: Path) -> Path:
    return workspace / "project.git"


@pytest.fixture
def manager(workspace: Path) -> WorkspaceManager:
    """Create a WorkspaceManager for the workspace."""
    return WorkspaceManager.from_workspace(workspace, Config())


@pytest.fixture
def main_worktree(manager: WorkspaceManager) -> Worktree:
    """Create a healthy worktree for main."""
    return manager.create("main").worktree


@pytest.fixture
def raw_worktree(workspace: Path, bare_repo: Path, manager: WorkspaceManager) -> Worktree:
    """Add a worktree with plain git, leaving config and hooks unset."""
    run_git(bare_repo, "branch", "raw", "main")
    run_git(bare_repo, "worktree", "add", "-q", str(workspace / "raw"), "raw")
    return manager.registry.get("raw")


# Unit-test fixtures


@pytest.fixture
def fake_repository(temp_directory: Path) -> BareRepository:
    """A bare-repository-shaped directory without git behind it."""
    path = temp_directory / "workspace" / "project.git"
    (path / "objects").mkdir(parents=True)
    (path / "worktrees").mkdir()
    return BareRepository(path=path)


@pytest.fixture
def mock_vcs(fake_repository: BareRepository) -> MagicMock:
    """Create a mock VcsPort bound to the fake repository."""
    vcs = MagicMock()
    vcs.repo_path = fake_repository.path
    vcs.list_worktrees.return_value = []
    vcs.get_config.return_value = None
    vcs.get_upstream.return_value = None
    vcs.read_blob.return_value = None
    return vcs


@pytest.fixture
def commit() -> Callable[..., str]:
    """Expose commit_files to tests."""
    return commit_files


@pytest.fixture
def hook_set_files() -> Callable[..., dict]:
    """Expose hook_files to tests."""
    return hook_files
