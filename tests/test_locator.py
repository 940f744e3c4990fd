"""Tests for RepositoryLocator."""

from pathlib import Path

import pytest

from worktree_keeper.core.locator import RepositoryLocator
from worktree_keeper.exceptions import AmbiguousRepositoryError, NotFoundError


def make_bare_like(path: Path) -> Path:
    (path / "objects").mkdir(parents=True)
    return path


class TestRepositoryLocator:
    """Test suite for RepositoryLocator."""

    @pytest.fixture
    def locator(self):
        return RepositoryLocator()

    def test_locates_single_repository(self, locator, temp_directory):
        bare = make_bare_like(temp_directory / "project.git")
        (temp_directory / "main").mkdir()

        repository = locator.locate(temp_directory)

        assert repository.path == bare
        assert repository.name == "project.git"
        assert repository.workspace == temp_directory

    def test_locates_real_bare_clone(self, locator, workspace, bare_repo):
        assert locator.locate(workspace).path == bare_repo

    def test_ignores_directories_without_objects(self, locator, temp_directory):
        (temp_directory / "notes.git").mkdir()
        bare = make_bare_like(temp_directory / "project.git")

        assert locator.locate(temp_directory).path == bare

    def test_ignores_files_and_plain_dot_git(self, locator, temp_directory):
        (temp_directory / "archive.git").write_text("not a directory")
        make_bare_like(temp_directory / ".git")

        with pytest.raises(NotFoundError):
            locator.locate(temp_directory)

    def test_no_repository(self, locator, temp_directory):
        (temp_directory / "main").mkdir()

        with pytest.raises(NotFoundError) as exc_info:
            locator.locate(temp_directory)

        assert exc_info.value.repository == str(temp_directory)
        assert exc_info.value.exit_code == 3

    def test_missing_workspace(self, locator, temp_directory):
        with pytest.raises(NotFoundError):
            locator.locate(temp_directory / "does-not-exist")

    def test_ambiguous(self, locator, temp_directory):
        make_bare_like(temp_directory / "a.git")
        make_bare_like(temp_directory / "b.git")

        with pytest.raises(AmbiguousRepositoryError) as exc_info:
            locator.locate(temp_directory)

        assert [c.name for c in exc_info.value.candidates] == ["a.git", "b.git"]
        assert "a.git, b.git" in str(exc_info.value)

    def test_custom_suffix(self, temp_directory):
        bare = make_bare_like(temp_directory / "project.bare")
        make_bare_like(temp_directory / "other.git")

        assert RepositoryLocator(suffix=".bare").locate(temp_directory).path == bare

    def test_locate_has_no_side_effects(self, locator, temp_directory):
        make_bare_like(temp_directory / "project.git")
        before = sorted(p.relative_to(temp_directory) for p in temp_directory.rglob("*"))

        locator.locate(temp_directory)

        after = sorted(p.relative_to(temp_directory) for p in temp_directory.rglob("*"))
        assert before == after
