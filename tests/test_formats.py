"""Tests for the metadata file parse/render pairs."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from worktree_keeper.core.formats import (
    config_bool,
    config_value,
    parse_hook_manifest,
    parse_hook_marker,
    parse_link_file,
    read_git_config,
    render_hook_marker,
    render_link_file,
    worktree_config_problems,
    write_worktree_config,
)
from worktree_keeper.exceptions import FormatError
from worktree_keeper.models.hooks import HookMarker


class TestLinkFile:
    """Tests for the worktree .git link file."""

    def test_parse_valid(self):
        assert parse_link_file("gitdir: /ws/project.git/worktrees/main\n") == Path(
            "/ws/project.git/worktrees/main"
        )

    def test_parse_without_trailing_newline(self):
        assert parse_link_file("gitdir: /a/b") == Path("/a/b")

    def test_render_then_parse(self):
        admin_dir = Path("/ws/project.git/worktrees/feature-x")
        assert parse_link_file(render_link_file(admin_dir)) == admin_dir

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "garbage",
            "gitdir:",
            "gitdir: ",
            "gitdir: /a\ngitdir: /b\n",
            "GITDIR: /a\n",
        ],
    )
    def test_parse_malformed(self, text):
        with pytest.raises(FormatError):
            parse_link_file(text)


class TestGitConfig:
    """Tests for reading git config files through GitConfigParser."""

    @pytest.fixture
    def write_config(self, temp_directory):
        def _write(text):
            path = temp_directory / "config.worktree"
            path.write_text(text)
            return path

        return _write

    def test_parse_sections_and_subsections(self, write_config):
        parser = read_git_config(write_config(
            "[core]\n"
            "\tbare = false\n"
            "\thooksPath = /ws/project.git/worktrees/main/hooks\n"
            '[remote "origin"]\n'
            "\turl = git@github.com:org/repo.git\n"
        ))

        assert config_bool(parser, "core", "bare") is False
        assert config_value(parser, "core", "hookspath") == "/ws/project.git/worktrees/main/hooks"
        assert config_value(parser, 'remote "origin"', "url") == "git@github.com:org/repo.git"

    def test_bare_key_is_true(self, write_config):
        parser = read_git_config(write_config("[core]\n\tbare\n"))
        assert config_bool(parser, "core", "bare") is True

    def test_comments_and_quotes(self, write_config):
        parser = read_git_config(write_config(
            "# leading comment\n"
            "[user]\n"
            "\tname = \"Jane # Doe\"\n"
            "\temail = jane@example.com ; inline comment\n"
        ))

        assert config_value(parser, "user", "name") == "Jane # Doe"
        assert config_value(parser, "user", "email") == "jane@example.com"

    def test_quoted_value_with_inline_comment(self, write_config):
        parser = read_git_config(write_config(
            '[core]\n\thooksPath = "/ws/project.git/worktrees/main/hooks" # set by admin\n'
        ))

        assert config_value(parser, "core", "hooksPath") == "/ws/project.git/worktrees/main/hooks"

    def test_line_continuation(self, write_config):
        parser = read_git_config(write_config(
            "[core]\n\thooksPath = /ws/project.git/\\\nworktrees/main/hooks\n\tbare = false\n"
        ))

        assert config_value(parser, "core", "hooksPath") == "/ws/project.git/worktrees/main/hooks"
        assert config_bool(parser, "core", "bare") is False
        assert config_value(parser, "core", "worktrees/main/hooks") is None

    def test_last_value_wins(self, write_config):
        parser = read_git_config(write_config("[core]\n\tbare = true\n[core]\n\tbare = false\n"))
        assert config_bool(parser, "core", "bare") is False

    def test_missing_key(self, write_config):
        parser = read_git_config(write_config("[core]\n\tbare = false\n"))
        assert config_value(parser, "core", "hooksPath") is None
        assert config_bool(parser, "user", "name") is None

    @pytest.mark.parametrize(
        "text",
        [
            "bare = false\n",
            "[core\n",
            "[core]\n\t= value\n",
        ],
    )
    def test_parse_malformed(self, write_config, text):
        with pytest.raises(FormatError):
            read_git_config(write_config(text))


class TestWorktreeConfig:
    """Tests for the expected config.worktree contents."""

    HOOKS_DIR = Path("/ws/project.git/worktrees/main/hooks")

    def test_written_config_is_healthy(self, temp_directory):
        path = temp_directory / "config.worktree"

        write_worktree_config(path, self.HOOKS_DIR)

        assert worktree_config_problems(read_git_config(path), self.HOOKS_DIR) == []
        assert "bare = false" in path.read_text()
        assert not (temp_directory / "config.worktree.lock").exists()

    def test_preserves_unrelated_keys(self, temp_directory):
        path = temp_directory / "config.worktree"
        path.write_text("[core]\n\tbare = true\n\thookspath = /old\n[user]\n\temail = dev@example.com\n")

        write_worktree_config(path, self.HOOKS_DIR)

        parser = read_git_config(path)
        assert config_value(parser, "user", "email") == "dev@example.com"
        assert config_bool(parser, "core", "bare") is False
        assert config_value(parser, "core", "hooksPath") == str(self.HOOKS_DIR)
        assert "/old" not in path.read_text()

    def test_refuses_unparseable_file(self, temp_directory):
        path = temp_directory / "config.worktree"
        path.write_text("[core\n")

        with pytest.raises(FormatError):
            write_worktree_config(path, self.HOOKS_DIR)

        assert path.read_text() == "[core\n"

    def test_problems_reported(self, temp_directory):
        path = temp_directory / "config.worktree"
        path.write_text("[core]\n\tbare = true\n\thooksPath = /elsewhere\n")

        problems = worktree_config_problems(read_git_config(path), self.HOOKS_DIR)

        assert len(problems) == 2
        assert any("core.bare" in p for p in problems)
        assert any("/elsewhere" in p for p in problems)

    def test_missing_hooks_path(self, temp_directory):
        path = temp_directory / "config.worktree"
        path.write_text("[core]\n\tbare = false\n")

        problems = worktree_config_problems(read_git_config(path), Path("/hooks"))

        assert problems == ["core.hooksPath is not set"]


class TestHookMarker:
    """Tests for the installed-hooks marker."""

    def test_render_then_parse(self):
        marker = HookMarker(
            installed_by="worktree-keeper",
            installed_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            source_branch="feature/x",
            version="2",
            hooks=["pre-commit", "commit-msg"],
        )

        text = render_hook_marker(marker)

        assert text.startswith("# ")
        assert parse_hook_marker(text) == marker

    def test_parse_without_hooks_key(self):
        marker = parse_hook_marker(
            "installed_by=setup\n"
            "installed_at=2024-05-01T12:00:00+00:00\n"
            "source_branch=main\n"
            "version=1\n"
        )
        assert marker.hooks == []

    def test_missing_keys(self):
        with pytest.raises(FormatError, match="version"):
            parse_hook_marker(
                "installed_by=setup\ninstalled_at=2024-05-01T12:00:00\nsource_branch=main\n"
            )

    def test_bad_line(self):
        with pytest.raises(FormatError):
            parse_hook_marker("not a key value line\n")

    def test_bad_timestamp(self):
        with pytest.raises(FormatError, match="installed_at"):
            parse_hook_marker(
                "installed_by=a\ninstalled_at=yesterday\nsource_branch=main\nversion=1\n"
            )

    @pytest.mark.parametrize("name", ["../config.worktree", "sub/pre-commit", ".hidden"])
    def test_rejects_hook_names_that_are_not_plain_files(self, name):
        with pytest.raises(FormatError, match="invalid hook name"):
            parse_hook_marker(
                "installed_by=a\ninstalled_at=2024-05-01T12:00:00\nsource_branch=main\n"
                f"version=1\nhooks=pre-commit,{name}\n"
            )


class TestHookManifest:
    """Tests for the hook manifest committed on branches."""

    def test_parse(self):
        manifest = parse_hook_manifest('version = "2"\nhooks = ["pre-commit", "commit-msg"]\n')

        assert manifest.version == "2"
        assert manifest.hooks == ["pre-commit", "commit-msg"]

    def test_numeric_version_and_duplicates(self):
        manifest = parse_hook_manifest('version = 3\nhooks = ["pre-commit", "pre-commit"]\n')

        assert manifest.version == "3"
        assert manifest.hooks == ["pre-commit"]

    def test_hooks_default_to_empty(self):
        assert parse_hook_manifest('version = "1"\n').hooks == []

    @pytest.mark.parametrize(
        "text",
        [
            "version = \n",
            'hooks = ["pre-commit"]\n',
            'version = "1"\nhooks = "pre-commit"\n',
            'version = "1"\nhooks = ["../escape"]\n',
            'version = "1"\nhooks = ["sub/dir"]\n',
        ],
    )
    def test_invalid(self, text):
        with pytest.raises(FormatError):
            parse_hook_manifest(text)
