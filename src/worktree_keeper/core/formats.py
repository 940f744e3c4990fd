"""
Typed parse/render pairs for the metadata files worktree-keeper owns.

Three formats live here:
- the worktree link file (``<worktree>/.git``)
- the per-worktree ``config.worktree`` override file
- the installed-hooks marker file
plus the hook manifest committed on each branch.

Anything that fails to parse raises FormatError, which the repair engine
treats as "malformed". Git config files go through GitPython's
``GitConfigParser`` so they are read and written with git's own syntax.
"""

import configparser
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import toml
from git.config import GitConfigParser

from worktree_keeper.exceptions import FormatError
from worktree_keeper.models.hooks import HookMarker

GITDIR_PREFIX = "gitdir: "

_HOOK_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_FALSE_VALUES = {"false", "no", "off", "0", ""}
_TRUE_VALUES = {"true", "yes", "on", "1"}

MARKER_KEYS = ("installed_by", "installed_at", "source_branch", "version")


# Link file


def parse_link_file(text: str) -> Path:
    """
    Parse a worktree link file.

    Args:
        text: File contents.

    Returns:
        The admin directory path the link points at.

    Raises:
        FormatError: If the content is not exactly one ``gitdir: <path>`` line.
    """
    lines = text.splitlines()
    if len(lines) != 1:
        raise FormatError(f"expected a single line, found {len(lines)}")

    line = lines[0]
    if not line.startswith(GITDIR_PREFIX):
        raise FormatError(f"missing '{GITDIR_PREFIX.strip()}' prefix")

    value = line[len(GITDIR_PREFIX):].strip()
    if not value:
        raise FormatError("empty gitdir path")

    return Path(value)


def render_link_file(admin_dir: Path) -> str:
    """Render the link file pointing at an admin directory."""
    return f"{GITDIR_PREFIX}{admin_dir}\n"


# config.worktree


def read_git_config(path: Path) -> GitConfigParser:
    """
    Read a git config file with GitPython's parser.

    Args:
        path: Config file to read.

    Returns:
        A read-only, fully parsed GitConfigParser.

    Raises:
        FormatError: If git would reject the file's syntax.
    """
    parser = GitConfigParser(str(path), read_only=True, merge_includes=False)
    try:
        parser.read()
    except (configparser.Error, UnicodeDecodeError) as e:
        raise FormatError(str(e).strip()) from e
    return parser


def config_value(parser: GitConfigParser, section: str, key: str) -> Optional[str]:
    """Get the last raw value for a key, matching names case-insensitively as git does."""
    value = None
    found = False
    for name in parser.sections():
        if name.lower() != section.lower():
            continue
        for option, values in parser.items_all(name):
            if option.lower() == key.lower() and values:
                value = values[-1]
                found = True

    if not found:
        return None
    # A bare key is a boolean true in git config
    return "true" if value is None else str(value)


def config_bool(parser: GitConfigParser, section: str, key: str) -> Optional[bool]:
    """Get a key interpreted as a git boolean, None when unset or not boolean."""
    value = config_value(parser, section, key)
    if value is None:
        return None
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


def write_worktree_config(path: Path, hooks_dir: Path) -> None:
    """
    Set ``core.bare = false`` and ``core.hooksPath`` in a ``config.worktree``.

    Unrelated keys already in the file are kept. The file must either be
    absent or parse cleanly; GitPython writes it under ``<path>.lock``.

    Args:
        path: The worktree's ``config.worktree``.
        hooks_dir: The worktree's private hooks directory.

    Raises:
        FormatError: If the existing file cannot be parsed.
    """
    try:
        with GitConfigParser(str(path), read_only=False, merge_includes=False) as writer:
            if writer.has_section("core"):
                for option in writer.options("core"):
                    if option.lower() in ("bare", "hookspath"):
                        writer.remove_option("core", option)
            writer.set_value("core", "bare", "false")
            writer.set_value("core", "hooksPath", str(hooks_dir))
    except (configparser.Error, UnicodeDecodeError) as e:
        raise FormatError(str(e).strip()) from e


def worktree_config_problems(parser: GitConfigParser, hooks_dir: Path) -> list[str]:
    """List the ways a parsed ``config.worktree`` differs from what it must hold."""
    problems = []

    if config_bool(parser, "core", "bare") is not False:
        problems.append(f"core.bare is {config_value(parser, 'core', 'bare')!r}, expected false")

    hooks_path = config_value(parser, "core", "hooksPath")
    if hooks_path is None:
        problems.append("core.hooksPath is not set")
    elif Path(hooks_path) != hooks_dir:
        problems.append(f"core.hooksPath points at {hooks_path}, expected {hooks_dir}")

    return problems


# Hook marker


def parse_hook_marker(text: str) -> HookMarker:
    """
    Parse an installed-hooks marker.

    Raises:
        FormatError: On lines without ``=``, missing required keys, an
            unparseable timestamp, or a hook name that is not a plain file name.
    """
    values: dict[str, str] = {}
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            raise FormatError(f"line {number}: expected key=value")
        key, value = stripped.split("=", 1)
        values[key.strip()] = value.strip()

    missing = [key for key in MARKER_KEYS if key not in values]
    if missing:
        raise FormatError(f"missing keys: {', '.join(missing)}")

    try:
        installed_at = datetime.fromisoformat(values["installed_at"])
    except ValueError as e:
        raise FormatError(f"invalid installed_at: {values['installed_at']}") from e

    hooks = [name.strip() for name in values.get("hooks", "").split(",") if name.strip()]
    for name in hooks:
        if not _HOOK_NAME_RE.match(name):
            raise FormatError(f"invalid hook name: {name!r}")

    return HookMarker(
        installed_by=values["installed_by"],
        installed_at=installed_at,
        source_branch=values["source_branch"],
        version=values["version"],
        hooks=hooks,
    )


def render_hook_marker(marker: HookMarker) -> str:
    """Render a marker as ``key=value`` lines."""
    return (
        "# Git Hooks Metadata\n"
        f"installed_by={marker.installed_by}\n"
        f"installed_at={marker.installed_at.isoformat(timespec='seconds')}\n"
        f"source_branch={marker.source_branch}\n"
        f"version={marker.version}\n"
        f"hooks={','.join(marker.hooks)}\n"
    )


# Hook manifest


@dataclass
class HookManifest:
    """The ``manifest.toml`` a branch commits alongside its hook scripts."""

    version: str
    hooks: list[str]


def parse_hook_manifest(text: str) -> HookManifest:
    """
    Parse a hook manifest.

    Expected shape::

        version = "2"
        hooks = ["pre-commit", "commit-msg"]

    Raises:
        FormatError: If the TOML is invalid, ``version`` is missing, or a
            hook name is not a plain file name.
    """
    try:
        data = toml.loads(text)
    except toml.TomlDecodeError as e:
        raise FormatError(f"invalid manifest: {e}") from e

    version = data.get("version")
    if version is None or isinstance(version, (dict, list)) or str(version).strip() == "":
        raise FormatError("manifest does not declare a version")

    hooks = data.get("hooks", [])
    if not isinstance(hooks, list):
        raise FormatError("'hooks' must be a list of hook names")

    names = []
    for name in hooks:
        if not isinstance(name, str) or not _HOOK_NAME_RE.match(name):
            raise FormatError(f"invalid hook name: {name!r}")
        if name not in names:
            names.append(name)

    return HookManifest(version=str(version).strip(), hooks=names)
