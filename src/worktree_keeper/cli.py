"""CLI entry point for worktree-keeper."""

from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from worktree_keeper.config import Config, load_config
from worktree_keeper.core.manager import WorkspaceManager, repository_name
from worktree_keeper.core.repair import describe_result
from worktree_keeper.exceptions import (
    DivergenceUnrepairableError,
    SyncConflictError,
    WorktreeKeeperError,
)
from worktree_keeper.logging_config import setup_logging
from worktree_keeper.models.maintenance import RepairResult, SyncOutcome
from worktree_keeper.models.worktree_info import WorkspaceSetupResult

console = Console()


def _error(e: WorktreeKeeperError) -> click.ClickException:
    """Turn a library error into a ClickException carrying its exit code."""
    error = click.ClickException(str(e))
    error.exit_code = e.exit_code
    return error


def get_manager(ctx: click.Context) -> WorkspaceManager:
    """
    Get a WorkspaceManager for the workspace given on the command line.

    Raises:
        click.ClickException: If the workspace has no (or several) bare repositories.
    """
    try:
        return WorkspaceManager.from_workspace(ctx.obj["workspace"], ctx.obj["config"])
    except WorktreeKeeperError as e:
        raise _error(e) from e


@click.group()
@click.version_option(package_name="worktree-keeper")
@click.option(
    "-w",
    "--workspace",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("."),
    show_default=True,
    help="Workspace directory holding the bare repository.",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to a configuration file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show what is being changed.")
@click.option("--debug", is_flag=True, help="Show debug output.")
@click.pass_context
def main(
    ctx: click.Context,
    workspace: Path,
    config_path: Optional[str],
    verbose: bool,
    debug: bool,
) -> None:
    """worktree-keeper - bare repository + worktree workspace manager.

    Keeps every worktree's link file, config and hooks consistent with the
    shared bare repository.
    """
    setup_logging(verbose=verbose, debug=debug)
    config: Config = load_config(config_path)
    ctx.obj = {"workspace": workspace, "config": config}


@main.command("create")
@click.argument("branch")
@click.option(
    "-b",
    "--base",
    "base_branch",
    help="Base branch for creating new branches (default: workspace.default_base).",
)
@click.option(
    "-i",
    "--issue",
    type=int,
    help="Issue number to link the branch to.",
)
@click.option(
    "-p",
    "--path",
    type=click.Path(path_type=Path),
    help="Custom path for the worktree.",
)
@click.pass_context
def create_worktree(
    ctx: click.Context,
    branch: str,
    base_branch: Optional[str],
    issue: Optional[int],
    path: Optional[Path],
) -> None:
    """Create a new worktree for BRANCH.

    If BRANCH doesn't exist, it will be created from the base branch.

    Example:
        wtk create feature/new-ui
        wtk create feature/new-ui --base develop --issue 42
    """
    manager = get_manager(ctx)

    try:
        with console.status(f"[bold blue]Creating worktree for '{branch}'..."):
            result = manager.create(branch, base=base_branch, issue=issue, path=path)
    except WorktreeKeeperError as e:
        raise _error(e) from e

    worktree = result.worktree
    console.print()
    console.print("[bold green]Worktree created successfully!")
    console.print()
    console.print(f"[bold]Branch:[/bold]   {worktree.branch}")
    console.print(f"[bold]Path:[/bold]     {worktree.path}")
    console.print(f"[bold]Commit:[/bold]   {worktree.short_commit}")
    if result.created_branch:
        console.print(f"[bold]Base:[/bold]     {result.base_branch}")
    if result.upstream:
        console.print(f"[bold]Tracking:[/bold] {result.upstream}")
    if result.hooks_version:
        console.print(f"[bold]Hooks:[/bold]    version {result.hooks_version}")
    if result.issue:
        console.print(f"[bold]Issue:[/bold]    {result.issue}")
    console.print()
    console.print(f"[dim]cd {worktree.path}[/dim]")


def _print_setup(result: WorkspaceSetupResult) -> None:
    console.print()
    console.print("[bold green]Workspace ready!")
    console.print()
    console.print(f"[bold]Workspace:[/bold]  {result.workspace}")
    console.print(f"[bold]Repository:[/bold] {result.repository.path}")
    console.print(f"[bold]Source:[/bold]     {result.source}")
    if result.fetch_error:
        console.print(f"[yellow]Fetch failed:[/yellow] {result.fetch_error}")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Id", style="bold")
    table.add_column("Branch", style="green")
    table.add_column("Path", style="dim")
    for worktree in result.worktrees:
        table.add_row(worktree.id, worktree.display_branch, str(worktree.path))
    console.print(table)

    if result.repair is not None and result.repair.failed:
        console.print(f"[red]Repair left {result.repair.failed} worktree(s) unhealthy; run 'wtk repair'.[/red]")
    console.print()
    console.print(f"[dim]cd {result.workspace}[/dim]")


@main.command("setup")
@click.argument("url")
@click.argument("directory", required=False, type=click.Path(path_type=Path, file_okay=False))
@click.option(
    "-b",
    "--base",
    "base_branch",
    help="Branch for the main worktree (default: workspace.default_base).",
)
@click.option("-n", "--name", help="Name of the bare repository (default: from URL).")
@click.pass_context
def setup_workspace(
    ctx: click.Context,
    url: str,
    directory: Optional[Path],
    base_branch: Optional[str],
    name: Optional[str],
) -> None:
    """Build a new workspace from the repository at URL.

    DIRECTORY defaults to a directory named after the repository inside
    the workspace directory.

    Example:
        wtk setup git@github.com:org/project.git
        wtk setup https://github.com/org/project.git ~/src/project --base develop
    """
    target = directory or ctx.obj["workspace"] / repository_name(url)

    try:
        with console.status(f"[bold blue]Setting up {target}..."):
            result = WorkspaceManager.setup(
                url, target, base=base_branch, name=name, config=ctx.obj["config"]
            )
    except WorktreeKeeperError as e:
        raise _error(e) from e

    _print_setup(result)


@main.command("migrate")
@click.argument("source", type=click.Path(path_type=Path, file_okay=False, exists=True))
@click.argument("directory", required=False, type=click.Path(path_type=Path, file_okay=False))
@click.option("-f", "--force", is_flag=True, help="Migrate even with uncommitted changes.")
@click.pass_context
def migrate_repository(
    ctx: click.Context,
    source: Path,
    directory: Optional[Path],
    force: bool,
) -> None:
    """Convert the clone at SOURCE into a bare repository plus worktrees.

    SOURCE is left untouched. DIRECTORY defaults to SOURCE-worktree next
    to it.

    Example:
        wtk migrate ~/src/project
    """
    try:
        with console.status(f"[bold blue]Migrating {source}..."):
            result = WorkspaceManager.migrate(
                source, workspace=directory, force=force, config=ctx.obj["config"]
            )
    except WorktreeKeeperError as e:
        raise _error(e) from e

    _print_setup(result)


@main.command("list")
@click.pass_context
def list_worktrees(ctx: click.Context) -> None:
    """List all worktrees registered with the bare repository."""
    manager = get_manager(ctx)

    try:
        worktrees = manager.list()
    except WorktreeKeeperError as e:
        raise _error(e) from e

    if not worktrees:
        console.print("[yellow]No worktrees found.[/yellow]")
        return

    table = Table(title="Worktrees", show_header=True, header_style="bold cyan")
    table.add_column("Id", style="bold")
    table.add_column("Branch", style="green")
    table.add_column("Commit", style="dim")
    table.add_column("Upstream")
    table.add_column("Status", justify="center")

    for wt in worktrees:
        if not wt.exists:
            status = "[red]missing[/red]"
        elif wt.is_locked:
            status = "[blue]locked[/blue]"
        elif wt.is_detached:
            status = "[yellow]detached[/yellow]"
        else:
            status = "[green]active[/green]"

        table.add_row(
            wt.id,
            wt.display_branch,
            wt.short_commit,
            wt.upstream or "",
            status,
        )

    console.print()
    console.print(table)
    console.print()


@main.command("switch")
@click.argument("identifier")
@click.pass_context
def switch_worktree(ctx: click.Context, identifier: str) -> None:
    """Print the path of the worktree matching IDENTIFIER.

    IDENTIFIER can be the worktree id, directory name, branch name,
    the last part of a branch name, or a path.

    Example:
        cd "$(wtk switch feature/new-ui)"
    """
    manager = get_manager(ctx)

    try:
        worktree = manager.select(identifier)
    except WorktreeKeeperError as e:
        raise _error(e) from e

    click.echo(str(worktree.path))


@main.command("remove")
@click.argument("identifier")
@click.option(
    "-f",
    "--force",
    is_flag=True,
    help="Remove even if the worktree has uncommitted changes.",
)
@click.option(
    "-y",
    "--yes",
    is_flag=True,
    help="Skip confirmation prompt.",
)
@click.pass_context
def remove_worktree(ctx: click.Context, identifier: str, force: bool, yes: bool) -> None:
    """Remove a worktree and its registry entry.

    The branch itself is kept.
    """
    manager = get_manager(ctx)

    try:
        worktree = manager.select(identifier)
    except WorktreeKeeperError as e:
        raise _error(e) from e

    if not yes:
        click.confirm(f"Remove worktree '{worktree.id}' ({worktree.display_branch})?", abort=True)

    try:
        manager.remove(worktree.id, force=force)
    except WorktreeKeeperError as e:
        raise _error(e) from e

    console.print(f"[bold green]Removed worktree[/bold green] {worktree.id}")


def _print_repair_result(result: RepairResult) -> None:
    if result.was_healthy:
        console.print(f"[green]healthy[/green]  {result.target}")
        return

    label = "[red]FAILED[/red] " if not result.is_clean else "[yellow]repaired[/yellow]"
    if result.pruned:
        label = "[yellow]pruned[/yellow]  "
    console.print(f"{label} {result.target}")
    for line in describe_result(result):
        console.print(f"    [dim]{line}[/dim]")


@main.command("repair")
@click.argument("worktree_id", required=False)
@click.pass_context
def repair_worktrees(ctx: click.Context, worktree_id: Optional[str]) -> None:
    """Check worktrees against the registry and fix any drift.

    Repairs WORKTREE_ID only when given, otherwise sweeps every
    registered worktree.

    Example:
        wtk repair
        wtk repair feature/new-ui
    """
    manager = get_manager(ctx)

    try:
        with console.status("[bold blue]Checking worktrees..."):
            outcome = manager.repair(worktree_id)
    except WorktreeKeeperError as e:
        raise _error(e) from e

    if isinstance(outcome, RepairResult):
        _print_repair_result(outcome)
        failed = 0 if outcome.is_clean else 1
    else:
        for result in outcome.results:
            _print_repair_result(result)
        if outcome.repository is not None and not outcome.repository.was_healthy:
            _print_repair_result(outcome.repository)

        console.print()
        console.print("[bold]Summary:[/bold]")
        console.print(f"  Checked:  {outcome.worktrees_checked}")
        console.print(f"  Healthy:  {outcome.healthy}")
        console.print(f"  Repaired: {outcome.repaired}")
        console.print(f"  Pruned:   {outcome.pruned}")
        console.print(f"  Failed:   {outcome.failed}")
        failed = outcome.failed

    if failed:
        ctx.exit(DivergenceUnrepairableError.exit_code)


@main.command("sync")
@click.pass_context
def sync_worktrees(ctx: click.Context) -> None:
    """Fetch once and integrate remote updates into every worktree.

    Detached worktrees are left untouched. A worktree that cannot be
    integrated cleanly is restored to its previous state and reported.
    """
    manager = get_manager(ctx)

    try:
        with console.status("[bold blue]Syncing worktrees..."):
            report = manager.sync()
    except WorktreeKeeperError as e:
        raise _error(e) from e

    if report.fetch_error:
        console.print(f"[yellow]Fetch failed, synced against existing refs:[/yellow] {report.fetch_error}")
        console.print()

    if not report.results:
        console.print("[yellow]No worktrees to sync.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Worktree")
    table.add_column("Branch")
    table.add_column("Status")
    table.add_column("Details")

    for result in report.results:
        status_style = {
            SyncOutcome.UPDATED: "[green]updated[/green]",
            SyncOutcome.UP_TO_DATE: "[blue]up to date[/blue]",
            SyncOutcome.CONFLICT: "[red]conflict[/red]",
            SyncOutcome.NO_REMOTE_TRACKING: "[yellow]no remote branch[/yellow]",
            SyncOutcome.SKIPPED_DETACHED: "[dim]detached[/dim]",
            SyncOutcome.ERROR: "[red]error[/red]",
        }.get(SyncOutcome(result.outcome), str(result.outcome))

        details = result.message
        if result.hooks_error:
            details += f" [yellow](hooks not updated: {result.hooks_error})[/yellow]"
        elif result.hooks_version:
            details += f" (hooks {result.hooks_version})"

        table.add_row(
            result.worktree_id,
            result.branch_name,
            status_style,
            details,
        )

    console.print(table)
    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Updated:    {report.count(SyncOutcome.UPDATED)}")
    console.print(f"  Up to date: {report.count(SyncOutcome.UP_TO_DATE)}")
    console.print(f"  Conflicts:  {report.count(SyncOutcome.CONFLICT)}")
    console.print(f"  Errors:     {report.count(SyncOutcome.ERROR)}")
    if report.hook_failures:
        console.print(f"  Hook failures: {len(report.hook_failures)}")

    if report.has_conflicts:
        ctx.exit(SyncConflictError.exit_code)


@main.group("hooks")
def hooks_group() -> None:
    """Manage per-worktree hooks."""


@hooks_group.command("reconcile")
@click.argument("worktree_id", required=False)
@click.option(
    "-p",
    "--path",
    type=click.Path(path_type=Path),
    help="A path inside the worktree (default: current directory).",
)
@click.pass_context
def reconcile_hooks(ctx: click.Context, worktree_id: Optional[str], path: Optional[Path]) -> None:
    """Install the hooks declared by a worktree's checked-out branch.

    Suitable for a post-checkout trigger:

        wtk --workspace .. hooks reconcile --path "$PWD"
    """
    manager = get_manager(ctx)

    try:
        installed = manager.reconcile_hooks(worktree_id=worktree_id, path=path)
    except WorktreeKeeperError as e:
        raise _error(e) from e

    if not installed.changed:
        console.print(f"[blue]Hooks up to date[/blue] ({installed.version or 'none'})")
    elif installed.version is None:
        console.print(f"[yellow]Removed hooks:[/yellow] {', '.join(installed.removed) or 'marker only'}")
    else:
        console.print(
            f"[green]Installed hooks version {installed.version}:[/green] "
            f"{', '.join(installed.hooks) or 'none'}"
        )


if __name__ == "__main__":
    main()
