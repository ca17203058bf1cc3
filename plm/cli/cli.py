"""Main CLI entry point for plm.

Thin layer over :class:`plm.core.engine.PluginEngine`: parse options,
call one engine operation, render the report with rich.
"""

import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.markup import escape
from rich.table import Table

from plm import __version__
from plm.cli.common import (
    CliContext,
    console,
    finish,
    join_names,
    pass_cli_context,
    plm_errors,
    print_report,
    print_sync_report,
)
from plm.cli.marketplace_cli import marketplace_group
from plm.cli.target_cli import target_group
from plm.core.components import KIND_ORDER, Scope
from plm.core.engine import SyncAction, UpdateStatus
from plm.utils.log import enable_file_logging, get_logger

logger = get_logger()

_KIND_CHOICES = [kind.value for kind in KIND_ORDER] + [kind.plural for kind in KIND_ORDER]
_SCOPE_CHOICES = [scope.value for scope in Scope]


def _scope(value: Optional[str]) -> Optional[Scope]:
    return Scope.parse(value) if value else None


@click.group()
@click.version_option(version=__version__, prog_name="plm")
@click.option(
    "--project-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project directory used for project-scope placements (default: cwd).",
)
@pass_cli_context
def cli(state: CliContext, project_root: Optional[Path]) -> None:
    """plm - deploy AI assistant plugins to Codex, Copilot, Gemini and Antigravity."""
    if project_root is not None:
        state.project_root = project_root.resolve()
    try:
        log_file = enable_file_logging(state.paths.root)
    except OSError as exc:
        logger.warning("[cli] File logging unavailable: %s: %s", type(exc).__name__, exc)
    else:
        logger.debug(
            "[cli] Starting CLI invocation",
            extra={"log_file": str(log_file), "project_root": str(state.project_root or "")},
        )


@cli.command(name="install")
@click.argument("source")
@click.option("-t", "--target", "targets", multiple=True, help="Target id (repeatable).")
@click.option("--scope", type=click.Choice(_SCOPE_CHOICES), default=None, help="Placement scope.")
@click.option(
    "--type",
    "kinds",
    type=click.Choice(_KIND_CHOICES, case_sensitive=False),
    multiple=True,
    help="Only deploy these component kinds (repeatable).",
)
@click.option(
    "--component",
    "components",
    multiple=True,
    metavar="KIND/NAME",
    help="Only deploy this component, e.g. skills/pdf (repeatable).",
)
@click.option("--force", is_flag=True, help="Reinstall and overwrite unmanaged files.")
@click.option("-v", "--verbose", is_flag=True, help="Also list skipped components.")
@pass_cli_context
def install_cmd(
    state: CliContext,
    source: str,
    targets: Tuple[str, ...],
    scope: Optional[str],
    kinds: Tuple[str, ...],
    components: Tuple[str, ...],
    force: bool,
    verbose: bool,
) -> None:
    """Install SOURCE (owner/repo[@ref] or name[@marketplace])."""
    with plm_errors():
        report = state.engine().install(
            source,
            targets=list(targets) or None,
            scope=_scope(scope),
            kind_filter=list(kinds) or None,
            components=list(components) or None,
            force=force,
        )
    print_report(report, verbose=verbose)
    if report.conflicts:
        console.print(
            f"[yellow]{len(report.conflicts)} placement(s) skipped because of conflicts[/yellow]"
        )
    finish(report, f"Installed {report.plugin}")


@cli.command(name="update")
@click.argument("name", required=False)
@pass_cli_context
def update_cmd(state: CliContext, name: Optional[str]) -> None:
    """Update NAME, or every installed plugin."""
    with plm_errors():
        results = state.engine().update(name)
    if not results:
        console.print("No plugins installed.")
        return
    failed = 0
    for result in results:
        if result.status == UpdateStatus.UP_TO_DATE:
            console.print(f"{escape(result.plugin)}: [dim]up to date[/dim]")
        elif result.status == UpdateStatus.UPDATED:
            previous = (result.previous_commit or "?")[:7]
            current = (result.current_commit or "?")[:7]
            console.print(
                f"{escape(result.plugin)}: [green]updated[/green] {previous} -> {current}"
            )
            if result.report is not None and not result.report.ok:
                failed += 1
                console.print(f"  [red]{escape(result.report.summary())}[/red]")
        else:
            failed += 1
            error = escape(result.error or "")
            console.print(f"{escape(result.plugin)}: [red]failed[/red] {error}")
    if failed:
        raise click.ClickException(f"{failed} plugin(s) failed to update")


@cli.command(name="enable")
@click.argument("name")
@click.option("-t", "--target", "targets", multiple=True, help="Target id (repeatable).")
@pass_cli_context
def enable_cmd(state: CliContext, name: str, targets: Tuple[str, ...]) -> None:
    """Re-deploy NAME from the local cache."""
    with plm_errors():
        report = state.engine().enable(name, targets=list(targets) or None)
    print_report(report)
    finish(report, f"Enabled {report.plugin}")


@cli.command(name="disable")
@click.argument("name")
@click.option("-t", "--target", "targets", multiple=True, help="Target id (repeatable).")
@pass_cli_context
def disable_cmd(state: CliContext, name: str, targets: Tuple[str, ...]) -> None:
    """Remove NAME's placed files but keep it installed."""
    with plm_errors():
        report = state.engine().disable(name, targets=list(targets) or None)
    print_report(report)
    finish(report, f"Disabled {report.plugin}")


@cli.command(name="uninstall")
@click.argument("name")
@click.option("-t", "--target", "targets", multiple=True, help="Only remove from these targets.")
@pass_cli_context
def uninstall_cmd(state: CliContext, name: str, targets: Tuple[str, ...]) -> None:
    """Remove NAME from targets, the cache and the plugin list."""
    with plm_errors():
        report = state.engine().uninstall(name, targets=list(targets) or None)
    print_report(report)
    finish(report, f"Uninstalled {report.plugin}")


@cli.command(name="list")
@click.option("-t", "--target", "target", default=None, help="Only plugins deployed to TARGET.")
@click.option(
    "--type",
    "kinds",
    type=click.Choice(_KIND_CHOICES, case_sensitive=False),
    multiple=True,
    help="Only plugins containing these component kinds.",
)
@pass_cli_context
def list_cmd(state: CliContext, target: Optional[str], kinds: Tuple[str, ...]) -> None:
    """List installed plugins."""
    with plm_errors():
        summaries = state.engine().list(target_filter=target, kind_filter=list(kinds) or None)
    if not summaries:
        console.print("No plugins installed.")
        return
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Plugin")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Targets")
    table.add_column("Components")
    for summary in summaries:
        counts = [
            f"{len(names)} {kind}" for kind, names in sorted(summary.components.items()) if names
        ]
        table.add_row(
            escape(summary.qualified_name),
            escape(summary.version or "-"),
            summary.status.value,
            join_names(summary.targets),
            join_names(counts),
        )
    console.print(table)


@cli.command(name="info")
@click.argument("name")
@pass_cli_context
def info_cmd(state: CliContext, name: str) -> None:
    """Show details about an installed plugin."""
    with plm_errors():
        detail = state.engine().info(name)
    record = detail.record
    console.print(f"\n[bold]{escape(record.qualified_name)}[/bold]")
    if record.description:
        console.print(escape(record.description))
    console.print(f"Version: {escape(record.version or '-')}")
    console.print(f"Status: {record.status.value}")
    console.print(f"Source: {escape(record.source)}")
    if record.source_path:
        console.print(f"Path in repository: {escape(record.source_path)}")
    console.print(f"Commit: {escape(record.installed_commit or '-')}")
    if record.author:
        console.print(f"Author: {escape(record.author)}")
    for label, value in (
        ("Homepage", detail.homepage),
        ("Repository", detail.repository or detail.web_url),
        ("License", detail.license),
        ("Installed", detail.installed_at),
        ("Cache", str(detail.cache_path) if detail.cache_path else None),
    ):
        if value:
            console.print(f"{label}: {escape(value)}")
    if detail.keywords:
        console.print(f"Keywords: {escape(', '.join(detail.keywords))}")
    if record.kind_filter:
        console.print(f"Kinds: {escape(', '.join(record.kind_filter))}")
    if record.component_filter:
        console.print(f"Selected: {escape(', '.join(record.component_filter))}")
    if record.kind_filter:
        console.print(f"Kinds: {escape(', '.join(record.kind_filter))}")
    if record.component_filter:
        console.print(f"Selected: {escape(', '.join(record.component_filter))}")

    console.print("\n[bold]Components[/bold]")
    for kind, names in sorted(record.components.items()):
        if names:
            console.print(f"  {kind}: {escape(', '.join(names))}")

    console.print("\n[bold]Deployments[/bold]")
    if not record.deployments:
        console.print("  (none)")
    for target_id, deployment in sorted(record.deployments.items()):
        flag = "enabled" if deployment.enabled else "disabled"
        console.print(
            f"  {target_id} ({deployment.scope.value}, {flag}): "
            f"{len(deployment.placed_paths)} path(s)"
        )
        for placed in deployment.placed_paths:
            console.print(f"    [dim]{escape(placed)}[/dim]")


@cli.command(name="sync")
@click.option("--from", "source", required=True, help="Target to copy from.")
@click.option("--to", "destination", required=True, help="Target to copy to.")
@click.option(
    "--type",
    "kinds",
    type=click.Choice(_KIND_CHOICES, case_sensitive=False),
    multiple=True,
    help="Only sync these component kinds.",
)
@click.option("--scope", type=click.Choice(_SCOPE_CHOICES), default=None)
@click.option("--dry-run", is_flag=True, help="Show the plan without writing files.")
@pass_cli_context
def sync_cmd(
    state: CliContext,
    source: str,
    destination: str,
    kinds: Tuple[str, ...],
    scope: Optional[str],
    dry_run: bool,
) -> None:
    """Re-deploy what plm placed on one target to another."""
    with plm_errors():
        report = state.engine().sync(
            source,
            destination,
            kind_filter=list(kinds) or None,
            scope=_scope(scope),
            dry_run=dry_run,
        )
    print_sync_report(report)
    counts = (
        f"{report.count(SyncAction.CREATE)} to create, "
        f"{report.count(SyncAction.UPDATE)} to update, "
        f"{report.count(SyncAction.SKIP)} skipped"
    )
    if dry_run:
        console.print(f"[dim]Dry run: {counts}[/dim]")
        return
    if not report.ok:
        raise click.ClickException(f"Sync {report.source} -> {report.destination} had failures")
    console.print(f"[green]Synced {report.source} -> {report.destination}[/green] ({counts})")


@cli.command(name="version")
def version_cmd() -> None:
    """Show version information"""
    console.print(f"plm version {__version__}")


cli.add_command(marketplace_group)
cli.add_command(target_group)


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except (OSError, IOError, RuntimeError) as e:
        console.print(f"[red]Fatal error: {escape(str(e))}[/red]")
        logger.warning(
            "[cli] Fatal error in main CLI entrypoint: %s: %s",
            type(e).__name__,
            e,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
