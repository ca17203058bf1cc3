"""``plm target`` subcommands: choose which assistants receive plugins."""

import click
from rich.markup import escape
from rich.table import Table

from plm.cli.common import CliContext, console, pass_cli_context, plm_errors
from plm.core.components import KIND_ORDER
from plm.core.targets import TargetContext, default_registry


@click.group(name="target")
def target_group() -> None:
    """Manage deployment targets"""


@target_group.command(name="list")
@pass_cli_context
def list_cmd(state: CliContext) -> None:
    """List known targets and which ones are enabled."""
    enabled = state.configs().get_config().targets
    registry = default_registry(TargetContext.current(state.project_root))
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Target")
    table.add_column("Name")
    table.add_column("Enabled")
    table.add_column("Components")
    for adapter in registry.all():
        kinds = [kind.plural for kind in KIND_ORDER if adapter.supports(kind)]
        table.add_row(
            adapter.target_id,
            escape(adapter.display_name),
            "[green]yes[/green]" if adapter.target_id in enabled else "[dim]no[/dim]",
            ", ".join(kinds),
        )
    console.print(table)


@target_group.command(name="add")
@click.argument("target_id")
@pass_cli_context
def add_cmd(state: CliContext, target_id: str) -> None:
    """Deploy to TARGET_ID by default."""
    with plm_errors():
        added = state.configs().add_target(target_id)
    if added:
        console.print(f"[green]Enabled target {escape(target_id.lower())}[/green]")
    else:
        console.print(f"Target {escape(target_id.lower())} is already enabled.")


@target_group.command(name="remove")
@click.argument("target_id")
@pass_cli_context
def remove_cmd(state: CliContext, target_id: str) -> None:
    """Stop deploying to TARGET_ID by default. Placed files are kept."""
    removed = state.configs().remove_target(target_id)
    if removed:
        console.print(f"[green]Disabled target {escape(target_id.lower())}[/green]")
    else:
        console.print(f"Target {escape(target_id.lower())} is not enabled.")


__all__ = ["target_group"]
