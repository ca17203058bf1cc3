"""``plm marketplace`` subcommands: register, refresh and browse catalogs."""

from typing import Optional

import click
from rich.markup import escape
from rich.table import Table

from plm.cli.common import CliContext, console, pass_cli_context, plm_errors
from plm.core.marketplaces import MarketplaceRegistry


def _age_label(registry: MarketplaceRegistry, name: str, ttl_hours: int) -> str:
    age = registry.catalog_age(name)
    if age is None:
        return "[yellow]not cached[/yellow]"
    hours = int(age.total_seconds() // 3600)
    label = f"{hours}h ago" if hours else "just now"
    if registry.is_stale(name, ttl_hours):
        return f"[yellow]{label} (stale)[/yellow]"
    return label


@click.group(name="marketplace")
def marketplace_group() -> None:
    """Manage plugin marketplaces"""


@marketplace_group.command(name="add")
@click.argument("source")
@click.option("--name", default=None, help="Registry name (default: repository name).")
@click.option("--path", "source_path", default=None, help="Catalog directory inside the repo.")
@pass_cli_context
def add_cmd(
    state: CliContext, source: str, name: Optional[str], source_path: Optional[str]
) -> None:
    """Register the marketplace hosted at SOURCE (owner/repo[@ref])."""
    with plm_errors():
        registry = state.engine().registry
        entry, catalog = registry.register(source, name=name, source_path=source_path)
    console.print(
        f"[green]Added marketplace {escape(entry.name)}[/green] "
        f"({len(catalog.plugins)} plugin(s) from {escape(entry.source)})"
    )


@marketplace_group.command(name="remove")
@click.argument("name")
@pass_cli_context
def remove_cmd(state: CliContext, name: str) -> None:
    """Forget marketplace NAME. Installed plugins are left alone."""
    with plm_errors():
        entry = state.engine().registry.unregister(name)
    console.print(f"[green]Removed marketplace {escape(entry.name)}[/green]")


@marketplace_group.command(name="list")
@pass_cli_context
def list_cmd(state: CliContext) -> None:
    """List registered marketplaces"""
    registry = state.engine().registry
    ttl_hours = state.configs().get_config().catalog_ttl_hours
    entries = registry.list()
    if not entries:
        console.print("No marketplaces registered. Add one with 'plm marketplace add owner/repo'.")
        return
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name")
    table.add_column("Source")
    table.add_column("Plugins", justify="right")
    table.add_column("Fetched")
    for entry in entries:
        catalog = registry.cached_catalog(entry.name)
        source = entry.source
        if entry.source_path:
            source = f"{source} ({entry.source_path})"
        table.add_row(
            escape(entry.name),
            escape(source),
            str(len(catalog.plugins)) if catalog else "-",
            _age_label(registry, entry.name, ttl_hours),
        )
    console.print(table)


@marketplace_group.command(name="update")
@click.argument("name", required=False)
@pass_cli_context
def update_cmd(state: CliContext, name: Optional[str]) -> None:
    """Refresh the catalog of NAME, or of every marketplace."""
    registry = state.engine().registry
    with plm_errors():
        names = [registry.get(name).name] if name else None
        results = registry.refresh_all(names)
    if not results:
        console.print("No marketplaces registered.")
        return
    failures = 0
    for result in results:
        if result.ok:
            console.print(f"{escape(result.name)}: [green]{result.plugin_count} plugin(s)[/green]")
        else:
            failures += 1
            console.print(f"{escape(result.name)}: [red]{escape(result.error or 'failed')}[/red]")
    if failures:
        raise click.ClickException(f"{failures} marketplace(s) failed to refresh")


@marketplace_group.command(name="show")
@click.argument("name")
@pass_cli_context
def show_cmd(state: CliContext, name: str) -> None:
    """Show the plugins listed by marketplace NAME."""
    registry = state.engine().registry
    ttl_hours = state.configs().get_config().catalog_ttl_hours
    with plm_errors():
        catalog = registry.load_catalog(name)
    console.print(f"\n[bold]{escape(catalog.name)}[/bold] {escape(catalog.source)}")
    if catalog.owner.name:
        owner = catalog.owner.name
        if catalog.owner.email:
            owner = f"{owner} <{catalog.owner.email}>"
        console.print(f"Owner: {escape(owner)}")
    console.print(f"Fetched: {_age_label(registry, catalog.name, ttl_hours)}")
    if not catalog.plugins:
        console.print("No plugins listed.")
        return
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Plugin")
    table.add_column("Version")
    table.add_column("Source")
    table.add_column("Description")
    for plugin in catalog.plugins:
        table.add_row(
            escape(plugin.name),
            escape(plugin.version or "-"),
            escape(plugin.source_label()),
            escape(plugin.description),
        )
    console.print(table)


__all__ = ["marketplace_group"]
