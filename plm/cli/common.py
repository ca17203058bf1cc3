"""Shared state and rich rendering for the ``plm`` command groups."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Generator, Iterable, List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from plm.core.config import ConfigManager, PlmPaths
from plm.core.engine import OperationReport, OutcomeStatus, PluginEngine, SyncReport
from plm.core.errors import PlmError
from plm.utils.log import get_logger

console = Console()
logger = get_logger()

_STATUS_STYLES = {
    OutcomeStatus.PLACED: "green",
    OutcomeStatus.REMOVED: "cyan",
    OutcomeStatus.SKIPPED: "dim",
    OutcomeStatus.CONFLICT: "yellow",
    OutcomeStatus.FAILED: "red",
}


@dataclass
class CliContext:
    """Per-invocation objects shared by every subcommand via ``ctx.obj``."""

    project_root: Optional[Path] = None
    config_manager: Optional[ConfigManager] = None
    engine_factory: Optional[Callable[["CliContext"], PluginEngine]] = None
    _engine: Optional[PluginEngine] = field(default=None, init=False, repr=False)

    def configs(self) -> ConfigManager:
        if self.config_manager is None:
            self.config_manager = ConfigManager(PlmPaths.default())
        return self.config_manager

    @property
    def paths(self) -> PlmPaths:
        return self.configs().paths

    def engine(self) -> PluginEngine:
        if self._engine is None:
            if self.engine_factory is not None:
                self._engine = self.engine_factory(self)
            else:
                self._engine = PluginEngine.create(
                    paths=self.paths,
                    config=self.configs().get_config(),
                    project_root=self.project_root,
                )
        return self._engine


pass_cli_context = click.make_pass_decorator(CliContext, ensure=True)


@contextlib.contextmanager
def plm_errors() -> Generator[None, None, None]:
    """Turn plm errors into click errors so the CLI exits with status 1."""
    try:
        yield
    except PlmError as exc:
        logger.debug("[cli] Command failed: %s: %s", type(exc).__name__, exc)
        raise click.ClickException(str(exc)) from exc
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def print_report(report: OperationReport, *, verbose: bool = False) -> None:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Target")
    table.add_column("Scope")
    table.add_column("Component")
    table.add_column("Status")
    table.add_column("Details")
    rows = 0
    for outcome in report.outcomes:
        if outcome.status == OutcomeStatus.SKIPPED and not verbose:
            continue
        component = ""
        if outcome.kind is not None:
            component = f"{outcome.kind.value}:{outcome.component or ''}"
        detail = str(outcome.path) if outcome.status == OutcomeStatus.PLACED else outcome.message
        style = _STATUS_STYLES[outcome.status]
        table.add_row(
            outcome.target,
            outcome.scope.value if outcome.scope else "",
            escape(component),
            f"[{style}]{outcome.status.value}[/{style}]",
            escape(detail or ""),
        )
        rows += 1
    if rows:
        console.print(table)
    skipped = len(report.skipped)
    if skipped and not verbose:
        console.print(f"[dim]{skipped} skipped (use --verbose to list them)[/dim]")
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")


def finish(report: OperationReport, done: str) -> None:
    """Print the closing line; failures make the command exit non-zero."""
    if not report.ok:
        raise click.ClickException(f"{done} with errors: {report.summary()}")
    console.print(f"[green]{escape(done)}[/green]")


def print_sync_report(report: SyncReport) -> None:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Plugin")
    table.add_column("Component")
    table.add_column("Action")
    table.add_column("Details")
    for item in report.items:
        detail = item.reason or (str(item.path) if item.path else "")
        table.add_row(
            escape(item.plugin),
            escape(f"{item.kind.value}:{item.component}"),
            item.action.value,
            escape(detail),
        )
    if report.items:
        console.print(table)
    else:
        console.print(f"Nothing placed on {report.source} to sync.")
    for outcome in report.outcomes:
        if outcome.status in (OutcomeStatus.CONFLICT, OutcomeStatus.FAILED):
            style = _STATUS_STYLES[outcome.status]
            console.print(f"[{style}]{escape(outcome.describe())}[/{style}]")


def join_names(values: Iterable[str], empty: str = "-") -> str:
    items: List[str] = [value for value in values if value]
    return ", ".join(items) if items else empty


__all__ = [
    "CliContext",
    "console",
    "finish",
    "join_names",
    "pass_cli_context",
    "plm_errors",
    "print_report",
    "print_sync_report",
]
