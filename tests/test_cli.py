"""Tests for the ``plm`` command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from conftest import FakeFetcher
from plm import __version__
from plm.cli.cli import cli
from plm.cli.common import CliContext
from plm.core.config import ConfigManager, PlmPaths
from plm.core.engine import PluginEngine


@pytest.fixture
def run_cli(engine: PluginEngine, plm_paths: PlmPaths):
    runner = CliRunner()

    def invoke(args):
        state = CliContext(
            config_manager=ConfigManager(plm_paths),
            engine_factory=lambda _state: engine,
        )
        return runner.invoke(cli, args, obj=state, env={"COLUMNS": "200"})

    return invoke


def test_version_command_and_option(run_cli) -> None:
    result = run_cli(["version"])
    assert result.exit_code == 0
    assert f"plm version {__version__}" in result.output

    option = run_cli(["--version"])
    assert option.exit_code == 0
    assert __version__ in option.output


def test_install_list_info_roundtrip(run_cli, home_dir: Path) -> None:
    install = run_cli(["install", "acme/tools"])
    assert install.exit_code == 0, install.output
    assert "Installed acme--tools@github" in install.output
    assert "skipped (use --verbose" in install.output
    assert (home_dir / ".codex" / "AGENTS.md").exists()

    listing = run_cli(["list"])
    assert listing.exit_code == 0
    assert "acme--tools@github" in listing.output
    assert "1.0.0" in listing.output

    filtered = run_cli(["list", "--target", "gemini"])
    assert filtered.exit_code == 0
    assert "No plugins installed." in filtered.output

    info = run_cli(["info", "acme/tools"])
    assert info.exit_code == 0
    assert "Version: 1.0.0" in info.output
    assert "Commit: c1" in info.output
    assert "Author: Acme <dev@acme.test>" in info.output


def test_install_verbose_lists_skipped_components(run_cli) -> None:
    result = run_cli(["install", "acme/tools", "--target", "codex", "-v"])
    assert result.exit_code == 0, result.output
    assert "skipped" in result.output
    assert "command:fix" in result.output


def test_install_selected_components(run_cli, home_dir: Path) -> None:
    result = run_cli(
        [
            "install",
            "acme/tools",
            "-t",
            "codex",
            "--component",
            "skills/lint",
            "--component",
            "agents/nope",
        ]
    )
    assert result.exit_code == 0, result.output
    assert "Component not found: agents/nope" in result.output
    assert (home_dir / ".codex" / "skills" / "github" / "acme--tools" / "lint").is_dir()
    assert not (home_dir / ".codex" / "agents").exists()

    info = run_cli(["info", "acme--tools"])
    assert "Selected: skills/lint, agents/nope" in info.output

    bad = run_cli(["install", "acme/tools", "--force", "--component", "lint"])
    assert bad.exit_code == 2
    assert "Expected <kind>/<name>" in bad.output


def test_disable_enable_uninstall(run_cli, home_dir: Path) -> None:
    run_cli(["install", "acme/tools"])
    agents = home_dir / ".codex" / "agents"

    disabled = run_cli(["disable", "acme--tools"])
    assert disabled.exit_code == 0, disabled.output
    assert "Disabled acme--tools@github" in disabled.output
    assert not agents.exists()

    enabled = run_cli(["enable", "acme--tools"])
    assert enabled.exit_code == 0, enabled.output
    assert agents.exists()

    removed = run_cli(["uninstall", "acme--tools"])
    assert removed.exit_code == 0, removed.output
    assert "Uninstalled acme--tools@github" in removed.output
    assert "No plugins installed." in run_cli(["list"]).output


def test_errors_exit_with_status_one(run_cli) -> None:
    missing = run_cli(["install", "acme/missing"])
    assert missing.exit_code == 1
    assert "not found" in missing.output

    run_cli(["install", "acme/tools"])
    again = run_cli(["install", "acme/tools"])
    assert again.exit_code == 1
    assert "already installed" in again.output

    unknown = run_cli(["info", "nothing"])
    assert unknown.exit_code == 1

    bad_target = run_cli(["install", "acme/tools", "--target", "cursor", "--force"])
    assert bad_target.exit_code == 1


def test_invalid_type_choice_is_a_usage_error(run_cli) -> None:
    result = run_cli(["install", "acme/tools", "--type", "widgets"])
    assert result.exit_code == 2


def test_update_reports_up_to_date(run_cli) -> None:
    assert "No plugins installed." in run_cli(["update"]).output
    run_cli(["install", "acme/tools"])
    result = run_cli(["update"])
    assert result.exit_code == 0
    assert "acme--tools@github: up to date" in result.output


def test_sync_dry_run(run_cli, home_dir: Path) -> None:
    run_cli(["install", "acme/tools", "--target", "codex"])
    result = run_cli(["sync", "--from", "codex", "--to", "gemini", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "Dry run" in result.output
    assert not (home_dir / ".gemini").exists()

    same = run_cli(["sync", "--from", "codex", "--to", "codex"])
    assert same.exit_code == 1


def test_target_commands_update_config(run_cli, plm_paths: PlmPaths) -> None:
    listing = run_cli(["target", "list"])
    assert listing.exit_code == 0
    assert "antigravity" in listing.output

    added = run_cli(["target", "add", "gemini"])
    assert added.exit_code == 0
    assert "Enabled target gemini" in added.output
    assert "already enabled" in run_cli(["target", "add", "gemini"]).output

    removed = run_cli(["target", "remove", "copilot"])
    assert "Disabled target copilot" in removed.output
    saved = json.loads(plm_paths.config_file.read_text())
    assert saved["targets"] == ["codex", "gemini"]

    assert run_cli(["target", "add", "cursor"]).exit_code == 1


def test_marketplace_commands(run_cli, fetcher: FakeFetcher) -> None:
    fetcher.add_repo(
        "acme/market-a",
        {
            ".claude-plugin/marketplace.json": json.dumps(
                {
                    "owner": {"name": "Acme"},
                    "plugins": [{"name": "formatter", "description": "Formats code"}],
                }
            )
        },
    )
    assert "No marketplaces registered" in run_cli(["marketplace", "list"]).output

    added = run_cli(["marketplace", "add", "acme/market-a"])
    assert added.exit_code == 0, added.output
    assert "Added marketplace market-a" in added.output

    listing = run_cli(["marketplace", "list"])
    assert "market-a" in listing.output

    shown = run_cli(["marketplace", "show", "market-a"])
    assert shown.exit_code == 0, shown.output
    assert "formatter" in shown.output
    assert "Owner: Acme" in shown.output

    assert run_cli(["marketplace", "add", "acme/market-a"]).exit_code == 1

    removed = run_cli(["marketplace", "remove", "market-a"])
    assert "Removed marketplace market-a" in removed.output
    assert run_cli(["marketplace", "show", "market-a"]).exit_code == 1
