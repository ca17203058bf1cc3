from __future__ import annotations

from pathlib import Path

import pytest

from plm.core.components import ComponentKind, Scope
from plm.core.errors import TargetError
from plm.core.targets import (
    CodexTarget,
    TargetContext,
    TargetRegistry,
    default_registry,
)


@pytest.fixture
def registry(tmp_path: Path) -> TargetRegistry:
    context = TargetContext(home=tmp_path / "home", project_root=tmp_path / "project")
    return default_registry(context)


def test_builtin_targets_are_registered(registry: TargetRegistry) -> None:
    assert registry.ids() == ["codex", "copilot", "gemini", "antigravity"]
    assert "CODEX" in registry
    assert "cursor" not in registry
    with pytest.raises(TargetError):
        registry.get("cursor")


def test_register_rejects_duplicate_ids(registry: TargetRegistry, tmp_path: Path) -> None:
    with pytest.raises(TargetError):
        registry.register(CodexTarget(TargetContext(home=tmp_path, project_root=tmp_path)))


def test_placement_paths_nest_under_catalog_and_plugin(
    registry: TargetRegistry, tmp_path: Path
) -> None:
    home = tmp_path / "home"
    codex = registry.get("codex")

    skill = codex.placement(ComponentKind.SKILL, Scope.PERSONAL, "github", "acme--tools", "lint")
    assert skill is not None and skill.is_directory
    assert skill.path == home / ".codex" / "skills" / "github" / "acme--tools" / "lint"

    agent = codex.placement(ComponentKind.AGENT, Scope.PERSONAL, "market", "tools", "reviewer")
    assert agent is not None
    assert agent.path == home / ".codex" / "agents" / "market" / "tools" / "reviewer.agent.md"

    instruction = codex.placement(
        ComponentKind.INSTRUCTION, Scope.PROJECT, "market", "tools", "style"
    )
    assert instruction is not None and instruction.shared
    assert instruction.path == tmp_path / "project" / "AGENTS.md"


def test_copilot_scope_rules(registry: TargetRegistry, tmp_path: Path) -> None:
    copilot = registry.get("copilot")
    assert copilot.placement(ComponentKind.SKILL, Scope.PERSONAL, "m", "p", "s") is None
    assert copilot.placement(ComponentKind.INSTRUCTION, Scope.PERSONAL, "m", "p", "i") is None

    agent = copilot.placement(ComponentKind.AGENT, Scope.PERSONAL, "m", "p", "a")
    assert agent is not None
    assert agent.path == tmp_path / "home" / ".copilot" / "agents" / "m" / "p" / "a.agent.md"

    prompt = copilot.placement(ComponentKind.COMMAND, Scope.PROJECT, "m", "p", "fix")
    assert prompt is not None
    assert prompt.path == tmp_path / "project" / ".github" / "prompts" / "m" / "p" / "fix.prompt.md"


def test_unsupported_kinds_have_no_placement(registry: TargetRegistry) -> None:
    antigravity = registry.get("antigravity")
    assert antigravity.supports(ComponentKind.SKILL)
    assert not antigravity.supports(ComponentKind.AGENT)
    assert antigravity.placement(ComponentKind.AGENT, Scope.PROJECT, "m", "p", "a") is None
    gemini = registry.get("gemini")
    assert gemini.placement(ComponentKind.COMMAND, Scope.PERSONAL, "m", "p", "c") is None


@pytest.mark.parametrize("bad", ["..", "a/b", "~x", ""])
def test_placement_rejects_unsafe_segments(registry: TargetRegistry, bad: str) -> None:
    with pytest.raises(TargetError):
        registry.get("gemini").placement(ComponentKind.SKILL, Scope.PERSONAL, "m", bad, "s")


def test_list_placed_reports_files_and_instruction_blocks(
    registry: TargetRegistry, tmp_path: Path
) -> None:
    home = tmp_path / "home"
    skill_dir = home / ".codex" / "skills" / "market" / "tools" / "lint"
    skill_dir.mkdir(parents=True)
    (skill_dir / "SKILL.md").write_text("lint")
    agent = home / ".codex" / "agents" / "market" / "tools" / "reviewer.agent.md"
    agent.parent.mkdir(parents=True)
    agent.write_text("agent")
    (home / ".codex" / "AGENTS.md").write_text(
        "mine\n\n<!-- plm:begin market/tools -->\nbody\n<!-- plm:end market/tools -->\n"
    )

    placed = registry.get("codex").list_placed(Scope.PERSONAL)
    found = sorted((item.kind.value, item.catalog, item.plugin, item.name) for item in placed)
    assert found == [
        ("agent", "market", "tools", "reviewer"),
        ("instruction", "market", "tools", "AGENTS"),
        ("skill", "market", "tools", "lint"),
    ]
