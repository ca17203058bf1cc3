from __future__ import annotations

import json
from pathlib import Path
from typing import Dict

import pytest

from plm.core.components import (
    ComponentKind,
    Scope,
    scan_components,
    summarize_components,
)
from plm.core.errors import ManifestInvalid, ManifestMissing
from plm.core.manifest import load_manifest, parse_manifest


def _write(root: Path, files: Dict[str, str]) -> None:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


def test_load_manifest_reads_metadata(tmp_path: Path) -> None:
    _write(
        tmp_path,
        {
            ".claude-plugin/plugin.json": json.dumps(
                {
                    "name": "tools",
                    "version": 2,
                    "author": "Acme",
                    "repository": {"url": "https://github.com/acme/tools"},
                    "keywords": ["a", 3, "b"],
                    "skills": "./extra-skills",
                }
            )
        },
    )
    manifest = load_manifest(tmp_path, fallback_name="fallback")
    assert manifest.name == "tools"
    assert manifest.version == "2"
    assert manifest.author is not None and manifest.author.display() == "Acme"
    assert manifest.repository == "https://github.com/acme/tools"
    assert manifest.keywords == ["a", "b"]
    assert manifest.component_declarations[ComponentKind.SKILL] == ["./extra-skills"]


def test_load_manifest_accepts_root_plugin_json(tmp_path: Path) -> None:
    _write(tmp_path, {"plugin.json": "{}"})
    assert load_manifest(tmp_path, fallback_name="fallback").name == "fallback"


def test_missing_and_invalid_manifest(tmp_path: Path) -> None:
    with pytest.raises(ManifestMissing):
        load_manifest(tmp_path)
    _write(tmp_path, {".claude-plugin/plugin.json": "{not json"})
    with pytest.raises(ManifestInvalid):
        load_manifest(tmp_path)
    with pytest.raises(ManifestInvalid):
        parse_manifest(["not", "an", "object"], fallback_name="x")


def test_scan_default_layout(tmp_path: Path) -> None:
    _write(
        tmp_path,
        {
            "skills/pdf/SKILL.md": "pdf",
            "skills/notes/README.md": "no SKILL.md here",
            "agents/reviewer.md": "agent",
            "agents/helper.agent.md": "agent",
            "agents/.hidden.md": "ignored",
            "commands/fix.prompt.md": "cmd",
            "commands/notes.txt": "ignored",
            "AGENTS.md": "root instructions",
            "hooks/hooks.json": "{}",
        },
    )
    components = scan_components(tmp_path)
    found = [(c.kind, c.name) for c in components]
    assert found == [
        (ComponentKind.SKILL, "pdf"),
        (ComponentKind.AGENT, "helper"),
        (ComponentKind.AGENT, "reviewer"),
        (ComponentKind.COMMAND, "fix"),
        (ComponentKind.INSTRUCTION, "AGENTS"),
        (ComponentKind.HOOK, "hooks"),
    ]


def test_manifest_paths_supplement_defaults(tmp_path: Path) -> None:
    _write(
        tmp_path,
        {
            "skills/pdf/SKILL.md": "pdf",
            "extra/docx/SKILL.md": "docx",
            "outside.md": "x",
        },
    )
    manifest = parse_manifest(
        {"skills": ["./extra", "../escape", "/abs"]}, fallback_name="tools"
    )
    names = [c.name for c in scan_components(tmp_path, manifest)]
    assert names == ["docx", "pdf"]


def test_duplicate_names_keep_the_last_visited(tmp_path: Path) -> None:
    _write(tmp_path, {"agents/reviewer.agent.md": "first", "agents/reviewer.md": "second"})
    components = scan_components(tmp_path, kinds=[ComponentKind.AGENT])
    assert len(components) == 1
    assert components[0].source_path.name == "reviewer.md"


def test_summarize_lists_every_kind(tmp_path: Path) -> None:
    _write(tmp_path, {"skills/pdf/SKILL.md": "pdf", "agents/reviewer.md": "a"})
    summary = summarize_components(scan_components(tmp_path))
    assert summary == {
        "skills": ["pdf"],
        "agents": ["reviewer"],
        "commands": [],
        "instructions": [],
        "hooks": [],
    }


def test_kind_and_scope_parsing() -> None:
    assert ComponentKind.parse("Skills") is ComponentKind.SKILL
    assert ComponentKind.parse("agent") is ComponentKind.AGENT
    assert Scope.parse("user") is Scope.PERSONAL
    assert Scope.parse("project") is Scope.PROJECT
    with pytest.raises(ValueError):
        ComponentKind.parse("widget")
    with pytest.raises(ValueError):
        Scope.parse("team")
