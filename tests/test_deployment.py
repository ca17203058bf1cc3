from __future__ import annotations

from pathlib import Path

from plm.core.deployment import (
    copy_skill_dir,
    has_instruction_block,
    remove_instruction_block,
    remove_placed_path,
    upsert_instruction_block,
    write_component_file,
)


def test_write_component_file_creates_parents(tmp_path: Path) -> None:
    target = tmp_path / "a" / "b" / "reviewer.agent.md"
    write_component_file(target, "content")
    assert target.read_text() == "content"
    assert [p.name for p in target.parent.iterdir()] == ["reviewer.agent.md"]


def test_copy_skill_dir_replaces_existing_copy(tmp_path: Path) -> None:
    source = tmp_path / "src" / "lint"
    (source / "scripts").mkdir(parents=True)
    (source / "SKILL.md").write_text("v2")
    (source / "scripts" / "run.sh").write_text("echo")
    destination = tmp_path / "dest" / "lint"
    destination.mkdir(parents=True)
    (destination / "stale.md").write_text("old")

    copy_skill_dir(source, destination)

    assert (destination / "SKILL.md").read_text() == "v2"
    assert (destination / "scripts" / "run.sh").exists()
    assert not (destination / "stale.md").exists()
    assert [p.name for p in destination.parent.iterdir()] == ["lint"]


def test_instruction_blocks_coexist_with_user_text(tmp_path: Path) -> None:
    path = tmp_path / "AGENTS.md"
    path.write_text("# My notes\n")

    upsert_instruction_block(path, "market/tools", "Prefer small functions.")
    upsert_instruction_block(path, "github/acme--docs", "Write docs.")
    upsert_instruction_block(path, "market/tools", "Prefer pure functions.")

    text = path.read_text()
    assert text.startswith("# My notes\n\n<!-- plm:begin market/tools -->")
    assert text.index("market/tools") < text.index("github/acme--docs")
    assert text.count("<!-- plm:begin market/tools -->") == 1
    assert "Prefer pure functions." in text
    assert "Prefer small functions." not in text
    assert has_instruction_block(path, "market/tools")

    assert remove_instruction_block(path, "market/tools") is True
    assert remove_instruction_block(path, "market/tools") is False
    assert path.read_text() == (
        "# My notes\n\n<!-- plm:begin github/acme--docs -->\nWrite docs.\n"
        "<!-- plm:end github/acme--docs -->\n"
    )


def test_removing_last_block_deletes_the_file(tmp_path: Path) -> None:
    path = tmp_path / ".codex" / "AGENTS.md"
    upsert_instruction_block(path, "market/tools", "Only block.")
    assert path.read_text() == (
        "<!-- plm:begin market/tools -->\nOnly block.\n<!-- plm:end market/tools -->\n"
    )
    assert remove_placed_path(path, "market/tools") is True
    assert not path.exists()


def test_remove_placed_path_prunes_empty_parents(tmp_path: Path) -> None:
    root = tmp_path / ".codex"
    skill = root / "skills" / "market" / "tools" / "lint"
    skill.mkdir(parents=True)
    (skill / "SKILL.md").write_text("x")
    agent = root / "agents" / "market" / "tools" / "reviewer.agent.md"
    agent.parent.mkdir(parents=True)
    agent.write_text("x")
    (root / "agents" / "mine.md").write_text("user file")

    assert remove_placed_path(skill, "market/tools") is True
    assert remove_placed_path(agent, "market/tools") is True
    assert remove_placed_path(agent, "market/tools") is False

    assert not (root / "skills").exists()
    assert not (root / "agents" / "market").exists()
    assert (root / "agents" / "mine.md").exists()


def test_shared_file_without_block_is_never_deleted(tmp_path: Path) -> None:
    project = tmp_path / "project"
    project.mkdir()
    path = project / "AGENTS.md"
    path.write_text("# my own rules\n")

    assert remove_placed_path(path, "market/tools", shared=True) is False
    assert path.read_text() == "# my own rules\n"
    assert project.is_dir()

    upsert_instruction_block(path, "market/tools", "Be brief.")
    assert remove_placed_path(path, "market/tools", shared=True) is True
    assert path.read_text() == "# my own rules\n"
    assert remove_placed_path(tmp_path / "missing.md", "market/tools", shared=True) is False
