"""Component kinds and discovery inside a cached plugin.

Layout conventions (relative to the plugin root unless the manifest
declares other paths):
- skills/<name>/SKILL.md
- agents/<name>.agent.md or agents/<name>.md
- commands/<name>.prompt.md or commands/<name>.md
- instructions/<name>.md, instructions.md, or a root AGENTS.md
- hooks/<any file>

Files that do not fit the pattern of their kind are skipped. When two
entries of one kind share a name, the one visited last (traversal is
sorted by file name) wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from plm.utils.log import get_logger

if TYPE_CHECKING:
    from plm.core.manifest import PluginManifest

logger = get_logger()

SKILL_FILE_NAME = "SKILL.md"
ROOT_INSTRUCTION_FILE = "AGENTS.md"


class ComponentKind(str, Enum):
    SKILL = "skill"
    AGENT = "agent"
    COMMAND = "command"
    INSTRUCTION = "instruction"
    HOOK = "hook"

    @property
    def plural(self) -> str:
        return f"{self.value}s"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, raw: str) -> "ComponentKind":
        value = (raw or "").strip().lower()
        for kind in cls:
            if value in (kind.value, kind.plural):
                return kind
        raise ValueError(
            f"Unknown component kind '{raw}'. Expected one of: "
            + ", ".join(kind.value for kind in cls)
        )


class Scope(str, Enum):
    PERSONAL = "personal"
    PROJECT = "project"

    @classmethod
    def parse(cls, raw: str) -> "Scope":
        value = (raw or "").strip().lower()
        if value in ("personal", "user", "global"):
            return cls.PERSONAL
        if value == "project":
            return cls.PROJECT
        raise ValueError(f"Unknown scope '{raw}'. Expected 'personal' or 'project'.")


KIND_ORDER: Tuple[ComponentKind, ...] = tuple(ComponentKind)


@dataclass(frozen=True)
class Component:
    kind: ComponentKind
    name: str
    source_path: Path

    @property
    def is_directory(self) -> bool:
        return self.kind == ComponentKind.SKILL


def _sorted_children(directory: Path) -> List[Path]:
    try:
        return sorted(directory.iterdir(), key=lambda item: item.name)
    except OSError as exc:
        logger.warning(
            "[components] Failed to list directory: %s: %s",
            type(exc).__name__,
            exc,
            extra={"path": str(directory)},
        )
        return []


def _strip_suffix(file_name: str, suffixes: Iterable[str]) -> Optional[str]:
    for suffix in suffixes:
        if file_name.endswith(suffix) and len(file_name) > len(suffix):
            return file_name[: -len(suffix)]
    return None


_MARKDOWN_SUFFIXES: Dict[ComponentKind, Tuple[str, ...]] = {
    ComponentKind.AGENT: (".agent.md", ".md"),
    ComponentKind.COMMAND: (".prompt.md", ".md"),
    ComponentKind.INSTRUCTION: (".instructions.md", ".md"),
}


def _scan_skills(path: Path) -> List[Component]:
    if not path.is_dir():
        return []
    if (path / SKILL_FILE_NAME).is_file():
        return [Component(ComponentKind.SKILL, path.name, path)]
    found: List[Component] = []
    for child in _sorted_children(path):
        if child.is_dir() and not child.is_symlink() and (child / SKILL_FILE_NAME).is_file():
            found.append(Component(ComponentKind.SKILL, child.name, child))
    return found


def _scan_markdown(kind: ComponentKind, path: Path) -> List[Component]:
    suffixes = _MARKDOWN_SUFFIXES[kind]
    if path.is_file():
        name = _strip_suffix(path.name, suffixes)
        return [Component(kind, name, path)] if name else []
    if not path.is_dir():
        return []
    found: List[Component] = []
    for child in _sorted_children(path):
        if not child.is_file() or child.name.startswith("."):
            continue
        name = _strip_suffix(child.name, suffixes)
        if name:
            found.append(Component(kind, name, child))
    return found


def _scan_hooks(path: Path) -> List[Component]:
    if path.is_file():
        return [Component(ComponentKind.HOOK, path.stem, path)]
    if not path.is_dir():
        return []
    return [
        Component(ComponentKind.HOOK, child.stem, child)
        for child in _sorted_children(path)
        if child.is_file() and not child.name.startswith(".")
    ]


def scan_kind(kind: ComponentKind, path: Path) -> List[Component]:
    """Classify the entries found at one declared path."""
    if kind == ComponentKind.SKILL:
        return _scan_skills(path)
    if kind == ComponentKind.HOOK:
        return _scan_hooks(path)
    return _scan_markdown(kind, path)


def default_component_paths(plugin_root: Path) -> Dict[ComponentKind, List[Path]]:
    return {
        ComponentKind.SKILL: [plugin_root / "skills"],
        ComponentKind.AGENT: [plugin_root / "agents"],
        ComponentKind.COMMAND: [plugin_root / "commands"],
        ComponentKind.INSTRUCTION: [
            plugin_root / "instructions",
            plugin_root / "instructions.md",
            plugin_root / ROOT_INSTRUCTION_FILE,
        ],
        ComponentKind.HOOK: [plugin_root / "hooks"],
    }


def scan_components(
    plugin_root: Path,
    manifest: Optional["PluginManifest"] = None,
    kinds: Optional[Iterable[ComponentKind]] = None,
) -> List[Component]:
    """Return the components of a plugin, ordered by kind then name."""
    if manifest is not None:
        paths_by_kind = manifest.component_paths(plugin_root)
    else:
        paths_by_kind = default_component_paths(plugin_root)
    wanted = set(kinds) if kinds is not None else set(KIND_ORDER)

    components: List[Component] = []
    for kind in KIND_ORDER:
        if kind not in wanted:
            continue
        by_name: Dict[str, Component] = {}
        for path in paths_by_kind.get(kind, []):
            for component in scan_kind(kind, path):
                previous = by_name.get(component.name)
                if previous is not None and previous.source_path != component.source_path:
                    logger.debug(
                        "[components] Duplicate %s '%s'; keeping %s",
                        kind.value,
                        component.name,
                        component.source_path,
                        extra={"replaced": str(previous.source_path)},
                    )
                by_name[component.name] = component
        components.extend(by_name[name] for name in sorted(by_name))
    return components


def parse_component_selector(raw: str) -> Tuple[ComponentKind, str]:
    """Parse ``<kind>/<name>`` such as ``skills/pdf``.

    The kind is case-insensitive and may be singular or plural; the name is
    kept as written.
    """
    text = (raw or "").strip().rstrip("/")
    kind_text, sep, name = text.partition("/")
    if not sep or not kind_text:
        raise ValueError(f"Invalid component '{raw}'. Expected <kind>/<name>, e.g. skills/pdf")
    if not name or "/" in name:
        raise ValueError(f"Invalid component '{raw}'. The name must be a single path segment")
    return ComponentKind.parse(kind_text), name


def format_component_selector(kind: ComponentKind, name: str) -> str:
    return f"{kind.plural}/{name}"


def summarize_components(components: Iterable[Component]) -> Dict[str, List[str]]:
    """Group component names by plural kind (``skills``, ``agents`` ...)."""
    summary: Dict[str, List[str]] = {kind.plural: [] for kind in KIND_ORDER}
    for component in components:
        names = summary[component.kind.plural]
        if component.name not in names:
            names.append(component.name)
    return summary


__all__ = [
    "Component",
    "ComponentKind",
    "KIND_ORDER",
    "ROOT_INSTRUCTION_FILE",
    "SKILL_FILE_NAME",
    "Scope",
    "default_component_paths",
    "format_component_selector",
    "parse_component_selector",
    "scan_components",
    "scan_kind",
    "summarize_components",
]
