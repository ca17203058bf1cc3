"""Target adapters: where each host environment expects components.

Every adapter declares the component kinds it reads and maps
``(kind, scope, catalog, plugin, component)`` to a destination path, or
``None`` when the combination has no place in that environment. Paths
always nest under ``<catalog>/<plugin>`` so two plugins never share a
destination, except for instruction files which are shared and carry one
marked block per plugin.

Adding an environment means registering one more adapter.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional

from plm.core.components import ComponentKind, Scope
from plm.core.errors import TargetError
from plm.utils.log import get_logger

logger = get_logger()

INSTRUCTION_BLOCK_BEGIN = "<!-- plm:begin {origin} -->"
INSTRUCTION_BLOCK_END = "<!-- plm:end {origin} -->"
_BLOCK_BEGIN_RE = re.compile(r"^<!-- plm:begin (?P<origin>[^ ]+/[^ ]+) -->$", re.MULTILINE)


@dataclass(frozen=True)
class TargetContext:
    """Roots that personal and project placements are resolved against."""

    home: Path
    project_root: Path

    @classmethod
    def current(cls, project_root: Optional[Path] = None) -> "TargetContext":
        return cls(home=Path.home(), project_root=(project_root or Path.cwd()).resolve())


@dataclass(frozen=True)
class Placement:
    path: Path
    kind: ComponentKind
    is_directory: bool = False
    shared: bool = False


@dataclass(frozen=True)
class PlacedComponent:
    kind: ComponentKind
    catalog: str
    plugin: str
    name: str
    path: Path
    scope: Scope


def _check_segment(value: str, label: str) -> str:
    if (
        not value
        or value in (".", "..")
        or "/" in value
        or "\\" in value
        or value.startswith("~")
    ):
        raise TargetError(f"Invalid {label} name for placement: '{value}'")
    return value


class TargetAdapter:
    """Base adapter; subclasses set the class attributes and override hooks."""

    target_id: str = ""
    display_name: str = ""
    supported_kinds: FrozenSet[ComponentKind] = frozenset()

    _KIND_DIRS: Dict[ComponentKind, str] = {
        ComponentKind.SKILL: "skills",
        ComponentKind.AGENT: "agents",
    }
    _FILE_SUFFIXES: Dict[ComponentKind, str] = {
        ComponentKind.AGENT: ".agent.md",
    }

    def __init__(self, context: TargetContext) -> None:
        self.context = context

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.target_id!r})"

    def supports(self, kind: ComponentKind) -> bool:
        return kind in self.supported_kinds

    def supports_scope(self, kind: ComponentKind, scope: Scope) -> bool:
        return self.supports(kind)

    def base_dir(self, scope: Scope) -> Path:
        raise NotImplementedError

    def instruction_file(self, scope: Scope) -> Optional[Path]:
        return None

    def kind_dir(self, kind: ComponentKind, scope: Scope) -> Optional[Path]:
        if not self.supports_scope(kind, scope):
            return None
        folder = self._KIND_DIRS.get(kind)
        if folder is None:
            return None
        return self.base_dir(scope) / folder

    def placement(
        self,
        kind: ComponentKind,
        scope: Scope,
        catalog: str,
        plugin: str,
        component_name: str,
    ) -> Optional[Placement]:
        if not self.supports_scope(kind, scope):
            return None
        _check_segment(catalog, "catalog")
        _check_segment(plugin, "plugin")
        _check_segment(component_name, "component")
        if kind == ComponentKind.INSTRUCTION:
            path = self.instruction_file(scope)
            if path is None:
                return None
            return Placement(path=path, kind=kind, shared=True)
        directory = self.kind_dir(kind, scope)
        if directory is None:
            return None
        origin_dir = directory / catalog / plugin
        if kind == ComponentKind.SKILL:
            return Placement(path=origin_dir / component_name, kind=kind, is_directory=True)
        suffix = self._FILE_SUFFIXES.get(kind, ".md")
        return Placement(path=origin_dir / f"{component_name}{suffix}", kind=kind)

    def list_placed(self, scope: Scope) -> List[PlacedComponent]:
        """Enumerate components this adapter finds on disk for ``scope``."""
        placed: List[PlacedComponent] = []
        for kind in sorted(self.supported_kinds, key=lambda item: item.value):
            if kind == ComponentKind.INSTRUCTION:
                placed.extend(self._list_instruction_blocks(scope))
                continue
            directory = self.kind_dir(kind, scope)
            if directory is None or not directory.is_dir():
                continue
            for catalog_dir in sorted(p for p in directory.iterdir() if p.is_dir()):
                for plugin_dir in sorted(p for p in catalog_dir.iterdir() if p.is_dir()):
                    for entry in sorted(plugin_dir.iterdir()):
                        name = self._component_name(kind, entry)
                        if name is None:
                            continue
                        placed.append(
                            PlacedComponent(
                                kind=kind,
                                catalog=catalog_dir.name,
                                plugin=plugin_dir.name,
                                name=name,
                                path=entry,
                                scope=scope,
                            )
                        )
        return placed

    def _component_name(self, kind: ComponentKind, entry: Path) -> Optional[str]:
        if kind == ComponentKind.SKILL:
            return entry.name if entry.is_dir() else None
        suffix = self._FILE_SUFFIXES.get(kind, ".md")
        if entry.is_file() and entry.name.endswith(suffix):
            return entry.name[: -len(suffix)]
        return None

    def _list_instruction_blocks(self, scope: Scope) -> List[PlacedComponent]:
        path = self.instruction_file(scope)
        if path is None or not self.supports_scope(ComponentKind.INSTRUCTION, scope):
            return []
        if not path.is_file():
            return []
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "[targets] Failed to read instruction file: %s: %s",
                type(exc).__name__,
                exc,
                extra={"target": self.target_id, "path": str(path)},
            )
            return []
        found: List[PlacedComponent] = []
        for match in _BLOCK_BEGIN_RE.finditer(text):
            catalog, plugin = match.group("origin").split("/", 1)
            found.append(
                PlacedComponent(
                    kind=ComponentKind.INSTRUCTION,
                    catalog=catalog,
                    plugin=plugin,
                    name=path.stem,
                    path=path,
                    scope=scope,
                )
            )
        return found


class CodexTarget(TargetAdapter):
    target_id = "codex"
    display_name = "OpenAI Codex"
    supported_kinds = frozenset(
        {ComponentKind.SKILL, ComponentKind.AGENT, ComponentKind.INSTRUCTION}
    )

    def base_dir(self, scope: Scope) -> Path:
        if scope == Scope.PERSONAL:
            return self.context.home / ".codex"
        return self.context.project_root / ".codex"

    def instruction_file(self, scope: Scope) -> Optional[Path]:
        if scope == Scope.PERSONAL:
            return self.context.home / ".codex" / "AGENTS.md"
        return self.context.project_root / "AGENTS.md"


class CopilotTarget(TargetAdapter):
    target_id = "copilot"
    display_name = "GitHub Copilot"
    supported_kinds = frozenset(
        {
            ComponentKind.SKILL,
            ComponentKind.AGENT,
            ComponentKind.COMMAND,
            ComponentKind.INSTRUCTION,
        }
    )

    _KIND_DIRS = {
        ComponentKind.SKILL: "skills",
        ComponentKind.AGENT: "agents",
        ComponentKind.COMMAND: "prompts",
    }
    _FILE_SUFFIXES = {
        ComponentKind.AGENT: ".agent.md",
        ComponentKind.COMMAND: ".prompt.md",
    }

    def supports_scope(self, kind: ComponentKind, scope: Scope) -> bool:
        if not self.supports(kind):
            return False
        # Copilot only reads personal agents; everything else lives in the repository.
        return scope == Scope.PROJECT or kind == ComponentKind.AGENT

    def base_dir(self, scope: Scope) -> Path:
        if scope == Scope.PERSONAL:
            return self.context.home / ".copilot"
        return self.context.project_root / ".github"

    def instruction_file(self, scope: Scope) -> Optional[Path]:
        if scope == Scope.PROJECT:
            return self.context.project_root / ".github" / "copilot-instructions.md"
        return None


class GeminiTarget(TargetAdapter):
    target_id = "gemini"
    display_name = "Gemini CLI"
    supported_kinds = frozenset({ComponentKind.SKILL, ComponentKind.INSTRUCTION})

    def base_dir(self, scope: Scope) -> Path:
        if scope == Scope.PERSONAL:
            return self.context.home / ".gemini"
        return self.context.project_root / ".gemini"

    def instruction_file(self, scope: Scope) -> Optional[Path]:
        if scope == Scope.PERSONAL:
            return self.context.home / ".gemini" / "GEMINI.md"
        return self.context.project_root / "GEMINI.md"


class AntigravityTarget(TargetAdapter):
    target_id = "antigravity"
    display_name = "Google Antigravity"
    supported_kinds = frozenset({ComponentKind.SKILL})

    def base_dir(self, scope: Scope) -> Path:
        if scope == Scope.PERSONAL:
            return self.context.home / ".gemini" / "antigravity"
        return self.context.project_root / ".agent"


class TargetRegistry:
    """Lookup of adapters by target id."""

    def __init__(self, adapters: Iterable[TargetAdapter] = ()) -> None:
        self._adapters: Dict[str, TargetAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: TargetAdapter) -> None:
        if adapter.target_id in self._adapters:
            raise TargetError(f"Target '{adapter.target_id}' is already registered")
        self._adapters[adapter.target_id] = adapter

    def get(self, target_id: str) -> TargetAdapter:
        key = target_id.strip().lower()
        adapter = self._adapters.get(key)
        if adapter is None:
            known = ", ".join(sorted(self._adapters))
            raise TargetError(f"Unknown target '{target_id}'. Known targets: {known}")
        return adapter

    def __contains__(self, target_id: object) -> bool:
        return isinstance(target_id, str) and target_id.strip().lower() in self._adapters

    def all(self) -> List[TargetAdapter]:
        return list(self._adapters.values())

    def ids(self) -> List[str]:
        return list(self._adapters)


BUILTIN_TARGETS = (CodexTarget, CopilotTarget, GeminiTarget, AntigravityTarget)


def default_registry(context: Optional[TargetContext] = None) -> TargetRegistry:
    ctx = context or TargetContext.current()
    return TargetRegistry(adapter_cls(ctx) for adapter_cls in BUILTIN_TARGETS)


__all__ = [
    "AntigravityTarget",
    "BUILTIN_TARGETS",
    "CodexTarget",
    "CopilotTarget",
    "GeminiTarget",
    "INSTRUCTION_BLOCK_BEGIN",
    "INSTRUCTION_BLOCK_END",
    "PlacedComponent",
    "Placement",
    "TargetAdapter",
    "TargetContext",
    "TargetRegistry",
    "default_registry",
]
