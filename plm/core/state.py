"""Persisted plugin state (``plugins.json``).

The file is a JSON array of :class:`CachedPlugin` records. Every mutation
goes through :meth:`StateStore.transaction`, which holds an exclusive lock
on ``plugins.lock`` for the whole read-modify-write and replaces the file
atomically at the end. An unreadable file raises ``StateCorrupted``; it is
never reset behind the user's back.
"""

from __future__ import annotations

import contextlib
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Tuple

from plm.core.cache import DIRECT_CATALOG
from plm.core.components import Scope
from plm.core.errors import Ambiguous, InvalidSourceFormat, NotFound, StateCorrupted
from plm.core.source import SourceReference
from plm.utils.file_io import locked_path, write_json_atomic
from plm.utils.log import get_logger

logger = get_logger()


class PluginStatus(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


@dataclass
class TargetDeployment:
    """What one target holds of a plugin."""

    scope: Scope
    enabled: bool = True
    placed_paths: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope.value,
            "enabled": self.enabled,
            "placed_paths": list(self.placed_paths),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetDeployment":
        paths = data.get("placed_paths") or []
        if not isinstance(paths, list):
            raise ValueError("placed_paths must be a list")
        return cls(
            scope=Scope(data.get("scope", Scope.PERSONAL.value)),
            enabled=bool(data.get("enabled", True)),
            placed_paths=[str(item) for item in paths],
        )


@dataclass
class CachedPlugin:
    """The persisted unit of truth for one installed plugin.

    Identity is ``(catalog, name)`` where ``catalog`` is the marketplace
    name, or ``github`` for plugins installed straight from a repository.
    """

    name: str
    source: str
    marketplace: Optional[str] = None
    version: Optional[str] = None
    description: str = ""
    status: PluginStatus = PluginStatus.ENABLED
    installed_commit: Optional[str] = None
    author: Optional[str] = None
    components: Dict[str, List[str]] = field(default_factory=dict)
    deployments: Dict[str, TargetDeployment] = field(default_factory=dict)
    installed_at: Optional[str] = None
    source_path: Optional[str] = None
    kind_filter: Optional[List[str]] = None
    component_filter: Optional[List[str]] = None

    @property
    def catalog(self) -> str:
        return self.marketplace or DIRECT_CATALOG

    @property
    def key(self) -> Tuple[str, str]:
        return (self.catalog, self.name)

    @property
    def qualified_name(self) -> str:
        return f"{self.name}@{self.catalog}"

    @property
    def origin(self) -> str:
        return f"{self.catalog}/{self.name}"

    @property
    def source_reference(self) -> SourceReference:
        return SourceReference.parse(self.source)

    def refresh_status(self) -> None:
        if self.deployments:
            enabled = any(dep.enabled for dep in self.deployments.values())
            self.status = PluginStatus.ENABLED if enabled else PluginStatus.DISABLED

    def enabled_targets(self) -> List[str]:
        return [tid for tid, dep in self.deployments.items() if dep.enabled]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source,
            "marketplace": self.marketplace,
            "version": self.version,
            "description": self.description,
            "status": self.status.value,
            "installed_commit": self.installed_commit,
            "author": self.author,
            "components": {kind: list(names) for kind, names in self.components.items()},
            "deployments": {
                target_id: deployment.to_dict()
                for target_id, deployment in sorted(self.deployments.items())
            },
            "installed_at": self.installed_at,
            "source_path": self.source_path,
            "kind_filter": self.kind_filter,
            "component_filter": self.component_filter,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CachedPlugin":
        if not isinstance(data, dict):
            raise ValueError("plugin record must be an object")
        name = data.get("name")
        source = data.get("source")
        if not isinstance(name, str) or not name or not isinstance(source, str):
            raise ValueError("plugin record needs 'name' and 'source'")
        raw_components = data.get("components") or {}
        raw_deployments = data.get("deployments") or {}
        if not isinstance(raw_components, dict) or not isinstance(raw_deployments, dict):
            raise ValueError(f"malformed record for '{name}'")
        kind_filter = data.get("kind_filter")
        component_filter = data.get("component_filter")
        return cls(
            name=name,
            source=source,
            marketplace=data.get("marketplace") or None,
            version=data.get("version"),
            description=data.get("description") or "",
            status=PluginStatus(data.get("status", PluginStatus.ENABLED.value)),
            installed_commit=data.get("installed_commit"),
            author=data.get("author"),
            components={
                str(kind): [str(item) for item in names]
                for kind, names in raw_components.items()
                if isinstance(names, list)
            },
            deployments={
                str(target_id): TargetDeployment.from_dict(value)
                for target_id, value in raw_deployments.items()
                if isinstance(value, dict)
            },
            installed_at=data.get("installed_at"),
            source_path=data.get("source_path"),
            kind_filter=[str(item) for item in kind_filter] if kind_filter else None,
            component_filter=(
                [str(item) for item in component_filter] if component_filter else None
            ),
        )


class StateSnapshot:
    """In-memory view of the state file, mutated inside a transaction."""

    def __init__(self, plugins: Optional[List[CachedPlugin]] = None) -> None:
        self.plugins: List[CachedPlugin] = list(plugins or [])

    def get(self, catalog: str, name: str) -> Optional[CachedPlugin]:
        for record in self.plugins:
            if record.key == (catalog, name):
                return record
        return None

    def upsert(self, record: CachedPlugin) -> None:
        for index, existing in enumerate(self.plugins):
            if existing.key == record.key:
                self.plugins[index] = record
                return
        self.plugins.append(record)

    def remove(self, record: CachedPlugin) -> bool:
        before = len(self.plugins)
        self.plugins = [item for item in self.plugins if item.key != record.key]
        return len(self.plugins) != before

    def find(self, query: str) -> CachedPlugin:
        """Look a record up by ``name``, ``name@catalog`` or ``owner/repo``."""
        text = query.strip()
        name, _, catalog = text.partition("@")
        if catalog and "/" not in name:
            record = self.get(catalog, name)
            if record is None:
                raise NotFound(f"Plugin '{text}' is not installed")
            return record
        if "/" in text:
            try:
                name = SourceReference.parse(text).direct_plugin_name()
            except InvalidSourceFormat:
                pass
        matches = [record for record in self.plugins if record.name == name]
        if not matches:
            raise NotFound(f"Plugin '{text}' is not installed")
        if len(matches) > 1:
            raise Ambiguous(text, matches, [record.qualified_name for record in matches])
        return matches[0]

    def owned_paths(self, exclude: Optional[Tuple[str, str]] = None) -> Dict[str, str]:
        """Map each placed path to the record that owns it."""
        owners: Dict[str, str] = {}
        for record in self.plugins:
            if record.key == exclude:
                continue
            for deployment in record.deployments.values():
                for placed in deployment.placed_paths:
                    owners.setdefault(placed, record.qualified_name)
        return owners

    def to_payload(self) -> List[Dict[str, Any]]:
        ordered = sorted(self.plugins, key=lambda record: record.key)
        return [record.to_dict() for record in ordered]


class StateStore:
    """Reads and writes ``plugins.json`` under ``plugins.lock``."""

    def __init__(self, state_file: Path, lock_file: Path) -> None:
        self.state_file = state_file
        self.lock_file = lock_file

    def load(self) -> StateSnapshot:
        path = self.state_file
        if not path.exists():
            return StateSnapshot()
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, IOError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StateCorrupted(path, f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(payload, list):
            raise StateCorrupted(path, "expected a JSON array of plugin records")
        plugins: List[CachedPlugin] = []
        for index, item in enumerate(payload):
            try:
                plugins.append(CachedPlugin.from_dict(item))
            except (ValueError, TypeError) as exc:
                raise StateCorrupted(path, f"record {index}: {exc}") from exc
        return StateSnapshot(plugins)

    def get(self, catalog: str, name: str) -> Optional[CachedPlugin]:
        return self.load().get(catalog, name)

    def find(self, query: str) -> CachedPlugin:
        return self.load().find(query)

    def save(self, snapshot: StateSnapshot) -> None:
        write_json_atomic(self.state_file, snapshot.to_payload(), prefix=".plugins_")
        logger.debug(
            "[state] Saved plugin state",
            extra={"path": str(self.state_file), "plugins": len(snapshot.plugins)},
        )

    @contextlib.contextmanager
    def transaction(self) -> Generator[StateSnapshot, None, None]:
        """Locked read-modify-write; nothing is written if the block raises."""
        with locked_path(self.lock_file):
            snapshot = self.load()
            yield snapshot
            self.save(snapshot)


__all__ = [
    "CachedPlugin",
    "PluginStatus",
    "StateSnapshot",
    "StateStore",
    "TargetDeployment",
]
