"""Plugin manifest (``plugin.json``) loading.

The manifest is read-only input: plm never rewrites it. Component path
fields supplement the default directories and must stay inside the
plugin root.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from plm.core.components import ComponentKind, default_component_paths
from plm.core.errors import ManifestInvalid, ManifestMissing
from plm.utils.log import get_logger

logger = get_logger()

PLUGIN_MANIFEST_CANDIDATES: Tuple[Path, ...] = (
    Path(".claude-plugin") / "plugin.json",
    Path("plugin.json"),
)

_KIND_FIELDS: Dict[ComponentKind, str] = {
    ComponentKind.SKILL: "skills",
    ComponentKind.AGENT: "agents",
    ComponentKind.COMMAND: "commands",
    ComponentKind.INSTRUCTION: "instructions",
    ComponentKind.HOOK: "hooks",
}


@dataclass(frozen=True)
class PluginAuthor:
    name: str
    email: Optional[str] = None
    url: Optional[str] = None

    def display(self) -> str:
        return f"{self.name} <{self.email}>" if self.email else self.name


@dataclass
class PluginManifest:
    name: str
    version: Optional[str] = None
    description: str = ""
    author: Optional[PluginAuthor] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    license: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    component_declarations: Dict[ComponentKind, List[str]] = field(default_factory=dict)
    mcp_servers: Any = None
    lsp_servers: Any = None
    path: Optional[Path] = None

    def component_paths(self, plugin_root: Path) -> Dict[ComponentKind, List[Path]]:
        """Default directories plus validated manifest declarations."""
        paths = default_component_paths(plugin_root)
        for kind, raw_values in self.component_declarations.items():
            for raw in raw_values:
                resolved, err = _resolve_declared_path(plugin_root, raw, _KIND_FIELDS[kind])
                if err:
                    logger.warning(
                        "[manifest] Ignoring component path: %s",
                        err,
                        extra={"plugin": self.name},
                    )
                    continue
                if resolved is not None and resolved not in paths[kind]:
                    paths[kind].append(resolved)
        return paths


def find_manifest(plugin_root: Path) -> Optional[Path]:
    for relative in PLUGIN_MANIFEST_CANDIDATES:
        candidate = plugin_root / relative
        if candidate.exists() and candidate.is_file():
            return candidate
    return None


def _resolve_declared_path(
    plugin_root: Path, raw_path: str, field_name: str
) -> Tuple[Optional[Path], Optional[str]]:
    value = raw_path.strip()
    if not value:
        return None, None
    path_obj = Path(value)
    if path_obj.is_absolute():
        return None, f"{field_name}: absolute paths are not allowed ({value})"
    resolved = (plugin_root / path_obj).resolve()
    try:
        relative = resolved.relative_to(plugin_root.resolve())
    except ValueError:
        return None, f"{field_name}: path escapes plugin root ({value})"
    return plugin_root / relative, None


def _coerce_path_values(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, str)]


def _coerce_author(raw: Any) -> Optional[PluginAuthor]:
    if isinstance(raw, str) and raw.strip():
        return PluginAuthor(name=raw.strip())
    if isinstance(raw, dict) and isinstance(raw.get("name"), str):
        email = raw.get("email")
        url = raw.get("url")
        return PluginAuthor(
            name=raw["name"],
            email=email if isinstance(email, str) else None,
            url=url if isinstance(url, str) else None,
        )
    return None


def _optional_str(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, (str, int, float)):
        text = str(raw).strip()
        return text or None
    return None


def parse_manifest(data: Any, *, fallback_name: str, path: Optional[Path] = None) -> PluginManifest:
    if not isinstance(data, dict):
        raise ManifestInvalid(f"{path or 'plugin.json'}: expected a JSON object")

    raw_name = data.get("name")
    name = raw_name.strip() if isinstance(raw_name, str) and raw_name.strip() else fallback_name

    repository = data.get("repository")
    if isinstance(repository, dict):
        repository = repository.get("url")

    keywords = data.get("keywords")
    declarations: Dict[ComponentKind, List[str]] = {}
    for kind, field_name in _KIND_FIELDS.items():
        values = _coerce_path_values(data.get(field_name))
        if values:
            declarations[kind] = values

    return PluginManifest(
        name=name,
        version=_optional_str(data.get("version")),
        description=str(data.get("description") or ""),
        author=_coerce_author(data.get("author")),
        homepage=_optional_str(data.get("homepage")),
        repository=_optional_str(repository),
        license=_optional_str(data.get("license")),
        keywords=[item for item in keywords if isinstance(item, str)]
        if isinstance(keywords, list)
        else [],
        component_declarations=declarations,
        mcp_servers=data.get("mcpServers"),
        lsp_servers=data.get("lspServers"),
        path=path,
    )


def load_manifest(plugin_root: Path, *, fallback_name: Optional[str] = None) -> PluginManifest:
    """Read the manifest of a plugin directory.

    Raises ``ManifestMissing`` when no manifest file exists and
    ``ManifestInvalid`` when it cannot be parsed.
    """
    manifest_path = find_manifest(plugin_root)
    if manifest_path is None:
        raise ManifestMissing(f"No plugin.json found in {plugin_root}")
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, IOError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestInvalid(
            f"Invalid manifest JSON at {manifest_path}: {type(exc).__name__}: {exc}"
        ) from exc
    return parse_manifest(data, fallback_name=fallback_name or plugin_root.name, path=manifest_path)


__all__ = [
    "PLUGIN_MANIFEST_CANDIDATES",
    "PluginAuthor",
    "PluginManifest",
    "find_manifest",
    "load_manifest",
    "parse_manifest",
]
