"""Marketplace registration, catalog caching and plugin-name resolution.

A marketplace is a GitHub repository holding
``[<source_path>/].claude-plugin/marketplace.json``. Registrations live in
``marketplaces.json``; each catalog is snapshotted to
``cache/marketplaces/<name>.json`` and only replaced by an explicit
refresh (or fetched on first use when no snapshot exists).
"""

from __future__ import annotations

import concurrent.futures
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from plm.core.cache import DIRECT_CATALOG, normalize_source_path
from plm.core.errors import (
    Ambiguous,
    CacheError,
    DuplicateName,
    InvalidName,
    InvalidSourceFormat,
    ManifestInvalid,
    NotFound,
)
from plm.core.fetcher import Fetcher
from plm.core.source import SourceReference
from plm.utils.file_io import locked_path, read_json_file, write_json_atomic
from plm.utils.log import get_logger

logger = get_logger()

MARKETPLACE_MANIFEST = ".claude-plugin/marketplace.json"
MAX_NAME_LENGTH = 64
RESERVED_NAMES = frozenset({DIRECT_CATALOG})
_NAME_RE = re.compile(r"^[a-z0-9._-]+$")
_REFRESH_WORKERS = 4


def validate_marketplace_name(raw: str) -> str:
    """Return the lowercased name or raise ``InvalidName``."""
    name = (raw or "").strip().lower()
    if not name:
        raise InvalidName("Marketplace name must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidName(f"Marketplace name '{name}' exceeds {MAX_NAME_LENGTH} characters")
    if not _NAME_RE.match(name):
        raise InvalidName(
            f"Marketplace name '{name}' may only contain lowercase letters, digits, "
            "'.', '_' and '-'"
        )
    if name[0] in ".-" or name[-1] in ".-":
        raise InvalidName(f"Marketplace name '{name}' must not start or end with '.' or '-'")
    if name in RESERVED_NAMES:
        raise InvalidName(f"Marketplace name '{name}' is reserved")
    return name


def normalize_marketplace_source(raw: str) -> str:
    """``anthropics/x``, URLs and ``github:`` forms all become ``github:owner/repo[@ref]``."""
    reference = SourceReference.parse(raw)
    return f"github:{reference.canonical}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class MarketplaceEntry:
    name: str
    source: str
    source_path: Optional[str] = None

    @property
    def source_reference(self) -> SourceReference:
        return SourceReference.parse(self.source)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "source": self.source}
        if self.source_path:
            payload["source_path"] = self.source_path
        return payload


@dataclass(frozen=True)
class MarketplaceOwner:
    name: Optional[str] = None
    email: Optional[str] = None


PluginSourceSpec = Union[str, Dict[str, Any]]


@dataclass(frozen=True)
class CatalogPlugin:
    name: str
    source: PluginSourceSpec
    description: str = ""
    version: Optional[str] = None

    @property
    def is_external(self) -> bool:
        return isinstance(self.source, dict)

    def source_label(self) -> str:
        if isinstance(self.source, dict):
            repo = self.source.get("repo") or self.source.get("url") or "?"
            return f"{self.source.get('source', 'github')}:{repo}"
        return self.source

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source,
            "description": self.description,
            "version": self.version,
        }


@dataclass
class MarketplaceCatalog:
    name: str
    source: str
    fetched_at: Optional[datetime] = None
    owner: MarketplaceOwner = field(default_factory=MarketplaceOwner)
    plugins: List[CatalogPlugin] = field(default_factory=list)

    def find(self, plugin_name: str) -> Optional[CatalogPlugin]:
        for plugin in self.plugins:
            if plugin.name == plugin_name:
                return plugin
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "fetched_at": _format_timestamp(self.fetched_at) if self.fetched_at else None,
            "source": self.source,
            "owner": {"name": self.owner.name, "email": self.owner.email},
            "plugins": [plugin.to_dict() for plugin in self.plugins],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], *, fallback_name: str) -> "MarketplaceCatalog":
        return cls(
            name=str(data.get("name") or fallback_name),
            source=str(data.get("source") or ""),
            fetched_at=_parse_timestamp(data.get("fetched_at")),
            owner=_parse_owner(data.get("owner")),
            plugins=_parse_catalog_plugins(data.get("plugins"), plugin_root=None),
        )


def _parse_owner(raw: Any) -> MarketplaceOwner:
    if not isinstance(raw, dict):
        return MarketplaceOwner()
    name = raw.get("name")
    email = raw.get("email")
    return MarketplaceOwner(
        name=name if isinstance(name, str) else None,
        email=email if isinstance(email, str) else None,
    )


def _parse_catalog_plugins(raw: Any, *, plugin_root: Optional[str]) -> List[CatalogPlugin]:
    if not isinstance(raw, list):
        return []
    plugins: List[CatalogPlugin] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        source = item.get("source")
        if isinstance(source, str):
            if plugin_root and not source.startswith(("./", "/")):
                source = f"{plugin_root.rstrip('/')}/{source}"
        elif not isinstance(source, dict):
            source = f"./plugins/{name.strip()}"
        version = item.get("version")
        plugins.append(
            CatalogPlugin(
                name=name.strip(),
                source=source,
                description=str(item.get("description") or ""),
                version=str(version) if version is not None else None,
            )
        )
    return plugins


@dataclass(frozen=True)
class PluginMatch:
    """One marketplace listing for a requested plugin name."""

    marketplace: MarketplaceEntry
    plugin: CatalogPlugin

    @property
    def qualified_name(self) -> str:
        return f"{self.plugin.name}@{self.marketplace.name}"

    def install_source(self) -> Tuple[SourceReference, Optional[str]]:
        """Repository and sub path that hold this plugin's files."""
        source = self.plugin.source
        if isinstance(source, dict):
            kind = str(source.get("source") or "github").lower()
            if kind == "github" and isinstance(source.get("repo"), str):
                reference = SourceReference.parse(source["repo"])
            elif kind in ("url", "git") and isinstance(source.get("url"), str):
                reference = SourceReference.parse(source["url"])
            else:
                raise InvalidSourceFormat(
                    json.dumps(source), f"unsupported plugin source in {self.marketplace.name}"
                )
            ref = source.get("ref")
            if isinstance(ref, str) and ref.strip():
                reference = reference.with_ref(ref.strip())
            sub_path = source.get("path")
            if not isinstance(sub_path, str):
                sub_path = None
            try:
                return reference, normalize_source_path(sub_path)
            except CacheError as exc:
                raise InvalidSourceFormat(str(sub_path), str(exc)) from exc

        base = self.marketplace.source_reference
        try:
            plugin_path = normalize_source_path(source)
        except CacheError as exc:
            raise InvalidSourceFormat(source, str(exc)) from exc
        return base, plugin_path


@dataclass(frozen=True)
class RefreshResult:
    name: str
    ok: bool
    plugin_count: int = 0
    error: Optional[str] = None


class MarketplaceRegistry:
    """Registered marketplaces plus their cached catalogs."""

    def __init__(self, registry_file: Path, cache_dir: Path, fetcher: Fetcher) -> None:
        self.registry_file = registry_file
        self.cache_dir = cache_dir
        self.fetcher = fetcher

    # registration file

    def _lock_path(self) -> Path:
        return self.registry_file.with_name(self.registry_file.name + ".lock")

    def list(self) -> List[MarketplaceEntry]:
        payload = read_json_file(self.registry_file, area="marketplace")
        if not isinstance(payload, dict):
            return []
        raw_entries = payload.get("marketplaces")
        if not isinstance(raw_entries, list):
            return []
        entries: List[MarketplaceEntry] = []
        for item in raw_entries:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            source = item.get("source")
            if not isinstance(name, str) or not isinstance(source, str):
                continue
            source_path = item.get("source_path")
            entries.append(
                MarketplaceEntry(
                    name=name,
                    source=source,
                    source_path=source_path if isinstance(source_path, str) else None,
                )
            )
        return entries

    def _save(self, entries: Iterable[MarketplaceEntry]) -> None:
        write_json_atomic(
            self.registry_file,
            {"marketplaces": [entry.to_dict() for entry in entries]},
        )

    def get(self, name: str) -> MarketplaceEntry:
        wanted = name.strip().lower()
        for entry in self.list():
            if entry.name == wanted:
                return entry
        raise NotFound(f"Marketplace '{name}' is not registered")

    def register(
        self,
        source: str,
        name: Optional[str] = None,
        source_path: Optional[str] = None,
    ) -> Tuple[MarketplaceEntry, MarketplaceCatalog]:
        """Register a marketplace and snapshot its catalog.

        The catalog is fetched before anything is written so a bad source
        never leaves a dangling registration.
        """
        reference = SourceReference.parse(source)
        try:
            normalized_path = normalize_source_path(source_path)
        except CacheError as exc:
            raise InvalidSourceFormat(source_path or "", str(exc)) from exc
        registry_name = validate_marketplace_name(name or reference.name)

        with locked_path(self._lock_path()):
            entries = self.list()
            if any(entry.name == registry_name for entry in entries):
                raise DuplicateName(f"Marketplace '{registry_name}' is already registered")
            entry = MarketplaceEntry(
                name=registry_name,
                source=f"github:{reference.canonical}",
                source_path=normalized_path,
            )
            catalog = self._fetch_catalog(entry)
            self._save([*entries, entry])
            self._write_catalog(catalog)

        logger.info(
            "[marketplace] Registered marketplace",
            extra={"marketplace": registry_name, "source": entry.source},
        )
        return entry, catalog

    def unregister(self, name: str) -> MarketplaceEntry:
        """Drop the registration and catalog snapshot; installed plugins stay."""
        with locked_path(self._lock_path()):
            entry = self.get(name)
            self._save([item for item in self.list() if item.name != entry.name])
            cache_file = self._catalog_file(entry.name)
            if cache_file.exists():
                cache_file.unlink()
        logger.info("[marketplace] Removed marketplace", extra={"marketplace": entry.name})
        return entry

    # catalogs

    def _catalog_file(self, name: str) -> Path:
        return self.cache_dir / f"{name}.json"

    def _fetch_catalog(self, entry: MarketplaceEntry) -> MarketplaceCatalog:
        manifest_path = MARKETPLACE_MANIFEST
        if entry.source_path:
            manifest_path = f"{entry.source_path}/{MARKETPLACE_MANIFEST}"
        reference = entry.source_reference
        text = self.fetcher.fetch_file(reference, manifest_path, reference.ref)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ManifestInvalid(
                f"{manifest_path} in {reference.full_name} is not valid JSON: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ManifestInvalid(f"{manifest_path} in {reference.full_name} must be a JSON object")

        metadata = data.get("metadata")
        plugin_root = None
        if isinstance(metadata, dict) and isinstance(metadata.get("pluginRoot"), str):
            plugin_root = metadata["pluginRoot"]
        return MarketplaceCatalog(
            name=entry.name,
            source=entry.source,
            fetched_at=_utc_now(),
            owner=_parse_owner(data.get("owner")),
            plugins=_parse_catalog_plugins(data.get("plugins"), plugin_root=plugin_root),
        )

    def _write_catalog(self, catalog: MarketplaceCatalog) -> None:
        write_json_atomic(self._catalog_file(catalog.name), catalog.to_dict())

    def cached_catalog(self, name: str) -> Optional[MarketplaceCatalog]:
        payload = read_json_file(self._catalog_file(name), area="marketplace")
        if not isinstance(payload, dict):
            return None
        return MarketplaceCatalog.from_dict(payload, fallback_name=name)

    def load_catalog(self, name: str, *, fetch_if_missing: bool = True) -> MarketplaceCatalog:
        entry = self.get(name)
        cached = self.cached_catalog(entry.name)
        if cached is not None:
            return cached
        if not fetch_if_missing:
            raise NotFound(f"No cached catalog for marketplace '{entry.name}'")
        return self.refresh(entry.name)

    def refresh(self, name: str) -> MarketplaceCatalog:
        entry = self.get(name)
        catalog = self._fetch_catalog(entry)
        self._write_catalog(catalog)
        logger.debug(
            "[marketplace] Refreshed catalog",
            extra={"marketplace": entry.name, "plugins": len(catalog.plugins)},
        )
        return catalog

    def _refresh_one(self, name: str) -> RefreshResult:
        try:
            catalog = self.refresh(name)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "[marketplace] Failed to refresh %s: %s: %s",
                name,
                type(exc).__name__,
                exc,
            )
            return RefreshResult(name=name, ok=False, error=f"{type(exc).__name__}: {exc}")
        return RefreshResult(name=name, ok=True, plugin_count=len(catalog.plugins))

    def refresh_all(self, names: Optional[Iterable[str]] = None) -> List[RefreshResult]:
        """Refresh catalogs concurrently; one failure never stops the others."""
        targets = list(names) if names is not None else [entry.name for entry in self.list()]
        if not targets:
            return []
        workers = min(_REFRESH_WORKERS, len(targets))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(self._refresh_one, targets))
        return results

    def catalog_age(self, name: str, *, now: Optional[datetime] = None) -> Optional[timedelta]:
        catalog = self.cached_catalog(name)
        if catalog is None or catalog.fetched_at is None:
            return None
        return (now or _utc_now()) - catalog.fetched_at

    def is_stale(self, name: str, ttl_hours: int, *, now: Optional[datetime] = None) -> bool:
        age = self.catalog_age(name, now=now)
        return age is None or age > timedelta(hours=ttl_hours)

    # resolution

    def resolve(self, query: str) -> List[PluginMatch]:
        """Every marketplace listing a plugin called ``query`` (``name[@marketplace]``)."""
        plugin_name, _, marketplace = query.strip().partition("@")
        if marketplace:
            entries = [self.get(marketplace)]
        else:
            entries = self.list()
        matches: List[PluginMatch] = []
        for entry in entries:
            catalog = self.load_catalog(entry.name)
            plugin = catalog.find(plugin_name)
            if plugin is not None:
                matches.append(PluginMatch(marketplace=entry, plugin=plugin))
        return matches

    def find_plugin(self, query: str) -> PluginMatch:
        matches = self.resolve(query)
        if not matches:
            raise NotFound(f"Plugin '{query}' was not found in any registered marketplace")
        if len(matches) > 1:
            raise Ambiguous(
                query.strip(), matches, [match.qualified_name for match in matches]
            )
        return matches[0]


__all__ = [
    "CatalogPlugin",
    "MARKETPLACE_MANIFEST",
    "MarketplaceCatalog",
    "MarketplaceEntry",
    "MarketplaceOwner",
    "MarketplaceRegistry",
    "PluginMatch",
    "RefreshResult",
    "normalize_marketplace_source",
    "validate_marketplace_name",
]
