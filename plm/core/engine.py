"""Plugin lifecycle engine.

``PluginEngine`` ties the pieces together: it resolves what to install
(a repository or a marketplace listing), fetches and caches it, extracts
components, converts them for each target and records the result in the
plugin state file.

Placement for several targets runs on a thread pool since each target's
paths are disjoint; the state file is then written once under its lock.
Per-target problems (unsupported kinds, conflicts, write failures) are
collected into an :class:`OperationReport` instead of aborting the whole
operation.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from plm.core.cache import DIRECT_CATALOG, PluginCacheStore
from plm.core.components import (
    Component,
    ComponentKind,
    Scope,
    format_component_selector,
    parse_component_selector,
    scan_components,
    summarize_components,
)
from plm.core.config import PlmConfig, PlmPaths, get_config, get_paths
from plm.core.convert import DocumentFormat, convert_component, target_format
from plm.core.deployment import (
    copy_skill_dir,
    has_instruction_block,
    remove_placed_path,
    upsert_instruction_block,
    write_component_file,
)
from plm.core.errors import (
    CacheError,
    ManifestInvalid,
    ManifestMissing,
    NotFound,
    PlacementConflict,
    PlmError,
    PluginAlreadyInstalled,
    SyncError,
    TargetError,
    UnsupportedConversion,
)
from plm.core.fetcher import Fetcher, GitHubFetcher, call_with_retries
from plm.core.manifest import PluginManifest, load_manifest
from plm.core.marketplaces import MarketplaceRegistry
from plm.core.source import SourceReference, looks_like_source
from plm.core.state import (
    CachedPlugin,
    PluginStatus,
    StateSnapshot,
    StateStore,
    TargetDeployment,
)
from plm.core.targets import TargetAdapter, TargetContext, TargetRegistry, default_registry
from plm.utils.log import get_logger

logger = get_logger()

_PLACEMENT_WORKERS = 4
_COPILOT_SUFFIXES: Dict[ComponentKind, str] = {
    ComponentKind.AGENT: ".agent.md",
    ComponentKind.COMMAND: ".prompt.md",
}

KindFilter = Optional[Iterable[Union[ComponentKind, str]]]


class OutcomeStatus(str, Enum):
    PLACED = "placed"
    REMOVED = "removed"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass(frozen=True)
class PlacementOutcome:
    """Result for one (target, scope, component) step of an operation."""

    target: str
    scope: Optional[Scope]
    status: OutcomeStatus
    kind: Optional[ComponentKind] = None
    component: Optional[str] = None
    path: Optional[Path] = None
    message: str = ""

    def describe(self) -> str:
        parts = [self.target]
        if self.scope is not None:
            parts.append(self.scope.value)
        if self.kind is not None:
            parts.append(self.kind.value)
        if self.component:
            parts.append(self.component)
        where = "/".join(parts)
        return f"{where}: {self.message}" if self.message else where


@dataclass
class OperationReport:
    """Everything that happened while installing, enabling or removing a plugin."""

    plugin: str
    outcomes: List[PlacementOutcome] = field(default_factory=list)
    record: Optional[CachedPlugin] = None
    warnings: List[str] = field(default_factory=list)

    def add(self, outcome: PlacementOutcome) -> None:
        self.outcomes.append(outcome)

    def extend(self, outcomes: Iterable[PlacementOutcome]) -> None:
        self.outcomes.extend(outcomes)

    def by_status(self, status: OutcomeStatus) -> List[PlacementOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == status]

    @property
    def placed(self) -> List[PlacementOutcome]:
        return self.by_status(OutcomeStatus.PLACED)

    @property
    def removed(self) -> List[PlacementOutcome]:
        return self.by_status(OutcomeStatus.REMOVED)

    @property
    def skipped(self) -> List[PlacementOutcome]:
        return self.by_status(OutcomeStatus.SKIPPED)

    @property
    def conflicts(self) -> List[PlacementOutcome]:
        return self.by_status(OutcomeStatus.CONFLICT)

    @property
    def failures(self) -> List[PlacementOutcome]:
        return self.by_status(OutcomeStatus.FAILED)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        return "; ".join(f"{item.target}: {item.message}" for item in self.failures)


@dataclass(frozen=True)
class InstallPlan:
    """Where a plugin comes from and which (catalog, name) it will be stored under."""

    name: str
    source: SourceReference
    marketplace: Optional[str] = None
    source_path: Optional[str] = None

    @property
    def catalog(self) -> str:
        return self.marketplace or DIRECT_CATALOG

    @property
    def qualified_name(self) -> str:
        return f"{self.name}@{self.catalog}"


class UpdateStatus(str, Enum):
    UPDATED = "updated"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"


@dataclass
class UpdateResult:
    plugin: str
    status: UpdateStatus
    previous_commit: Optional[str] = None
    current_commit: Optional[str] = None
    report: Optional[OperationReport] = None
    error: Optional[str] = None


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class SyncItem:
    plugin: str
    kind: ComponentKind
    component: str
    action: SyncAction
    path: Optional[Path] = None
    reason: str = ""


@dataclass
class SyncReport:
    source: str
    destination: str
    dry_run: bool = False
    items: List[SyncItem] = field(default_factory=list)
    outcomes: List[PlacementOutcome] = field(default_factory=list)

    def count(self, action: SyncAction) -> int:
        return sum(1 for item in self.items if item.action == action)

    @property
    def ok(self) -> bool:
        return not any(item.status == OutcomeStatus.FAILED for item in self.outcomes)


@dataclass(frozen=True)
class PluginSummary:
    name: str
    marketplace: Optional[str]
    qualified_name: str
    version: Optional[str]
    status: PluginStatus
    targets: List[str]
    components: Dict[str, List[str]]
    source: str

    @classmethod
    def from_record(cls, record: CachedPlugin) -> "PluginSummary":
        return cls(
            name=record.name,
            marketplace=record.marketplace,
            qualified_name=record.qualified_name,
            version=record.version,
            status=record.status,
            targets=sorted(record.enabled_targets()),
            components={kind: list(names) for kind, names in record.components.items()},
            source=record.source,
        )


@dataclass(frozen=True)
class PluginDetail:
    record: CachedPlugin
    cache_path: Optional[Path] = None
    installed_at: Optional[str] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    license: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    web_url: Optional[str] = None


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def normalize_kinds(kind_filter: KindFilter) -> Optional[Set[ComponentKind]]:
    if kind_filter is None:
        return None
    if isinstance(kind_filter, (str, ComponentKind)):
        kind_filter = [kind_filter]
    kinds = {
        item if isinstance(item, ComponentKind) else ComponentKind.parse(item)
        for item in kind_filter
    }
    return kinds or None


def normalize_components(selection: Optional[Iterable[str]]) -> Optional[List[str]]:
    """Canonical ``<kinds>/<name>`` selectors, deduplicated in input order."""
    if selection is None:
        return None
    if isinstance(selection, str):
        selection = [selection]
    normalized: List[str] = []
    for raw in selection:
        value = format_component_selector(*parse_component_selector(raw))
        if value not in normalized:
            normalized.append(value)
    return normalized or None


def _filter_components(
    components: Iterable[Component],
    kind_values: Optional[Iterable[str]],
    component_values: Optional[Iterable[str]] = None,
) -> List[Component]:
    selected = list(components)
    if kind_values:
        wanted = {ComponentKind.parse(value) for value in kind_values}
        selected = [component for component in selected if component.kind in wanted]
    if component_values:
        chosen = {parse_component_selector(value) for value in component_values}
        selected = [item for item in selected if (item.kind, item.name) in chosen]
    return selected


def _missing_components(
    components: Iterable[Component], component_values: Optional[Iterable[str]]
) -> List[str]:
    present = {format_component_selector(item.kind, item.name) for item in components}
    return [value for value in component_values or [] if value not in present]


def _source_format(component: Component) -> DocumentFormat:
    suffix = _COPILOT_SUFFIXES.get(component.kind)
    if suffix and component.source_path.name.endswith(suffix):
        return DocumentFormat.COPILOT
    return DocumentFormat.CLAUDE


# (target id, scope, paths the record already holds on that target)
_PlacementPlan = List[Tuple[str, Scope, List[str]]]


class PluginEngine:
    """Install, update, enable, disable, uninstall and sync plugins."""

    def __init__(
        self,
        *,
        paths: PlmPaths,
        config: PlmConfig,
        fetcher: Fetcher,
        targets: TargetRegistry,
        registry: Optional[MarketplaceRegistry] = None,
        max_workers: int = _PLACEMENT_WORKERS,
        retry_delay: float = 0.5,
    ) -> None:
        self.paths = paths
        self.config = config
        self.fetcher = fetcher
        self.targets = targets
        self.registry = registry or MarketplaceRegistry(
            paths.marketplaces_file, paths.marketplace_cache_dir, fetcher
        )
        self.cache = PluginCacheStore(paths.plugin_cache_dir)
        self.state = StateStore(paths.state_file, paths.state_lock)
        self.max_workers = max(1, max_workers)
        self.retry_delay = retry_delay

    @classmethod
    def create(
        cls,
        *,
        paths: Optional[PlmPaths] = None,
        config: Optional[PlmConfig] = None,
        project_root: Optional[Path] = None,
        fetcher: Optional[Fetcher] = None,
    ) -> "PluginEngine":
        """Engine wired to the configured plm home and the real GitHub API."""
        paths = paths or get_paths()
        config = config or get_config()
        if fetcher is None:
            fetcher = GitHubFetcher(api_url=config.github_api_url, timeout=config.http_timeout)
        return cls(
            paths=paths,
            config=config,
            fetcher=fetcher,
            targets=default_registry(TargetContext.current(project_root)),
        )

    # resolution

    def plan_install(self, source_or_name: str) -> InstallPlan:
        """Turn ``owner/repo[@ref]`` or ``name[@marketplace]`` into an install plan."""
        text = source_or_name.strip()
        if looks_like_source(text):
            source = SourceReference.parse(text)
            return InstallPlan(name=source.direct_plugin_name(), source=source)
        match = self.registry.find_plugin(text)
        source, sub_path = match.install_source()
        return InstallPlan(
            name=match.plugin.name,
            source=source,
            marketplace=match.marketplace.name,
            source_path=sub_path,
        )

    def _resolve_commit(self, source: SourceReference) -> str:
        return call_with_retries(
            lambda: self.fetcher.resolve_commit(source, source.ref),
            what=f"commit lookup for {source.full_name}",
            base_delay=self.retry_delay,
        )

    def _download_archive(self, source: SourceReference, commit: str) -> bytes:
        return call_with_retries(
            lambda: self.fetcher.download_archive(source, commit),
            what=f"download of {source.full_name}@{commit}",
            base_delay=self.retry_delay,
        )

    def _resolve_targets(self, targets: Optional[Iterable[str]]) -> List[str]:
        requested = list(targets) if targets else list(self.config.targets)
        resolved: List[str] = []
        for target_id in requested:
            adapter = self.targets.get(target_id)
            if adapter.target_id not in resolved:
                resolved.append(adapter.target_id)
        return resolved

    def _load_manifest(
        self, cache_dir: Path, fallback_name: str, report: Optional[OperationReport] = None
    ) -> Optional[PluginManifest]:
        try:
            return load_manifest(cache_dir, fallback_name=fallback_name)
        except (ManifestMissing, ManifestInvalid) as exc:
            logger.warning(
                "[engine] %s: %s",
                type(exc).__name__,
                exc,
                extra={"plugin": fallback_name, "path": str(cache_dir)},
            )
            if report is not None:
                report.warnings.append(f"{exc}; no components deployed")
            return None

    def _components(self, cache_dir: Path, manifest: Optional[PluginManifest]) -> List[Component]:
        if manifest is None:
            return []
        return scan_components(cache_dir, manifest)

    @staticmethod
    def _warn_missing(
        report: OperationReport, components: List[Component], selection: Optional[List[str]]
    ) -> None:
        for value in _missing_components(components, selection):
            logger.warning(
                "[engine] Selected component not found: %s", value, extra={"plugin": report.plugin}
            )
            report.warnings.append(f"Component not found: {value}")

    @staticmethod
    def _record_scope(record: CachedPlugin, default: Scope) -> Scope:
        first = next(iter(record.deployments.values()), None)
        return first.scope if first is not None else default

    # placement

    def _render(self, component: Component, target_id: str) -> str:
        target_format(component.kind, target_id)
        if component.kind == ComponentKind.SKILL:
            return ""
        content = component.source_path.read_text(encoding="utf-8")
        return convert_component(
            component.kind,
            target_id,
            content,
            name=component.name,
            source_format=_source_format(component),
        )

    @staticmethod
    def _conflict(
        path: Path, owned: Dict[str, str], own: Set[str], force: bool
    ) -> Optional[PlacementConflict]:
        key = str(path)
        owner = owned.get(key)
        if owner is not None:
            return PlacementConflict(path, owner)
        if key in own or force:
            return None
        if path.exists() or path.is_symlink():
            return PlacementConflict(path)
        return None

    def _place_target(
        self,
        adapter: TargetAdapter,
        scope: Scope,
        record: CachedPlugin,
        components: List[Component],
        *,
        owned: Dict[str, str],
        own_paths: List[str],
        force: bool,
        prune_stale: bool = True,
    ) -> Tuple[List[str], List[PlacementOutcome]]:
        target_id = adapter.target_id
        own = set(own_paths)
        placed: List[str] = []
        outcomes: List[PlacementOutcome] = []
        instruction_path: Optional[Path] = None
        instruction_bodies: List[str] = []
        instruction_names: List[str] = []

        def note(
            component: Component,
            status: OutcomeStatus,
            message: str,
            path: Optional[Path] = None,
        ) -> None:
            outcomes.append(
                PlacementOutcome(
                    target=target_id,
                    scope=scope,
                    status=status,
                    kind=component.kind,
                    component=component.name,
                    path=path,
                    message=message,
                )
            )

        for component in components:
            kind = component.kind
            if not adapter.supports(kind):
                message = f"{adapter.display_name} has no {kind.plural}"
                note(component, OutcomeStatus.SKIPPED, message)
                continue
            placement = adapter.placement(kind, scope, record.catalog, record.name, component.name)
            if placement is None:
                note(
                    component,
                    OutcomeStatus.SKIPPED,
                    f"{kind.plural} are not available at {scope.value} scope",
                )
                continue
            try:
                content = self._render(component, target_id)
            except UnsupportedConversion as exc:
                note(component, OutcomeStatus.SKIPPED, str(exc))
                continue
            except (OSError, UnicodeDecodeError) as exc:
                note(
                    component,
                    OutcomeStatus.FAILED,
                    f"cannot read {component.source_path}: {type(exc).__name__}: {exc}",
                )
                continue

            if placement.shared:
                instruction_path = placement.path
                instruction_bodies.append(content.strip("\n"))
                instruction_names.append(component.name)
                continue

            conflict = self._conflict(placement.path, owned, own, force)
            if conflict is not None:
                note(component, OutcomeStatus.CONFLICT, str(conflict), placement.path)
                continue
            try:
                if placement.is_directory:
                    copy_skill_dir(component.source_path, placement.path)
                else:
                    write_component_file(placement.path, content)
            except OSError as exc:
                note(
                    component,
                    OutcomeStatus.FAILED,
                    f"cannot write {placement.path}: {type(exc).__name__}: {exc}",
                    placement.path,
                )
                continue
            placed.append(str(placement.path))
            note(component, OutcomeStatus.PLACED, "placed", placement.path)

        if instruction_path is not None:
            label = ", ".join(instruction_names)
            try:
                upsert_instruction_block(
                    instruction_path, record.origin, "\n\n".join(instruction_bodies)
                )
            except (OSError, UnicodeDecodeError) as exc:
                outcomes.append(
                    PlacementOutcome(
                        target=target_id,
                        scope=scope,
                        status=OutcomeStatus.FAILED,
                        kind=ComponentKind.INSTRUCTION,
                        component=label,
                        path=instruction_path,
                        message=f"cannot update {instruction_path}: {type(exc).__name__}: {exc}",
                    )
                )
            else:
                placed.append(str(instruction_path))
                outcomes.append(
                    PlacementOutcome(
                        target=target_id,
                        scope=scope,
                        status=OutcomeStatus.PLACED,
                        kind=ComponentKind.INSTRUCTION,
                        component=label,
                        path=instruction_path,
                        message="placed",
                    )
                )

        if prune_stale:
            for stale in sorted(own - set(placed)):
                removed, remaining = self._remove_paths(target_id, scope, record, [stale])
                outcomes.extend(removed)
                placed.extend(remaining)
        return placed, outcomes

    def _deploy(
        self,
        snapshot: StateSnapshot,
        record: CachedPlugin,
        components: List[Component],
        plan: _PlacementPlan,
        *,
        force: bool = False,
        prune_stale: bool = True,
    ) -> Tuple[Dict[str, TargetDeployment], List[PlacementOutcome]]:
        owned = snapshot.owned_paths(exclude=record.key)
        selected = _filter_components(components, record.kind_filter, record.component_filter)
        outcomes: List[PlacementOutcome] = []
        jobs: List[Tuple[TargetAdapter, Scope, List[str]]] = []
        for target_id, scope, own_paths in plan:
            try:
                jobs.append((self.targets.get(target_id), scope, own_paths))
            except TargetError as exc:
                outcomes.append(
                    PlacementOutcome(target_id, scope, OutcomeStatus.FAILED, message=str(exc))
                )

        deployments: Dict[str, TargetDeployment] = {}
        if not jobs:
            return deployments, outcomes
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(jobs))) as pool:
            futures = [
                (
                    adapter,
                    scope,
                    pool.submit(
                        self._place_target,
                        adapter,
                        scope,
                        record,
                        selected,
                        owned=owned,
                        own_paths=own_paths,
                        force=force,
                        prune_stale=prune_stale,
                    ),
                )
                for adapter, scope, own_paths in jobs
            ]
            for adapter, scope, future in futures:
                try:
                    placed, target_outcomes = future.result()
                except (PlmError, OSError) as exc:
                    logger.warning(
                        "[engine] Placement failed: %s: %s",
                        type(exc).__name__,
                        exc,
                        extra={"plugin": record.qualified_name, "target": adapter.target_id},
                    )
                    outcomes.append(
                        PlacementOutcome(
                            adapter.target_id, scope, OutcomeStatus.FAILED, message=str(exc)
                        )
                    )
                    continue
                outcomes.extend(target_outcomes)
                deployments[adapter.target_id] = TargetDeployment(
                    scope=scope, enabled=True, placed_paths=placed
                )
        return deployments, outcomes

    def _instruction_files(self, target_id: str, scope: Optional[Scope]) -> Set[str]:
        """Shared instruction files of ``target_id``; these are never deleted outright."""
        try:
            adapter = self.targets.get(target_id)
        except TargetError:
            return set()
        scopes = [scope] if scope is not None else list(Scope)
        files: Set[str] = set()
        for item in scopes:
            path = adapter.instruction_file(item)
            if path is not None:
                files.add(str(path))
        return files

    def _remove_paths(
        self, target_id: str, scope: Optional[Scope], record: CachedPlugin, paths: List[str]
    ) -> Tuple[List[PlacementOutcome], List[str]]:
        """Undo placements; returns outcomes and the paths that could not be removed."""
        outcomes: List[PlacementOutcome] = []
        remaining: List[str] = []
        shared = self._instruction_files(target_id, scope)
        for raw in paths:
            path = Path(raw)
            try:
                removed = remove_placed_path(path, record.origin, shared=raw in shared)
            except (OSError, UnicodeDecodeError) as exc:
                remaining.append(raw)
                outcomes.append(
                    PlacementOutcome(
                        target_id,
                        scope,
                        OutcomeStatus.FAILED,
                        path=path,
                        message=f"cannot remove {path}: {type(exc).__name__}: {exc}",
                    )
                )
                continue
            outcomes.append(
                PlacementOutcome(
                    target_id,
                    scope,
                    OutcomeStatus.REMOVED if removed else OutcomeStatus.SKIPPED,
                    path=path,
                    message="removed" if removed else "already absent",
                )
            )
        return outcomes, remaining

    def _selected_deployments(
        self, record: CachedPlugin, targets: Optional[Iterable[str]], report: OperationReport
    ) -> List[str]:
        if not targets:
            return list(record.deployments)
        selected: List[str] = []
        for raw in targets:
            target_id = raw.strip().lower()
            if target_id in record.deployments:
                if target_id not in selected:
                    selected.append(target_id)
                continue
            report.add(
                PlacementOutcome(
                    target_id,
                    None,
                    OutcomeStatus.SKIPPED,
                    message=f"{record.qualified_name} is not deployed to {target_id}",
                )
            )
        return selected

    # operations

    def install(
        self,
        source_or_name: str,
        *,
        targets: Optional[Iterable[str]] = None,
        scope: Optional[Scope] = None,
        kind_filter: KindFilter = None,
        components: Optional[Iterable[str]] = None,
        force: bool = False,
    ) -> OperationReport:
        """Fetch a plugin, deploy it to ``targets`` and record it as enabled.

        ``components`` picks single components as ``<kind>/<name>`` (for
        example ``skills/pdf``) and cannot be combined with ``kind_filter``.
        The selection is kept on the record so enable and update honour it.
        """
        kinds = normalize_kinds(kind_filter)
        selection = normalize_components(components)
        if kinds and selection:
            raise ValueError("Choose either component kinds or single components, not both")
        plan = self.plan_install(source_or_name)
        target_ids = self._resolve_targets(targets)
        scope = scope or self.config.default_scope
        existing = self.state.get(plan.catalog, plan.name)
        if existing is not None and not force:
            raise PluginAlreadyInstalled(
                f"{existing.qualified_name} is already installed; use --force to reinstall"
            )

        report = OperationReport(plugin=plan.qualified_name)
        commit = self._resolve_commit(plan.source)
        archive = self._download_archive(plan.source, commit)
        cache_dir = self.cache.store(
            plan.catalog, plan.name, archive, source_path=plan.source_path
        )
        installed_at = _utc_stamp()
        self.cache.write_meta(cache_dir, installed_at=installed_at)
        manifest = self._load_manifest(cache_dir, plan.name, report)
        found = self._components(cache_dir, manifest)
        self._warn_missing(report, found, selection)

        with self.state.transaction() as snapshot:
            previous = snapshot.get(plan.catalog, plan.name)
            if previous is not None and not force:
                raise PluginAlreadyInstalled(
                    f"{previous.qualified_name} is already installed; use --force to reinstall"
                )
            record = CachedPlugin(
                name=plan.name,
                source=plan.source.raw_input,
                marketplace=plan.marketplace,
                version=manifest.version if manifest else None,
                description=manifest.description if manifest else "",
                installed_commit=commit,
                author=manifest.author.display() if manifest and manifest.author else None,
                components=summarize_components(found),
                installed_at=installed_at,
                source_path=plan.source_path,
                kind_filter=sorted(kind.value for kind in kinds) if kinds else None,
                component_filter=selection,
            )
            own: Dict[str, List[str]] = {}
            if previous is not None:
                for target_id, deployment in previous.deployments.items():
                    if target_id in target_ids:
                        own[target_id] = deployment.placed_paths
                        continue
                    removed, _remaining = self._remove_paths(
                        target_id, deployment.scope, previous, deployment.placed_paths
                    )
                    report.extend(removed)
            placement_plan = [(tid, scope, own.get(tid, [])) for tid in target_ids]
            deployments, outcomes = self._deploy(
                snapshot, record, found, placement_plan, force=force
            )
            report.extend(outcomes)
            record.deployments = deployments
            snapshot.upsert(record)

        report.record = record
        logger.info(
            "[engine] Installed %s",
            record.qualified_name,
            extra={
                "commit": commit,
                "targets": target_ids,
                "placed": len(report.placed),
                "skipped": len(report.skipped),
                "conflicts": len(report.conflicts),
                "failed": len(report.failures),
            },
        )
        return report

    def update(self, name: Optional[str] = None) -> List[UpdateResult]:
        """Update one plugin, or every installed plugin when ``name`` is None."""
        if name is None:
            return self.update_all()
        return [self._update_record(self.state.find(name))]

    def update_all(self) -> List[UpdateResult]:
        records = list(self.state.load().plugins)
        if not records:
            return []
        workers = min(self.max_workers, len(records))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self._update_record, records))

    def _update_record(self, record: CachedPlugin) -> UpdateResult:
        label = record.qualified_name
        try:
            source = record.source_reference
            commit = self._resolve_commit(source)
        except PlmError as exc:
            logger.warning(
                "[engine] Update check failed: %s: %s",
                type(exc).__name__,
                exc,
                extra={"plugin": label},
            )
            return UpdateResult(
                label, UpdateStatus.FAILED, previous_commit=record.installed_commit, error=str(exc)
            )
        if commit == record.installed_commit:
            return UpdateResult(label, UpdateStatus.UP_TO_DATE, commit, commit)

        self.cache.backup(record.catalog, record.name)
        try:
            report = self._apply_update(record, source, commit)
        except (PlmError, OSError) as exc:
            self.cache.restore_backup(record.catalog, record.name)
            logger.warning(
                "[engine] Update failed, cache restored: %s: %s",
                type(exc).__name__,
                exc,
                extra={"plugin": label},
            )
            return UpdateResult(
                label,
                UpdateStatus.FAILED,
                previous_commit=record.installed_commit,
                current_commit=commit,
                error=str(exc),
            )
        self.cache.discard_backup(record.catalog, record.name)
        logger.info(
            "[engine] Updated %s",
            label,
            extra={"from": record.installed_commit, "to": commit},
        )
        return UpdateResult(
            label,
            UpdateStatus.UPDATED,
            previous_commit=record.installed_commit,
            current_commit=commit,
            report=report,
        )

    def _apply_update(
        self, record: CachedPlugin, source: SourceReference, commit: str
    ) -> OperationReport:
        report = OperationReport(plugin=record.qualified_name)
        archive = self._download_archive(source, commit)
        cache_dir = self.cache.store(
            record.catalog, record.name, archive, source_path=record.source_path
        )
        self.cache.write_meta(cache_dir)
        manifest = self._load_manifest(cache_dir, record.name, report)
        components = self._components(cache_dir, manifest)
        self._warn_missing(report, components, record.component_filter)

        with self.state.transaction() as snapshot:
            current = snapshot.get(*record.key)
            if current is None:
                raise NotFound(f"{record.qualified_name} was uninstalled during the update")
            plan = [
                (target_id, deployment.scope, deployment.placed_paths)
                for target_id, deployment in current.deployments.items()
                if deployment.enabled
            ]
            deployments, outcomes = self._deploy(snapshot, current, components, plan)
            report.extend(outcomes)
            current.deployments.update(deployments)
            current.installed_commit = commit
            if manifest is not None:
                current.version = manifest.version
                current.description = manifest.description
                current.author = manifest.author.display() if manifest.author else None
            current.components = summarize_components(components)
            snapshot.upsert(current)
        report.record = current
        return report

    def disable(self, name: str, *, targets: Optional[Iterable[str]] = None) -> OperationReport:
        """Remove placed files but keep the cache and the record."""
        with self.state.transaction() as snapshot:
            record = snapshot.find(name)
            report = OperationReport(plugin=record.qualified_name, record=record)
            for target_id in self._selected_deployments(record, targets, report):
                deployment = record.deployments[target_id]
                if not deployment.enabled:
                    report.add(
                        PlacementOutcome(
                            target_id,
                            deployment.scope,
                            OutcomeStatus.SKIPPED,
                            message="already disabled",
                        )
                    )
                    continue
                outcomes, remaining = self._remove_paths(
                    target_id, deployment.scope, record, deployment.placed_paths
                )
                report.extend(outcomes)
                deployment.enabled = False
                deployment.placed_paths = remaining
            record.refresh_status()
        logger.info(
            "[engine] Disabled %s",
            record.qualified_name,
            extra={"status": record.status.value, "removed": len(report.removed)},
        )
        return report

    def enable(self, name: str, *, targets: Optional[Iterable[str]] = None) -> OperationReport:
        """Re-place a plugin from its cached copy; never touches the network."""
        with self.state.transaction() as snapshot:
            record = snapshot.find(name)
            report = OperationReport(plugin=record.qualified_name, record=record)
            cache_dir = self.cache.plugin_dir(record.catalog, record.name)
            if not cache_dir.is_dir():
                raise CacheError(
                    f"Cached copy of {record.qualified_name} is missing; "
                    "reinstall it with --force"
                )
            manifest = self._load_manifest(cache_dir, record.name, report)
            components = self._components(cache_dir, manifest)

            if targets:
                target_ids = self._resolve_targets(targets)
            else:
                target_ids = list(record.deployments) or self._resolve_targets(None)
            default_scope = self._record_scope(record, self.config.default_scope)
            plan: _PlacementPlan = []
            for target_id in target_ids:
                deployment = record.deployments.get(target_id)
                if deployment is None:
                    plan.append((target_id, default_scope, []))
                else:
                    plan.append((target_id, deployment.scope, deployment.placed_paths))
            deployments, outcomes = self._deploy(snapshot, record, components, plan)
            report.extend(outcomes)
            record.deployments.update(deployments)
            record.refresh_status()
        logger.info(
            "[engine] Enabled %s",
            record.qualified_name,
            extra={"targets": target_ids, "placed": len(report.placed)},
        )
        return report

    def uninstall(self, name: str, *, targets: Optional[Iterable[str]] = None) -> OperationReport:
        """Remove deployments; the cache and record go once no deployment is left."""
        with self.state.transaction() as snapshot:
            record = snapshot.find(name)
            report = OperationReport(plugin=record.qualified_name, record=record)
            for target_id in self._selected_deployments(record, targets, report):
                deployment = record.deployments.pop(target_id)
                outcomes, remaining = self._remove_paths(
                    target_id, deployment.scope, record, deployment.placed_paths
                )
                report.extend(outcomes)
                if remaining:
                    record.deployments[target_id] = TargetDeployment(
                        scope=deployment.scope, enabled=False, placed_paths=remaining
                    )
            if record.deployments:
                record.refresh_status()
            else:
                snapshot.remove(record)
                self.cache.discard_backup(record.catalog, record.name)
                self.cache.remove(record.catalog, record.name)
                report.record = None
        logger.info(
            "[engine] Uninstalled %s",
            record.qualified_name,
            extra={"removed": len(report.removed), "kept": report.record is not None},
        )
        return report

    def list(
        self, *, target_filter: Optional[str] = None, kind_filter: KindFilter = None
    ) -> List[PluginSummary]:
        """Installed plugins from the state file; no network access."""
        kinds = normalize_kinds(kind_filter)
        target_id = target_filter.strip().lower() if target_filter else None
        summaries: List[PluginSummary] = []
        for record in sorted(self.state.load().plugins, key=lambda item: item.key):
            if target_id is not None and target_id not in record.deployments:
                continue
            if kinds and not any(record.components.get(kind.plural) for kind in kinds):
                continue
            summaries.append(PluginSummary.from_record(record))
        return summaries

    def info(self, name: str) -> PluginDetail:
        record = self.state.find(name)
        cache_dir = self.cache.plugin_dir(record.catalog, record.name)
        manifest: Optional[PluginManifest] = None
        meta: Dict[str, str] = {}
        if cache_dir.is_dir():
            manifest = self._load_manifest(cache_dir, record.name)
            meta = self.cache.load_meta(cache_dir)
        try:
            web_url: Optional[str] = record.source_reference.web_url()
        except PlmError:
            web_url = None
        return PluginDetail(
            record=record,
            cache_path=cache_dir if cache_dir.is_dir() else None,
            installed_at=meta.get("installedAt") or record.installed_at,
            homepage=manifest.homepage if manifest else None,
            repository=manifest.repository if manifest else None,
            license=manifest.license if manifest else None,
            keywords=list(manifest.keywords) if manifest else [],
            web_url=web_url,
        )

    def sync(
        self,
        from_target: str,
        to_target: str,
        *,
        kind_filter: KindFilter = None,
        scope: Optional[Scope] = None,
        dry_run: bool = False,
    ) -> SyncReport:
        """Copy what plm placed on ``from_target`` onto ``to_target``."""
        source = self.targets.get(from_target)
        destination = self.targets.get(to_target)
        if source.target_id == destination.target_id:
            raise SyncError(f"Cannot sync '{source.target_id}' onto itself")
        kinds = normalize_kinds(kind_filter)
        report = SyncReport(
            source=source.target_id, destination=destination.target_id, dry_run=dry_run
        )
        if dry_run:
            self._sync_snapshot(self.state.load(), source, destination, kinds, scope, report)
            return report
        with self.state.transaction() as snapshot:
            self._sync_snapshot(
                snapshot, source, destination, kinds, scope, report, apply=True
            )
        logger.info(
            "[engine] Synced %s -> %s",
            source.target_id,
            destination.target_id,
            extra={
                "create": report.count(SyncAction.CREATE),
                "update": report.count(SyncAction.UPDATE),
                "skip": report.count(SyncAction.SKIP),
            },
        )
        return report

    def _sync_item(
        self, record: CachedPlugin, component: Component, destination: TargetAdapter, scope: Scope
    ) -> SyncItem:
        kind = component.kind

        def skip(reason: str) -> SyncItem:
            return SyncItem(
                record.qualified_name, kind, component.name, SyncAction.SKIP, reason=reason
            )

        if not destination.supports(kind):
            return skip(f"{destination.display_name} has no {kind.plural}")
        placement = destination.placement(
            kind, scope, record.catalog, record.name, component.name
        )
        if placement is None:
            return skip(f"{kind.plural} are not available at {scope.value} scope")
        try:
            target_format(kind, destination.target_id)
        except UnsupportedConversion as exc:
            return skip(str(exc))
        if placement.shared:
            exists = has_instruction_block(placement.path, record.origin)
        else:
            exists = placement.path.exists()
        action = SyncAction.UPDATE if exists else SyncAction.CREATE
        return SyncItem(record.qualified_name, kind, component.name, action, path=placement.path)

    def _sync_snapshot(
        self,
        snapshot: StateSnapshot,
        source: TargetAdapter,
        destination: TargetAdapter,
        kinds: Optional[Set[ComponentKind]],
        scope: Optional[Scope],
        report: SyncReport,
        *,
        apply: bool = False,
    ) -> None:
        for record in sorted(snapshot.plugins, key=lambda item: item.key):
            deployment = record.deployments.get(source.target_id)
            if deployment is None or not deployment.enabled:
                continue
            if scope is not None and deployment.scope != scope:
                continue
            cache_dir = self.cache.plugin_dir(record.catalog, record.name)
            if not cache_dir.is_dir():
                report.outcomes.append(
                    PlacementOutcome(
                        destination.target_id,
                        deployment.scope,
                        OutcomeStatus.FAILED,
                        message=f"cached copy of {record.qualified_name} is missing",
                    )
                )
                continue
            components = self._components(cache_dir, self._load_manifest(cache_dir, record.name))
            placed_on_source = set(deployment.placed_paths)
            to_place: List[Component] = []
            for component in components:
                if kinds and component.kind not in kinds:
                    continue
                origin = source.placement(
                    component.kind, deployment.scope, record.catalog, record.name, component.name
                )
                if origin is None or str(origin.path) not in placed_on_source:
                    continue
                item = self._sync_item(record, component, destination, deployment.scope)
                report.items.append(item)
                if item.action != SyncAction.SKIP:
                    to_place.append(component)

            if not apply or not to_place:
                continue
            existing = record.deployments.get(destination.target_id)
            own = list(existing.placed_paths) if existing else []
            sync_plan = [(destination.target_id, deployment.scope, own)]
            deployments, outcomes = self._deploy(
                snapshot, record, to_place, sync_plan, prune_stale=False
            )
            report.outcomes.extend(outcomes)
            placed = deployments.get(destination.target_id)
            if placed is None:
                continue
            merged = own + [path for path in placed.placed_paths if path not in own]
            record.deployments[destination.target_id] = TargetDeployment(
                scope=deployment.scope, enabled=True, placed_paths=merged
            )
            record.refresh_status()
        self._report_untracked(snapshot, source, kinds, scope, report)

    @staticmethod
    def _report_untracked(
        snapshot: StateSnapshot,
        source: TargetAdapter,
        kinds: Optional[Set[ComponentKind]],
        scope: Optional[Scope],
        report: SyncReport,
    ) -> None:
        """Placements found on ``source`` that no state record owns are listed as skipped."""
        tracked = {
            raw
            for record in snapshot.plugins
            for deployment in record.deployments.values()
            for raw in deployment.placed_paths
        }
        for item_scope in [scope] if scope is not None else list(Scope):
            for placed in source.list_placed(item_scope):
                if kinds and placed.kind not in kinds:
                    continue
                if placed.kind == ComponentKind.INSTRUCTION:
                    if snapshot.get(placed.catalog, placed.plugin) is not None:
                        continue
                elif str(placed.path) in tracked:
                    continue
                report.items.append(
                    SyncItem(
                        f"{placed.plugin}@{placed.catalog}",
                        placed.kind,
                        placed.name,
                        SyncAction.SKIP,
                        path=placed.path,
                        reason="not recorded in the plm state file",
                    )
                )


__all__ = [
    "InstallPlan",
    "OperationReport",
    "OutcomeStatus",
    "PlacementOutcome",
    "PluginDetail",
    "PluginEngine",
    "PluginSummary",
    "SyncAction",
    "SyncItem",
    "SyncReport",
    "UpdateResult",
    "UpdateStatus",
    "normalize_components",
    "normalize_kinds",
]
