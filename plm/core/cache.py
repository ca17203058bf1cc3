"""On-disk plugin cache: ``<cache root>/<catalog>/<plugin>/``.

Archives downloaded from GitHub wrap their content in one top-level
directory (``owner-repo-<sha>/``); it is stripped on extraction. An
optional ``source_path`` picks a plugin out of a marketplace monorepo.
Extraction goes to a hidden sibling directory first and is moved into
place only once complete, so a failed download never leaves a partial
plugin behind.
"""

from __future__ import annotations

import io
import os
import shutil
import stat
import tempfile
import zipfile
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple

from plm.core.errors import CacheError, NotFound
from plm.core.manifest import PluginManifest, load_manifest
from plm.utils.file_io import read_json_file, write_json_atomic
from plm.utils.log import get_logger

logger = get_logger()

DIRECT_CATALOG = "github"
META_FILE = ".plm-meta.json"
_BACKUP_SUFFIX = ".backup"


def normalize_source_path(raw: Optional[str]) -> Optional[str]:
    """Validate a repository-relative sub path; ``None`` for the repository root."""
    if raw is None:
        return None
    value = raw.strip()
    if "\\" in value:
        raise CacheError(f"Invalid source path '{raw}': backslashes are not allowed")
    while value.startswith("./"):
        value = value[2:]
    value = value.strip("/")
    if not value or value == ".":
        return None
    parts = value.split("/")
    if any(part in ("..", "") for part in parts):
        raise CacheError(f"Invalid source path '{raw}': must stay inside the repository")
    return "/".join(part for part in parts if part != ".")


def _check_segment(value: str, label: str) -> None:
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise CacheError(f"Invalid {label} name '{value}' for the plugin cache")


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(info.external_attr >> 16)


def _safe_parts(name: str) -> Tuple[str, ...]:
    if "\\" in name:
        raise CacheError(f"Archive entry uses backslashes: {name}")
    path = PurePosixPath(name)
    if path.is_absolute() or any(part == ".." for part in path.parts):
        raise CacheError(f"Archive entry escapes the extraction root: {name}")
    return tuple(part for part in path.parts if part not in ("", "."))


def _common_prefix(entries: List[Tuple[zipfile.ZipInfo, Tuple[str, ...]]]) -> Optional[str]:
    roots = {parts[0] for _info, parts in entries if parts}
    if len(roots) != 1:
        return None
    root = next(iter(roots))
    # A lone file at the top level is content, not a wrapper directory.
    for info, parts in entries:
        if len(parts) == 1 and not info.is_dir():
            return None
    return root


def extract_archive(data: bytes, destination: Path, *, source_path: Optional[str] = None) -> int:
    """Extract a zip archive into ``destination``; returns the number of files written."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise CacheError(f"Downloaded archive is not a valid zip file: {exc}") from exc

    with archive:
        entries: List[Tuple[zipfile.ZipInfo, Tuple[str, ...]]] = []
        for info in archive.infolist():
            parts = _safe_parts(info.filename)
            if _is_symlink(info):
                raise CacheError(f"Archive contains a symbolic link: {info.filename}")
            if parts:
                entries.append((info, parts))

        prefix = _common_prefix(entries)
        sub_parts = tuple(source_path.split("/")) if source_path else ()
        written = 0
        matched = False
        for info, parts in entries:
            relative = parts[1:] if prefix is not None else parts
            if sub_parts:
                if relative[: len(sub_parts)] != sub_parts:
                    continue
                relative = relative[len(sub_parts):]
                matched = True
            if not relative:
                continue
            target = destination.joinpath(*relative)
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst)
            mode = (info.external_attr >> 16) & 0o777
            if mode & 0o111:
                target.chmod(mode | 0o600)
            written += 1

    if sub_parts and not matched:
        raise NotFound(f"Path '{source_path}' not found in downloaded archive")
    return written


class PluginCacheStore:
    """Cache subtrees keyed by ``(catalog, plugin name)``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def plugin_dir(self, catalog: str, plugin: str) -> Path:
        _check_segment(catalog, "catalog")
        _check_segment(plugin, "plugin")
        return self.root / catalog / plugin

    def exists(self, catalog: str, plugin: str) -> bool:
        return self.plugin_dir(catalog, plugin).is_dir()

    def store(
        self,
        catalog: str,
        plugin: str,
        archive_bytes: bytes,
        *,
        source_path: Optional[str] = None,
    ) -> Path:
        """Replace the cached copy of ``(catalog, plugin)`` with the archive content."""
        target = self.plugin_dir(catalog, plugin)
        target.parent.mkdir(parents=True, exist_ok=True)
        normalized = normalize_source_path(source_path)

        temp_dir = Path(tempfile.mkdtemp(dir=str(target.parent), prefix=f".{plugin}.tmp-"))
        try:
            count = extract_archive(archive_bytes, temp_dir, source_path=normalized)
            if target.exists():
                stale = target.with_name(f".{plugin}.old-{os.getpid()}")
                os.replace(target, stale)
                os.replace(temp_dir, target)
                shutil.rmtree(stale, ignore_errors=True)
            else:
                os.replace(temp_dir, target)
        except Exception:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise
        logger.debug(
            "[cache] Stored plugin",
            extra={"catalog": catalog, "plugin": plugin, "files": count, "path": str(target)},
        )
        return target

    def remove(self, catalog: str, plugin: str) -> bool:
        target = self.plugin_dir(catalog, plugin)
        if not target.exists():
            return False
        shutil.rmtree(target)
        catalog_dir = target.parent
        try:
            if catalog_dir.is_dir() and not any(catalog_dir.iterdir()):
                catalog_dir.rmdir()
        except OSError:
            logger.debug("[cache] Catalog directory not removed", extra={"path": str(catalog_dir)})
        return True

    def _backup_dir(self, catalog: str, plugin: str) -> Path:
        return self.plugin_dir(catalog, plugin).with_name(f"{plugin}{_BACKUP_SUFFIX}")

    def backup(self, catalog: str, plugin: str) -> Optional[Path]:
        """Copy the current cache subtree aside before an update."""
        source = self.plugin_dir(catalog, plugin)
        if not source.is_dir():
            return None
        backup = self._backup_dir(catalog, plugin)
        if backup.exists():
            shutil.rmtree(backup)
        shutil.copytree(source, backup, symlinks=True)
        return backup

    def restore_backup(self, catalog: str, plugin: str) -> bool:
        backup = self._backup_dir(catalog, plugin)
        if not backup.is_dir():
            return False
        target = self.plugin_dir(catalog, plugin)
        if target.exists():
            shutil.rmtree(target)
        os.replace(backup, target)
        logger.info(
            "[cache] Restored plugin cache from backup",
            extra={"catalog": catalog, "plugin": plugin},
        )
        return True

    def discard_backup(self, catalog: str, plugin: str) -> None:
        backup = self._backup_dir(catalog, plugin)
        if backup.exists():
            shutil.rmtree(backup, ignore_errors=True)

    def load_manifest(self, cache_path: Path) -> PluginManifest:
        return load_manifest(cache_path)

    def write_meta(self, cache_path: Path, *, installed_at: Optional[str] = None) -> None:
        stamp = installed_at or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        write_json_atomic(cache_path / META_FILE, {"installedAt": stamp})

    def load_meta(self, cache_path: Path) -> Dict[str, str]:
        payload = read_json_file(cache_path / META_FILE, area="cache")
        if not isinstance(payload, dict):
            return {}
        return {key: value for key, value in payload.items() if isinstance(value, str)}


__all__ = [
    "DIRECT_CATALOG",
    "META_FILE",
    "PluginCacheStore",
    "extract_archive",
    "normalize_source_path",
]
