from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest

from conftest import build_zip
from plm.core.cache import PluginCacheStore, extract_archive, normalize_source_path
from plm.core.errors import CacheError, NotFound


def test_extract_strips_wrapper_directory(tmp_path: Path) -> None:
    data = build_zip({"skills/pdf/SKILL.md": "pdf", "README.md": "hi"}, wrapper="acme-tools-abc")
    count = extract_archive(data, tmp_path)
    assert count == 2
    assert (tmp_path / "skills" / "pdf" / "SKILL.md").read_text() == "pdf"
    assert (tmp_path / "README.md").exists()
    assert not (tmp_path / "acme-tools-abc").exists()


def test_extract_without_wrapper_keeps_layout(tmp_path: Path) -> None:
    data = build_zip({"README.md": "hi", "agents/a.md": "a"}, wrapper=None)
    extract_archive(data, tmp_path)
    assert (tmp_path / "README.md").exists()
    assert (tmp_path / "agents" / "a.md").exists()


def test_extract_selects_source_path(tmp_path: Path) -> None:
    data = build_zip(
        {
            "plugins/formatter/skills/fmt/SKILL.md": "fmt",
            "plugins/other/skills/x/SKILL.md": "x",
        }
    )
    extract_archive(data, tmp_path, source_path="plugins/formatter")
    assert (tmp_path / "skills" / "fmt" / "SKILL.md").exists()
    assert not (tmp_path / "skills" / "x").exists()


def test_extract_missing_source_path_raises(tmp_path: Path) -> None:
    data = build_zip({"README.md": "hi"})
    with pytest.raises(NotFound):
        extract_archive(data, tmp_path, source_path="plugins/nope")


def test_extract_rejects_path_traversal(tmp_path: Path) -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("wrapper/ok.md", "ok")
        archive.writestr("wrapper/../../evil.md", "evil")
    with pytest.raises(CacheError):
        extract_archive(buffer.getvalue(), tmp_path / "out")
    assert not (tmp_path / "evil.md").exists()


def test_extract_rejects_invalid_zip(tmp_path: Path) -> None:
    with pytest.raises(CacheError):
        extract_archive(b"not a zip", tmp_path)


@pytest.mark.parametrize("raw", ["../x", "a/../../b", "a\\b"])
def test_normalize_source_path_rejects_escapes(raw: str) -> None:
    with pytest.raises(CacheError):
        normalize_source_path(raw)


def test_normalize_source_path_cleans_prefixes() -> None:
    assert normalize_source_path(None) is None
    assert normalize_source_path("./") is None
    assert normalize_source_path("./plugins/fmt/") == "plugins/fmt"


def test_same_plugin_name_in_different_catalogs_is_disjoint(tmp_path: Path) -> None:
    store = PluginCacheStore(tmp_path / "cache")
    first = store.store("market-a", "formatter", build_zip({"a.md": "a"}))
    second = store.store("market-b", "formatter", build_zip({"b.md": "b"}))

    assert first != second
    assert first not in second.parents and second not in first.parents
    assert (first / "a.md").exists() and not (first / "b.md").exists()
    assert (second / "b.md").exists() and not (second / "a.md").exists()
    assert sorted(p.name for p in store.root.iterdir()) == ["market-a", "market-b"]


def test_store_replaces_previous_content(tmp_path: Path) -> None:
    store = PluginCacheStore(tmp_path / "cache")
    store.store("github", "acme--tools", build_zip({"old.md": "old"}))
    target = store.store("github", "acme--tools", build_zip({"new.md": "new"}))
    assert (target / "new.md").exists()
    assert not (target / "old.md").exists()


def test_failed_store_keeps_existing_copy(tmp_path: Path) -> None:
    store = PluginCacheStore(tmp_path / "cache")
    target = store.store("github", "acme--tools", build_zip({"keep.md": "keep"}))
    with pytest.raises(CacheError):
        store.store("github", "acme--tools", b"garbage")
    assert (target / "keep.md").read_text() == "keep"
    assert [p.name for p in target.parent.iterdir()] == ["acme--tools"]


def test_backup_and_restore(tmp_path: Path) -> None:
    store = PluginCacheStore(tmp_path / "cache")
    store.store("github", "acme--tools", build_zip({"v1.md": "1"}))
    assert store.backup("github", "acme--tools") is not None
    store.store("github", "acme--tools", build_zip({"v2.md": "2"}))

    assert store.restore_backup("github", "acme--tools") is True
    target = store.plugin_dir("github", "acme--tools")
    assert (target / "v1.md").exists()
    assert not (target / "v2.md").exists()
    assert [p.name for p in target.parent.iterdir()] == ["acme--tools"]


def test_meta_and_remove(tmp_path: Path) -> None:
    store = PluginCacheStore(tmp_path / "cache")
    target = store.store("github", "acme--tools", build_zip({"a.md": "a"}))
    store.write_meta(target, installed_at="2026-01-02T03:04:05Z")
    assert store.load_meta(target) == {"installedAt": "2026-01-02T03:04:05Z"}

    assert store.remove("github", "acme--tools") is True
    assert not target.exists()
    assert not (tmp_path / "cache" / "github").exists()
    assert store.remove("github", "acme--tools") is False


@pytest.mark.parametrize("plugin", ["..", "a/b", ""])
def test_plugin_dir_rejects_unsafe_names(tmp_path: Path, plugin: str) -> None:
    with pytest.raises(CacheError):
        PluginCacheStore(tmp_path).plugin_dir("github", plugin)
