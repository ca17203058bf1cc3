from __future__ import annotations

import json
import multiprocessing
from pathlib import Path

import pytest

from plm.core.components import Scope
from plm.core.errors import Ambiguous, NotFound, StateCorrupted
from plm.core.state import (
    CachedPlugin,
    PluginStatus,
    StateSnapshot,
    StateStore,
    TargetDeployment,
)
from plm.utils import file_io


def _store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "plugins.json", tmp_path / "plugins.lock")


def _record(name: str, marketplace: str = "", paths=None) -> CachedPlugin:
    return CachedPlugin(
        name=name,
        source="acme/market",
        marketplace=marketplace or None,
        installed_commit="c1",
        deployments={
            "codex": TargetDeployment(scope=Scope.PERSONAL, placed_paths=list(paths or []))
        },
    )


def _add_records(directory: str, worker: int, count: int) -> None:
    store = _store(Path(directory))
    for index in range(count):
        with store.transaction() as snapshot:
            snapshot.upsert(_record(f"plugin-{worker}-{index}", f"market-{worker}"))


def test_missing_file_is_an_empty_snapshot(tmp_path: Path) -> None:
    assert _store(tmp_path).load().plugins == []


def test_transaction_persists_records_as_json_array(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with store.transaction() as snapshot:
        snapshot.upsert(_record("formatter", "market-a", ["/x/a"]))
        snapshot.upsert(_record("acme--tools"))

    payload = json.loads((tmp_path / "plugins.json").read_text())
    assert isinstance(payload, list)
    assert [item["name"] for item in payload] == ["acme--tools", "formatter"]

    loaded = store.get("market-a", "formatter")
    assert loaded is not None
    assert loaded.deployments["codex"].placed_paths == ["/x/a"]
    assert loaded.qualified_name == "formatter@market-a"
    assert loaded.origin == "market-a/formatter"
    assert store.get("github", "acme--tools") is not None


def test_transaction_does_not_save_when_block_raises(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(RuntimeError):
        with store.transaction() as snapshot:
            snapshot.upsert(_record("formatter", "market-a"))
            raise RuntimeError("boom")
    assert not (tmp_path / "plugins.json").exists()


@pytest.mark.parametrize("content", ["{broken", '{"plugins": []}', '[{"name": 3}]'])
def test_corrupt_state_is_reported_not_reset(tmp_path: Path, content: str) -> None:
    (tmp_path / "plugins.json").write_text(content)
    with pytest.raises(StateCorrupted):
        _store(tmp_path).load()
    assert (tmp_path / "plugins.json").read_text() == content


def test_find_by_name_qualified_name_and_repository() -> None:
    snapshot = StateSnapshot(
        [_record("formatter", "market-a"), _record("formatter", "market-b"), _record("acme--tools")]
    )
    with pytest.raises(Ambiguous) as excinfo:
        snapshot.find("formatter")
    assert sorted(excinfo.value.candidates) == ["formatter@market-a", "formatter@market-b"]
    assert snapshot.find("formatter@market-b").marketplace == "market-b"
    assert snapshot.find("acme/tools").name == "acme--tools"
    assert snapshot.find("acme--tools@github").name == "acme--tools"
    with pytest.raises(NotFound):
        snapshot.find("missing")
    with pytest.raises(NotFound):
        snapshot.find("formatter@market-c")


def test_owned_paths_excludes_the_given_record() -> None:
    first = _record("formatter", "market-a", ["/p/a"])
    second = _record("formatter", "market-b", ["/p/b"])
    snapshot = StateSnapshot([first, second])
    assert snapshot.owned_paths() == {"/p/a": "formatter@market-a", "/p/b": "formatter@market-b"}
    assert snapshot.owned_paths(exclude=first.key) == {"/p/b": "formatter@market-b"}


def test_refresh_status_follows_deployments() -> None:
    record = _record("formatter", "market-a")
    record.deployments["copilot"] = TargetDeployment(scope=Scope.PROJECT, enabled=False)
    record.refresh_status()
    assert record.status == PluginStatus.ENABLED
    record.deployments["codex"].enabled = False
    record.refresh_status()
    assert record.status == PluginStatus.DISABLED
    assert record.enabled_targets() == []


def test_record_round_trips_through_dict() -> None:
    record = _record("formatter", "market-a", ["/p/a"])
    record.kind_filter = ["skill"]
    record.components = {"skills": ["pdf"], "agents": []}
    assert CachedPlugin.from_dict(record.to_dict()) == record


@pytest.mark.skipif(file_io.fcntl is None, reason="needs flock")
def test_concurrent_processes_never_lose_an_update(tmp_path: Path) -> None:
    context = multiprocessing.get_context("spawn")
    workers = [
        context.Process(target=_add_records, args=(str(tmp_path), worker, 3))
        for worker in range(4)
    ]
    for process in workers:
        process.start()
    for process in workers:
        process.join(timeout=60)
        assert process.exitcode == 0

    names = sorted(record.name for record in _store(tmp_path).load().plugins)
    assert names == sorted(f"plugin-{w}-{i}" for w in range(4) for i in range(3))


def test_component_filter_round_trips_and_defaults_to_none() -> None:
    record = _record("tools")
    record.component_filter = ["skills/lint", "agents/reviewer"]
    data = record.to_dict()
    assert data["component_filter"] == ["skills/lint", "agents/reviewer"]
    assert CachedPlugin.from_dict(data) == record
    del data["component_filter"]
    assert CachedPlugin.from_dict(data).component_filter is None
