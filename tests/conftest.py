"""Pytest configuration and fixtures for all tests."""

from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from plm.core.config import PlmConfig, PlmPaths, reset_config_manager
from plm.core.engine import PluginEngine
from plm.core.errors import NetworkError, NotFound
from plm.core.fetcher import clear_token_cache
from plm.core.source import SourceReference
from plm.core.targets import TargetContext, default_registry


SAMPLE_PLUGIN_FILES: Dict[str, str] = {
    ".claude-plugin/plugin.json": json.dumps(
        {
            "name": "tools",
            "version": "1.0.0",
            "description": "Handy tools",
            "author": {"name": "Acme", "email": "dev@acme.test"},
            "homepage": "https://acme.test/tools",
            "license": "MIT",
            "keywords": ["lint", "review"],
        }
    ),
    "skills/lint/SKILL.md": "---\nname: lint\ndescription: Lint the code\n---\nRun the linter.\n",
    "skills/lint/scripts/run.sh": "#!/bin/sh\necho lint\n",
    "agents/reviewer.md": (
        "---\nname: reviewer\ndescription: Reviews code\ntools: Read, Grep, Bash\n"
        "model: sonnet\n---\nReview carefully.\n"
    ),
    "commands/fix.md": (
        "---\ndescription: Fix an issue\nallowed-tools: Read, Edit\nargument-hint: [issue]\n"
        "---\nFix issue $ARGUMENTS now.\n"
    ),
    "instructions/style.md": "Prefer small functions.\n",
}


def build_zip(files: Dict[str, str], wrapper: Optional[str] = "repo-main") -> bytes:
    """Zip ``files`` the way GitHub zipballs do (one wrapper directory)."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        if wrapper:
            archive.writestr(f"{wrapper}/", "")
        for name, content in files.items():
            archive.writestr(f"{wrapper}/{name}" if wrapper else name, content)
    return buffer.getvalue()


class FakeFetcher:
    """In-memory stand-in for :class:`GitHubFetcher` that counts calls."""

    def __init__(self) -> None:
        self.repos: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.fail_downloads = False
        self.failure_retryable = True
        self.transient_failures = 0

    def add_repo(self, full_name: str, files: Dict[str, str], commit: str = "c1") -> None:
        self.repos[full_name] = {"files": dict(files), "commit": commit}

    def _repo(self, source: SourceReference) -> Dict[str, Any]:
        repo = self.repos.get(source.full_name)
        if repo is None:
            raise NotFound(f"repository {source.full_name} not found (404)")
        return repo

    def _maybe_fail(self) -> None:
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise NetworkError("GitHub returned 502", retryable=True, status=502)

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def resolve_default_branch(self, source: SourceReference) -> str:
        self.calls.append(("resolve_default_branch", source.full_name, None))
        self._repo(source)
        return "main"

    def resolve_commit(self, source: SourceReference, ref: Optional[str] = None) -> str:
        self.calls.append(("resolve_commit", source.full_name, ref))
        self._maybe_fail()
        return self._repo(source)["commit"]

    def download_archive(self, source: SourceReference, ref: Optional[str] = None) -> bytes:
        self.calls.append(("download_archive", source.full_name, ref))
        if self.fail_downloads:
            raise NetworkError("connection reset", retryable=self.failure_retryable)
        self._maybe_fail()
        repo = self._repo(source)
        wrapper = f"{source.owner}-{source.name}-{repo['commit'][:7]}"
        return build_zip(repo["files"], wrapper=wrapper)

    def fetch_file(self, source: SourceReference, path: str, ref: Optional[str] = None) -> str:
        self.calls.append(("fetch_file", source.full_name, ref))
        files = self._repo(source)["files"]
        if path not in files:
            raise NotFound(f"{path} in {source.full_name} not found (404)")
        return files[path]


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME and PLM_HOME at temporary directories for every test."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("PLM_HOME", str(tmp_path / "plm"))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GH_TOKEN", raising=False)
    clear_token_cache()
    reset_config_manager()
    yield home
    clear_token_cache()


@pytest.fixture
def home_dir(isolated_home: Path) -> Path:
    return isolated_home


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def plm_paths(tmp_path: Path) -> PlmPaths:
    return PlmPaths(tmp_path / "plm")


@pytest.fixture
def fetcher() -> FakeFetcher:
    repo_fetcher = FakeFetcher()
    repo_fetcher.add_repo("acme/tools", SAMPLE_PLUGIN_FILES)
    return repo_fetcher


@pytest.fixture
def make_engine(
    plm_paths: PlmPaths, home_dir: Path, project_dir: Path, fetcher: FakeFetcher
) -> Callable[..., PluginEngine]:
    def factory(targets: Optional[List[str]] = None) -> PluginEngine:
        config = PlmConfig(targets=targets or ["codex", "copilot"])
        context = TargetContext(home=home_dir, project_root=project_dir)
        return PluginEngine(
            paths=plm_paths,
            config=config,
            fetcher=fetcher,
            targets=default_registry(context),
            max_workers=2,
            retry_delay=0,
        )

    return factory


@pytest.fixture
def engine(make_engine: Callable[..., PluginEngine]) -> PluginEngine:
    return make_engine()
