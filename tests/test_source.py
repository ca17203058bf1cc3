from __future__ import annotations

import pytest

from plm.core.errors import InvalidSourceFormat
from plm.core.source import SourceReference, looks_like_source


@pytest.mark.parametrize(
    "raw",
    ["acme/tools", "acme/tools@v1", "acme/tools@feature/x", "Acme-Org/my.repo_1@abc1234"],
)
def test_parse_keeps_raw_input(raw: str) -> None:
    reference = SourceReference.parse(raw)
    assert reference.raw_input == raw
    assert SourceReference.parse(reference.raw_input) == reference


def test_parse_owner_name_and_ref() -> None:
    reference = SourceReference.parse("acme/tools@v1")
    assert reference.owner == "acme"
    assert reference.name == "tools"
    assert reference.ref == "v1"
    assert reference.full_name == "acme/tools"
    assert reference.canonical == "acme/tools@v1"
    assert reference.ref_or_default() == "v1"


def test_parse_without_ref_uses_head() -> None:
    reference = SourceReference.parse("acme/tools")
    assert reference.ref is None
    assert reference.ref_or_default() == "HEAD"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("github:acme/tools", "acme/tools"),
        ("https://github.com/acme/tools", "acme/tools"),
        ("https://github.com/acme/tools.git", "acme/tools"),
        ("git@github.com:acme/tools.git", "acme/tools"),
        ("https://github.com/acme/tools/tree/release/1.x", "acme/tools@release/1.x"),
    ],
)
def test_parse_accepts_github_url_forms(raw: str, expected: str) -> None:
    assert SourceReference.parse(raw).canonical == expected


@pytest.mark.parametrize(
    "raw",
    ["", "   ", "tools", "acme/", "/tools", "acme/tools@", "acme/tools@a@b", "ac me/tools"],
)
def test_parse_rejects_malformed_input(raw: str) -> None:
    with pytest.raises(InvalidSourceFormat):
        SourceReference.parse(raw)


def test_url_builders() -> None:
    reference = SourceReference.parse("acme/tools@v1")
    api = "https://api.example.test"
    assert reference.repo_url(api) == "https://api.example.test/repos/acme/tools"
    assert reference.archive_url(api_url=api).endswith("/repos/acme/tools/zipball/v1")
    assert reference.commit_url("main", api_url=api).endswith("/commits/main")
    assert reference.contents_url(".claude-plugin/marketplace.json", api_url=api).endswith(
        "/contents/.claude-plugin/marketplace.json?ref=v1"
    )
    assert reference.web_url() == "https://github.com/acme/tools"


def test_with_ref_and_direct_plugin_name() -> None:
    reference = SourceReference.parse("acme/tools").with_ref("v2")
    assert reference.ref == "v2"
    assert reference.raw_input == "acme/tools@v2"
    assert reference.direct_plugin_name() == "acme--tools"


def test_looks_like_source() -> None:
    assert looks_like_source("acme/tools")
    assert looks_like_source("acme/tools@v1")
    assert looks_like_source("github:acme/tools")
    assert not looks_like_source("formatter")
    assert not looks_like_source("formatter@market-a")
