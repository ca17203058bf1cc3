from __future__ import annotations

from typing import List

import httpx
import pytest

from plm.core.errors import AuthRequired, NetworkError, NotFound
from plm.core.fetcher import GitHubFetcher, mask_token, resolve_github_token
from plm.core.source import SourceReference

API = "https://api.example.test"


def _fetcher(handler, token: str = "") -> GitHubFetcher:
    return GitHubFetcher(
        api_url=API,
        token=token or None,
        transport=httpx.MockTransport(handler),
        use_token_lookup=False,
    )


def test_resolve_commit_sends_sha_accept_header() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="0123456789abcdef\n")

    fetcher = _fetcher(handler, token="ghp_secret_token")
    sha = fetcher.resolve_commit(SourceReference.parse("acme/tools@v1"))

    assert sha == "0123456789abcdef"
    assert fetcher.request_count == 1
    request = seen[0]
    assert request.url.path == "/repos/acme/tools/commits/v1"
    assert request.headers["Accept"] == "application/vnd.github.sha"
    assert request.headers["Authorization"] == "Bearer ghp_secret_token"


def test_download_archive_returns_body_bytes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/repos/acme/tools/zipball/abc123"
        return httpx.Response(200, content=b"PK-data")

    fetcher = _fetcher(handler)
    data = fetcher.download_archive(SourceReference.parse("acme/tools"), "abc123")
    assert data == b"PK-data"


def test_fetch_file_and_default_branch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/repos/acme/market":
            return httpx.Response(200, json={"default_branch": "trunk"})
        assert request.url.params["ref"] == "HEAD"
        return httpx.Response(200, text='{"plugins": []}')

    fetcher = _fetcher(handler)
    source = SourceReference.parse("acme/market")
    assert fetcher.resolve_default_branch(source) == "trunk"
    assert fetcher.fetch_file(source, ".claude-plugin/marketplace.json") == '{"plugins": []}'
    assert fetcher.request_count == 2


@pytest.mark.parametrize("status", [401, 403])
def test_auth_failures_raise_auth_required(status: int) -> None:
    fetcher = _fetcher(lambda request: httpx.Response(status, json={"message": "Bad creds"}))
    with pytest.raises(AuthRequired) as excinfo:
        fetcher.resolve_commit(SourceReference.parse("acme/private"))
    assert excinfo.value.status == status
    assert "GITHUB_TOKEN" in str(excinfo.value)


def test_missing_repository_raises_not_found() -> None:
    fetcher = _fetcher(lambda request: httpx.Response(404, json={"message": "Not Found"}))
    with pytest.raises(NotFound):
        fetcher.download_archive(SourceReference.parse("acme/missing"))


def test_server_errors_are_retryable() -> None:
    fetcher = _fetcher(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(NetworkError) as excinfo:
        fetcher.resolve_commit(SourceReference.parse("acme/tools"))
    assert excinfo.value.retryable is True
    assert excinfo.value.status == 502


def test_client_errors_are_not_retryable() -> None:
    fetcher = _fetcher(lambda request: httpx.Response(422, json={"message": "No commit"}))
    with pytest.raises(NetworkError) as excinfo:
        fetcher.resolve_commit(SourceReference.parse("acme/tools@nope"))
    assert excinfo.value.retryable is False
    assert "No commit" in str(excinfo.value)


def test_transport_errors_become_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkError) as excinfo:
        _fetcher(handler).resolve_commit(SourceReference.parse("acme/tools"))
    assert excinfo.value.retryable is True


def test_token_resolution_prefers_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GH_TOKEN", "from-gh-token-env")
    assert resolve_github_token() == "from-gh-token-env"


def test_mask_token_hides_the_middle() -> None:
    assert mask_token(None) == "(none)"
    assert mask_token("short") == "****"
    masked = mask_token("ghp_abcdefghijkl")
    assert masked.startswith("ghp_")
    assert masked.endswith("ijkl")
    assert "efgh" not in masked
