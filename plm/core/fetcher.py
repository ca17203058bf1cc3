"""GitHub REST client for archives, commits and single files."""

from __future__ import annotations

import os
import random
import shutil
import subprocess
import threading
import time
from typing import Callable, Optional, Protocol, TypeVar

import httpx

from plm import __version__
from plm.core.errors import AuthRequired, NetworkError, NotFound
from plm.core.source import GITHUB_API_URL, SourceReference
from plm.utils.log import get_logger

logger = get_logger()

T = TypeVar("T")

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
_GH_TIMEOUT_SEC = 5
_API_VERSION = "2022-11-28"

_token_lock = threading.Lock()
_token_resolved = False
_token_value: Optional[str] = None


def mask_token(token: Optional[str]) -> str:
    if not token:
        return "(none)"
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}…{token[-4:]}"


def _token_from_gh_cli() -> Optional[str]:
    gh = shutil.which("gh")
    if gh is None:
        return None
    try:
        completed = subprocess.run(
            [gh, "auth", "token"],
            capture_output=True,
            text=True,
            timeout=_GH_TIMEOUT_SEC,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("[fetcher] gh auth token failed: %s: %s", type(exc).__name__, exc)
        return None
    if completed.returncode != 0:
        return None
    token = completed.stdout.strip()
    return token or None


def resolve_github_token() -> Optional[str]:
    """Token from the environment, else from ``gh auth token``; cached per process."""
    global _token_resolved, _token_value
    with _token_lock:
        if _token_resolved:
            return _token_value
        token: Optional[str] = None
        for name in TOKEN_ENV_VARS:
            value = os.getenv(name, "").strip()
            if value:
                token = value
                logger.debug("[fetcher] Using token from %s: %s", name, mask_token(token))
                break
        if token is None:
            token = _token_from_gh_cli()
            if token:
                logger.debug("[fetcher] Using token from gh CLI: %s", mask_token(token))
        _token_value = token
        _token_resolved = True
        return token


def clear_token_cache() -> None:
    global _token_resolved, _token_value
    with _token_lock:
        _token_resolved = False
        _token_value = None


class Fetcher(Protocol):
    """What the engine needs from a remote source."""

    def resolve_default_branch(self, source: SourceReference) -> str: ...

    def download_archive(self, source: SourceReference, ref: Optional[str] = None) -> bytes: ...

    def resolve_commit(self, source: SourceReference, ref: Optional[str] = None) -> str: ...

    def fetch_file(self, source: SourceReference, path: str, ref: Optional[str] = None) -> str: ...


FETCH_ATTEMPTS = 3


def retry_delay_seconds(attempt: int, base_delay: float = 0.5, max_delay: float = 8.0) -> float:
    """Exponential backoff with jitter."""
    capped = min(base_delay * (2 ** max(0, attempt - 1)), max_delay)
    return capped + random.random() * 0.25 * capped


def call_with_retries(
    call: Callable[[], T],
    *,
    what: str,
    attempts: int = FETCH_ATTEMPTS,
    base_delay: float = 0.5,
) -> T:
    """Run ``call``, retrying a :class:`NetworkError` that is marked retryable.

    ``attempts`` counts the first call. Anything else, and the last retryable
    failure, propagates unchanged.
    """
    attempts = max(1, attempts)
    attempt = 1
    while True:
        try:
            return call()
        except NetworkError as exc:
            if not exc.retryable or attempt >= attempts:
                raise
            delay = retry_delay_seconds(attempt, base_delay) if base_delay > 0 else 0.0
            logger.warning(
                "[fetcher] %s failed; retrying: %s",
                what,
                exc,
                extra={
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "delay_seconds": round(delay, 3),
                },
            )
            if delay:
                time.sleep(delay)
            attempt += 1


def _extract_error_message(response: httpx.Response) -> str:
    text = response.text
    try:
        payload = response.json()
    except ValueError:
        return text.strip() or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        value = payload.get("message")
        if isinstance(value, str) and value:
            return value
    return text.strip() or f"HTTP {response.status_code}"


class GitHubFetcher:
    """Thin GitHub API client. Retries are left to callers."""

    def __init__(
        self,
        *,
        api_url: str = GITHUB_API_URL,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        use_token_lookup: bool = True,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._token = token
        self._use_token_lookup = use_token_lookup and token is None
        self.request_count = 0

    @property
    def token(self) -> Optional[str]:
        if self._token is None and self._use_token_lookup:
            self._token = resolve_github_token()
            self._use_token_lookup = False
        return self._token

    def _headers(self, accept: str) -> dict:
        headers = {
            "Accept": accept,
            "User-Agent": f"plm/{__version__}",
            "X-GitHub-Api-Version": _API_VERSION,
        }
        token = self.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _get(self, url: str, *, accept: str, what: str) -> httpx.Response:
        self.request_count += 1
        logger.debug("[fetcher] GET %s", url, extra={"what": what})
        try:
            with httpx.Client(
                timeout=self.timeout, follow_redirects=True, transport=self._transport
            ) as client:
                response = client.get(url, headers=self._headers(accept))
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"Network error while fetching {what}: {type(exc).__name__}: {exc}",
                retryable=True,
            ) from exc

        status = response.status_code
        if status < 400:
            return response
        message = _extract_error_message(response)
        if status in (401, 403):
            hint = ""
            if not self.token:
                hint = " Set GITHUB_TOKEN or run `gh auth login` for private repositories."
            raise AuthRequired(
                f"Access denied for {what} ({status}): {message}.{hint}", status=status
            )
        if status == 404:
            raise NotFound(f"{what} not found (404)")
        raise NetworkError(
            f"GitHub returned {status} for {what}: {message}",
            retryable=status >= 500,
            status=status,
        )

    def resolve_default_branch(self, source: SourceReference) -> str:
        response = self._get(
            source.repo_url(self.api_url),
            accept="application/vnd.github+json",
            what=f"repository {source.full_name}",
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError(
                f"Unexpected repository payload for {source.full_name}", retryable=False
            ) from exc
        branch = payload.get("default_branch") if isinstance(payload, dict) else None
        if not isinstance(branch, str) or not branch:
            raise NetworkError(
                f"Repository {source.full_name} did not report a default branch",
                retryable=False,
            )
        return branch

    def download_archive(self, source: SourceReference, ref: Optional[str] = None) -> bytes:
        target_ref = ref or source.ref_or_default()
        response = self._get(
            source.archive_url(target_ref, self.api_url),
            accept="application/vnd.github+json",
            what=f"archive of {source.full_name}@{target_ref}",
        )
        logger.debug(
            "[fetcher] Downloaded archive",
            extra={"source": source.full_name, "ref": target_ref, "bytes": len(response.content)},
        )
        return response.content

    def resolve_commit(self, source: SourceReference, ref: Optional[str] = None) -> str:
        target_ref = ref or source.ref_or_default()
        response = self._get(
            source.commit_url(target_ref, self.api_url),
            accept="application/vnd.github.sha",
            what=f"commit {source.full_name}@{target_ref}",
        )
        sha = response.text.strip()
        if not sha:
            raise NetworkError(
                f"Empty commit id for {source.full_name}@{target_ref}", retryable=False
            )
        return sha

    def fetch_file(self, source: SourceReference, path: str, ref: Optional[str] = None) -> str:
        target_ref = ref or source.ref_or_default()
        response = self._get(
            source.contents_url(path, target_ref, self.api_url),
            accept="application/vnd.github.raw+json",
            what=f"{path} in {source.full_name}@{target_ref}",
        )
        return response.text


__all__ = [
    "FETCH_ATTEMPTS",
    "Fetcher",
    "GitHubFetcher",
    "call_with_retries",
    "clear_token_cache",
    "mask_token",
    "resolve_github_token",
    "retry_delay_seconds",
]
