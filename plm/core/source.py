"""Parsing of GitHub source references (``owner/repo[@ref]``).

A :class:`SourceReference` is immutable and keeps the verbatim input so a
persisted reference can be rebuilt without re-deriving its parts. All URL
builders are pure; nothing in this module touches the network.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Optional
from urllib.parse import quote

from plm.core.errors import InvalidSourceFormat

GITHUB_API_URL = "https://api.github.com"
GITHUB_WEB_URL = "https://github.com"
DEFAULT_REF = "HEAD"

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_SCP_PREFIX = "git@github.com:"
_HTTPS_PREFIXES = ("https://github.com/", "http://github.com/", "https://www.github.com/")
_GITHUB_SCHEME = "github:"


def _strip_known_prefix(value: str) -> str:
    if value.startswith(_GITHUB_SCHEME):
        return value[len(_GITHUB_SCHEME):]
    if value.startswith(_SCP_PREFIX):
        return value[len(_SCP_PREFIX):].removesuffix(".git")
    for prefix in _HTTPS_PREFIXES:
        if value.startswith(prefix):
            remainder = value[len(prefix):].strip("/")
            ref_part = ""
            if "@" in remainder:
                remainder, ref_part = remainder.split("@", 1)
                ref_part = "@" + ref_part
            parts = remainder.split("/")
            # https://github.com/owner/repo/tree/<ref>
            if len(parts) >= 4 and parts[2] == "tree" and not ref_part:
                ref_part = "@" + "/".join(parts[3:])
            return "/".join(parts[:2]).removesuffix(".git") + ref_part
    return value


@dataclass(frozen=True)
class SourceReference:
    owner: str
    name: str
    ref: Optional[str] = None
    raw_input: str = ""

    @classmethod
    def parse(cls, raw: str) -> "SourceReference":
        text = (raw or "").strip()
        if not text:
            raise InvalidSourceFormat(raw, "empty source")

        body = _strip_known_prefix(text)
        ref: Optional[str] = None
        if "@" in body:
            body, ref = body.split("@", 1)
            if not ref:
                raise InvalidSourceFormat(raw, "empty ref after '@'")
            if "@" in ref or any(ch.isspace() for ch in ref):
                raise InvalidSourceFormat(raw, f"malformed ref '{ref}'")

        if "/" not in body:
            raise InvalidSourceFormat(raw, "missing '/' between owner and repository")
        owner, name = body.split("/", 1)
        owner = owner.strip()
        name = name.strip().removesuffix(".git")
        if not owner or not name:
            raise InvalidSourceFormat(raw, "owner and repository must be non-empty")
        if not _SEGMENT_RE.match(owner) or not _SEGMENT_RE.match(name):
            raise InvalidSourceFormat(raw, "owner and repository may only contain [A-Za-z0-9._-]")

        return cls(owner=owner, name=name, ref=ref, raw_input=raw)

    @classmethod
    def from_parts(cls, owner: str, name: str, ref: Optional[str] = None) -> "SourceReference":
        raw = f"{owner}/{name}@{ref}" if ref else f"{owner}/{name}"
        return cls.parse(raw)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def canonical(self) -> str:
        """``owner/repo[@ref]`` regardless of the form the input used."""
        return f"{self.full_name}@{self.ref}" if self.ref else self.full_name

    def ref_or_default(self) -> str:
        return self.ref or DEFAULT_REF

    def with_ref(self, ref: Optional[str]) -> "SourceReference":
        raw = f"{self.full_name}@{ref}" if ref else self.full_name
        return replace(self, ref=ref, raw_input=raw)

    def direct_plugin_name(self) -> str:
        """Cache directory name used for non-marketplace installs."""
        return f"{self.owner}--{self.name}"

    def repo_url(self, api_url: str = GITHUB_API_URL) -> str:
        return f"{api_url}/repos/{self.owner}/{self.name}"

    def archive_url(self, ref: Optional[str] = None, api_url: str = GITHUB_API_URL) -> str:
        target = quote(ref or self.ref_or_default(), safe="/")
        return f"{self.repo_url(api_url)}/zipball/{target}"

    def commit_url(self, ref: Optional[str] = None, api_url: str = GITHUB_API_URL) -> str:
        target = quote(ref or self.ref_or_default(), safe="/")
        return f"{self.repo_url(api_url)}/commits/{target}"

    def contents_url(
        self, path: str, ref: Optional[str] = None, api_url: str = GITHUB_API_URL
    ) -> str:
        clean_path = quote(path.strip("/"), safe="/")
        target = quote(ref or self.ref_or_default(), safe="")
        return f"{self.repo_url(api_url)}/contents/{clean_path}?ref={target}"

    def web_url(self) -> str:
        return f"{GITHUB_WEB_URL}/{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.raw_input or self.canonical


def looks_like_source(value: str) -> bool:
    """Return True when ``value`` is meant as a repository rather than a plugin name."""
    text = value.strip()
    return "/" in text.split("@", 1)[0] or text.startswith((_GITHUB_SCHEME, _SCP_PREFIX))


__all__ = [
    "DEFAULT_REF",
    "GITHUB_API_URL",
    "SourceReference",
    "looks_like_source",
]
