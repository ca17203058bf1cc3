"""Exception taxonomy shared by the plugin deployment engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional, Sequence


class PlmError(Exception):
    """Base class for every error raised by plm."""


class InvalidSourceFormat(PlmError):
    def __init__(self, raw: str, reason: str = "") -> None:
        self.raw = raw
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Invalid source '{raw}'{detail}. Expected owner/repo or owner/repo@ref."
        )


class NetworkError(PlmError):
    """Transport failure or unexpected HTTP status.

    ``retryable`` is true for 5xx responses and connection-level failures.
    """

    def __init__(self, message: str, *, retryable: bool = True, status: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status = status


class AuthRequired(PlmError):
    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFound(PlmError):
    pass


class Ambiguous(PlmError):
    """A bare plugin name matched more than one marketplace or record."""

    def __init__(self, name: str, matches: Sequence[Any], candidates: Sequence[str]):
        self.name = name
        self.matches: List[Any] = list(matches)
        self.candidates = list(candidates)
        listed = ", ".join(self.candidates)
        super().__init__(
            f"'{name}' is ambiguous; matches: {listed}. Use name@marketplace to pick one."
        )


class DuplicateName(PlmError):
    pass


class InvalidName(PlmError):
    pass


class PluginAlreadyInstalled(PlmError):
    pass


class ManifestMissing(PlmError):
    pass


class ManifestInvalid(PlmError):
    pass


class UnsupportedConversion(PlmError):
    def __init__(self, kind: str, target: str, reason: str = ""):
        self.kind = kind
        self.target = target
        message = f"{target} has no equivalent for {kind} components"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class PlacementConflict(PlmError):
    def __init__(self, path: Path, owner: Optional[str] = None):
        self.path = path
        self.owner = owner
        if owner:
            message = f"{path} is already managed by plugin '{owner}'"
        else:
            message = f"{path} already exists and is not managed by plm"
        super().__init__(message)


class StateCorrupted(PlmError):
    def __init__(self, path: Path, reason: str):
        self.path = path
        super().__init__(
            f"Plugin state file {path} is unreadable ({reason}). "
            "Fix or move it aside; plm will not overwrite it."
        )


class CacheError(PlmError):
    pass


class TargetError(PlmError):
    pass


class SyncError(PlmError):
    pass


__all__ = [
    "Ambiguous",
    "AuthRequired",
    "CacheError",
    "DuplicateName",
    "InvalidName",
    "InvalidSourceFormat",
    "ManifestInvalid",
    "ManifestMissing",
    "NetworkError",
    "NotFound",
    "PlacementConflict",
    "PlmError",
    "PluginAlreadyInstalled",
    "StateCorrupted",
    "SyncError",
    "TargetError",
    "UnsupportedConversion",
]
