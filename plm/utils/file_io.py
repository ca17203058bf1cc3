"""Shared helpers for locked, atomic file writes."""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Generator, Optional

from plm.utils.log import get_logger

try:
    import fcntl
except ImportError:  # Windows: state writes are atomic but unlocked.
    fcntl = None  # type: ignore[assignment]

logger = get_logger()


@contextlib.contextmanager
def locked_path(lock_path: Path) -> Generator[None, None, None]:
    """Hold an exclusive ``flock`` on ``lock_path`` for the duration of the block."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as handle:
        if fcntl is None:
            yield
            return
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            with contextlib.suppress(OSError):
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def write_bytes_atomic(path: Path, data: bytes, *, prefix: str = ".plm_") -> None:
    """Write ``data`` to a sibling temp file, then replace ``path`` with it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), prefix=prefix, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            with contextlib.suppress(OSError):
                os.unlink(temp_path)


def write_text_atomic(path: Path, text: str, *, prefix: str = ".plm_") -> None:
    write_bytes_atomic(path, text.encode("utf-8"), prefix=prefix)


def write_json_atomic(path: Path, payload: Any, *, prefix: str = ".plm_") -> None:
    serialized = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    write_text_atomic(path, serialized, prefix=prefix)


def read_json_file(path: Path, *, area: str = "io") -> Optional[Any]:
    """Load JSON from ``path``; missing or unreadable files yield ``None``.

    Unreadable content is logged as a warning. Callers that must not
    silently lose data (the plugin state file) parse on their own.
    """
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, IOError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning(
            "[%s] Failed to read JSON file: %s: %s",
            area,
            type(exc).__name__,
            exc,
            extra={"path": str(path)},
        )
        return None


__all__ = [
    "locked_path",
    "read_json_file",
    "write_bytes_atomic",
    "write_json_atomic",
    "write_text_atomic",
]
