"""Filesystem side of placement: writing, copying and removing components.

Single files are written through a temp file and ``os.replace``; skill
directories are copied to a hidden sibling and swapped into place. Shared
instruction files hold one marked block per plugin so several plugins can
contribute to the same ``AGENTS.md``.
"""

from __future__ import annotations

import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from plm.core.targets import INSTRUCTION_BLOCK_BEGIN, INSTRUCTION_BLOCK_END
from plm.utils.file_io import write_text_atomic
from plm.utils.log import get_logger

logger = get_logger()

# <kind>/<catalog>/<plugin>/<component>
PRUNE_LEVELS = 3


def write_component_file(path: Path, content: str) -> None:
    write_text_atomic(path, content, prefix=f".{path.name}.")


def copy_skill_dir(source_dir: Path, destination: Path) -> None:
    """Replace ``destination`` with a copy of ``source_dir``."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    temp_dir = Path(
        tempfile.mkdtemp(dir=str(destination.parent), prefix=f".{destination.name}.tmp-")
    )
    try:
        shutil.copytree(source_dir, temp_dir, dirs_exist_ok=True)
        if destination.exists():
            stale = destination.with_name(f".{destination.name}.old-{os.getpid()}")
            os.replace(destination, stale)
            os.replace(temp_dir, destination)
            shutil.rmtree(stale, ignore_errors=True)
        else:
            os.replace(temp_dir, destination)
    except Exception:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise


def _block_pattern(origin: str) -> re.Pattern[str]:
    begin = re.escape(INSTRUCTION_BLOCK_BEGIN.format(origin=origin))
    end = re.escape(INSTRUCTION_BLOCK_END.format(origin=origin))
    return re.compile(rf"\n*^{begin}$.*?^{end}$\n?", re.MULTILINE | re.DOTALL)


def render_instruction_block(origin: str, body: str) -> str:
    return "\n".join(
        [
            INSTRUCTION_BLOCK_BEGIN.format(origin=origin),
            body.strip("\n"),
            INSTRUCTION_BLOCK_END.format(origin=origin),
        ]
    ) + "\n"


def _read_text(path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8")


def has_instruction_block(path: Path, origin: str) -> bool:
    try:
        text = _read_text(path)
    except (OSError, UnicodeDecodeError):
        return False
    return text is not None and _block_pattern(origin).search(text) is not None


def _split_around(text: str, match: re.Match[str]) -> Tuple[str, str]:
    return text[: match.start()].rstrip("\n"), text[match.end() :].lstrip("\n")


def upsert_instruction_block(path: Path, origin: str, body: str) -> None:
    """Insert or replace the block owned by ``origin`` in a shared instruction file."""
    block = render_instruction_block(origin, body)
    text = _read_text(path) or ""
    match = _block_pattern(origin).search(text)
    if match:
        before, after = _split_around(text, match)
    else:
        before, after = text.rstrip("\n"), ""
    parts = [part for part in (before, block.rstrip("\n"), after.rstrip("\n")) if part.strip()]
    write_component_file(path, "\n\n".join(parts) + "\n")


def remove_instruction_block(path: Path, origin: str) -> bool:
    """Strip ``origin``'s block; the file is deleted once nothing else is left."""
    text = _read_text(path)
    if text is None:
        return False
    match = _block_pattern(origin).search(text)
    if match is None:
        return False
    parts = [part for part in _split_around(text, match) if part.strip()]
    if not parts:
        path.unlink()
        logger.debug("[deploy] Removed empty instruction file", extra={"path": str(path)})
    else:
        write_component_file(path, "\n\n".join(part.rstrip("\n") for part in parts) + "\n")
    return True


def prune_empty_parents(path: Path, levels: int = PRUNE_LEVELS) -> None:
    """Remove up to ``levels`` empty parent directories of ``path``."""
    current = path.parent
    for _ in range(levels):
        try:
            if not current.is_dir() or any(current.iterdir()):
                return
            current.rmdir()
        except OSError as exc:
            logger.debug(
                "[deploy] Directory not pruned: %s: %s",
                type(exc).__name__,
                exc,
                extra={"path": str(current)},
            )
            return
        current = current.parent


def remove_placed_path(path: Path, origin: str, *, shared: bool = False) -> bool:
    """Undo one recorded placement. Returns False when nothing was there.

    A shared instruction file only ever loses ``origin``'s block; when the
    block is gone the file is left untouched. Any other path belongs to the
    placement and is deleted.
    """
    if shared:
        if path.is_dir() or not has_instruction_block(path, origin):
            return False
        return remove_instruction_block(path, origin)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        prune_empty_parents(path)
        return True
    if not path.exists() and not path.is_symlink():
        return False
    if has_instruction_block(path, origin):
        return remove_instruction_block(path, origin)
    path.unlink()
    prune_empty_parents(path)
    return True


__all__ = [
    "copy_skill_dir",
    "has_instruction_block",
    "prune_empty_parents",
    "remove_instruction_block",
    "remove_placed_path",
    "render_instruction_block",
    "upsert_instruction_block",
    "write_component_file",
]
