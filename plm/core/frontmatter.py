"""YAML frontmatter parsing and rendering for markdown components."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from plm.utils.log import get_logger

logger = get_logger()

_BOM = "\ufeff"
_DELIMITER = "---"


@dataclass
class ParsedDocument:
    """Structured header plus raw body of one markdown file."""

    header: Dict[str, Any] = field(default_factory=dict)
    body: str = ""
    has_header: bool = False
    error: Optional[str] = None


def parse_frontmatter(content: str) -> ParsedDocument:
    """Split ``content`` into its YAML header and body.

    Text without an opening ``---`` line, or without a closing one, is
    all body. A header that is not a YAML mapping is reported through
    ``error`` and treated as empty.
    """
    if content.startswith(_BOM):
        content = content[len(_BOM):]

    lines = content.splitlines(keepends=True)
    if not lines or not lines[0].strip().startswith(_DELIMITER):
        return ParsedDocument(body=content)

    closing: Optional[int] = None
    for idx in range(1, len(lines)):
        if lines[idx].strip().startswith(_DELIMITER):
            closing = idx
            break
    if closing is None:
        return ParsedDocument(body=content)

    yaml_text = "".join(lines[1:closing])
    body = "".join(lines[closing + 1 :])
    if not yaml_text.strip():
        return ParsedDocument(body=body, has_header=True)

    try:
        loaded = yaml.safe_load(yaml_text)
    except yaml.YAMLError as exc:
        logger.warning("[frontmatter] Invalid YAML header: %s: %s", type(exc).__name__, exc)
        return ParsedDocument(body=body, has_header=True, error=f"Invalid frontmatter: {exc}")
    if not isinstance(loaded, dict):
        return ParsedDocument(
            body=body, has_header=True, error="Invalid frontmatter: expected a mapping"
        )
    return ParsedDocument(header={str(k): v for k, v in loaded.items()}, body=body, has_header=True)


def _reads_back_unchanged(value: str) -> bool:
    if not value or value != value.strip() or "\n" in value:
        return False
    try:
        return yaml.safe_load(value) == value
    except yaml.YAMLError:
        return False


def escape_yaml_string(value: str) -> str:
    """Leave ``value`` plain only when YAML reads it back as the same string.

    Anything else (indicators such as ``[`` or ``*``, ``: `` and `` #``,
    words like ``yes`` or ``null``, numbers) becomes a double-quoted scalar.
    JSON string escapes are valid in YAML double quotes.
    """
    if _reads_back_unchanged(value):
        return value
    return json.dumps(value, ensure_ascii=False)


def _render_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return escape_yaml_string(str(value))


def _render_field(key: str, value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        if not value:
            return [f"{key}: []"]
        return [f"{key}:"] + [f"  - {_render_scalar(item)}" for item in value]
    if isinstance(value, dict):
        dumped = yaml.safe_dump({key: value}, sort_keys=False, allow_unicode=True)
        return dumped.rstrip("\n").splitlines()
    return [f"{key}: {_render_scalar(value)}"]


def render_frontmatter(fields: Iterable[Tuple[str, Any]], body: str) -> str:
    """Render ordered header fields and a body as a markdown document.

    Fields whose value is ``None`` are omitted. With no remaining fields
    the body is returned unchanged.
    """
    lines: List[str] = []
    for key, value in fields:
        if value is None:
            continue
        lines.extend(_render_field(key, value))
    if not lines:
        return body
    return f"{_DELIMITER}\n" + "\n".join(lines) + f"\n{_DELIMITER}\n\n" + body.lstrip("\n")


__all__ = [
    "ParsedDocument",
    "escape_yaml_string",
    "parse_frontmatter",
    "render_frontmatter",
]
