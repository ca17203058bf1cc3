"""Format conversion between Claude-style components and target formats.

Plugins are authored in the Claude Code layout. Each target reads its own
dialect: Copilot prompts and agents use different tool names, model ids
and template variables, Codex agents keep only a description. Every
mapping is an explicit lookup table; values outside a table pass through
unchanged, header fields with no destination equivalent are dropped, and
fields the destination wants but the source lacks are left out.

Conversions between two non-Claude formats go through the Claude form.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from plm.core.components import ComponentKind
from plm.core.errors import UnsupportedConversion
from plm.core.frontmatter import ParsedDocument, parse_frontmatter, render_frontmatter


class DocumentFormat(str, Enum):
    CLAUDE = "claude"
    COPILOT = "copilot"
    CODEX = "codex"


TOOLS_CLAUDE_TO_COPILOT: Dict[str, str] = {
    "Read": "codebase",
    "Write": "codebase",
    "Edit": "codebase",
    "MultiEdit": "codebase",
    "NotebookEdit": "codebase",
    "Grep": "search/codebase",
    "Glob": "search/codebase",
    "LS": "search/codebase",
    "Bash": "terminal",
    "WebFetch": "fetch",
    "WebSearch": "websearch",
}

# One Copilot tool stands for several Claude tools; the reverse picks one.
TOOLS_COPILOT_TO_CLAUDE: Dict[str, str] = {
    "codebase": "Read",
    "search/codebase": "Grep",
    "terminal": "Bash",
    "githubRepo": "Bash",
    "fetch": "WebFetch",
    "websearch": "WebSearch",
}

MODELS_CLAUDE_TO_COPILOT: Dict[str, str] = {
    "haiku": "GPT-4o-mini",
    "sonnet": "GPT-4o",
    "opus": "o1",
}

MODELS_COPILOT_TO_CLAUDE: Dict[str, str] = {
    "gpt-4o-mini": "haiku",
    "gpt-4o": "sonnet",
    "o1": "opus",
}

MODELS_CLAUDE_TO_CODEX: Dict[str, str] = {
    "haiku": "gpt-4.1-mini",
    "sonnet": "gpt-4.1",
    "opus": "o3",
}

MODELS_CODEX_TO_CLAUDE: Dict[str, str] = {
    value: key for key, value in MODELS_CLAUDE_TO_CODEX.items()
}

# Applied in order: $ARGUMENTS, then $9 down to $1.
BODY_CLAUDE_TO_COPILOT: Tuple[Tuple[str, str], ...] = (("$ARGUMENTS", "${arguments}"),) + tuple(
    (f"${n}", f"${{arg{n}}}") for n in range(9, 0, -1)
)
BODY_COPILOT_TO_CLAUDE: Tuple[Tuple[str, str], ...] = tuple(
    (dst, src) for src, dst in BODY_CLAUDE_TO_COPILOT
)


def tool_claude_to_copilot(tool: str) -> str:
    name = tool.strip()
    if name.startswith("Bash(git"):
        return "githubRepo"
    return TOOLS_CLAUDE_TO_COPILOT.get(name, name)


def tool_copilot_to_claude(tool: str) -> str:
    name = tool.strip()
    return TOOLS_COPILOT_TO_CLAUDE.get(name, name)


def tools_claude_to_copilot(tools: List[str]) -> List[str]:
    return sorted({tool_claude_to_copilot(tool) for tool in tools if tool.strip()})


def tools_copilot_to_claude(tools: List[str]) -> List[str]:
    converted: List[str] = []
    for tool in tools:
        if not tool.strip():
            continue
        mapped = tool_copilot_to_claude(tool)
        if mapped not in converted:
            converted.append(mapped)
    return converted


def _claude_family(model: str) -> Optional[str]:
    lowered = model.strip().lower()
    if lowered in MODELS_CLAUDE_TO_COPILOT:
        return lowered
    if lowered.startswith("claude"):
        for family in MODELS_CLAUDE_TO_COPILOT:
            if family in lowered:
                return family
    return None


def model_claude_to_copilot(model: str) -> str:
    family = _claude_family(model)
    return MODELS_CLAUDE_TO_COPILOT[family] if family else model.strip()


def model_claude_to_codex(model: str) -> str:
    family = _claude_family(model)
    return MODELS_CLAUDE_TO_CODEX[family] if family else model.strip()


def model_copilot_to_claude(model: str) -> str:
    return MODELS_COPILOT_TO_CLAUDE.get(model.strip().lower(), model.strip())


def model_codex_to_claude(model: str) -> str:
    return MODELS_CODEX_TO_CLAUDE.get(model.strip().lower(), model.strip())


def _replace_all(body: str, table: Tuple[Tuple[str, str], ...]) -> str:
    for src, dst in table:
        body = body.replace(src, dst)
    return body


def body_claude_to_copilot(body: str) -> str:
    return _replace_all(body, BODY_CLAUDE_TO_COPILOT)


def body_copilot_to_claude(body: str) -> str:
    return _replace_all(body, BODY_COPILOT_TO_CLAUDE)


def parse_allowed_tools(raw: Any) -> List[str]:
    """Accept ``"Read, Grep"`` strings as well as YAML lists."""
    if raw is None:
        return []
    if isinstance(raw, str):
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(raw, (list, tuple)):
        return [str(item).strip() for item in raw if str(item).strip()]
    return []


def format_allowed_tools(tools: List[str]) -> str:
    return ", ".join(tools)


def _str_field(header: Dict[str, Any], key: str) -> Optional[str]:
    value = header.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _bool_field(header: Dict[str, Any], key: str) -> Optional[bool]:
    value = header.get(key)
    return value if isinstance(value, bool) else None


def _hint_field(header: Dict[str, Any], key: str) -> Optional[str]:
    # An unquoted `[issue]` hint parses as a YAML list.
    value = header.get(key)
    if isinstance(value, list):
        return " ".join(f"[{item}]" for item in value) or None
    return _str_field(header, key)


@dataclass
class CommandSpec:
    """A slash command / prompt in Claude terms."""

    name: Optional[str] = None
    description: Optional[str] = None
    allowed_tools: List[str] = field(default_factory=list)
    argument_hint: Optional[str] = None
    model: Optional[str] = None
    disable_model_invocation: Optional[bool] = None
    user_invocable: Optional[bool] = None
    body: str = ""


@dataclass
class AgentSpec:
    """A subagent definition in Claude terms."""

    name: Optional[str] = None
    description: Optional[str] = None
    tools: List[str] = field(default_factory=list)
    model: Optional[str] = None
    body: str = ""


def parse_claude_command(doc: ParsedDocument) -> CommandSpec:
    header = doc.header
    return CommandSpec(
        name=_str_field(header, "name"),
        description=_str_field(header, "description"),
        allowed_tools=parse_allowed_tools(header.get("allowed-tools")),
        argument_hint=_hint_field(header, "argument-hint"),
        model=_str_field(header, "model"),
        disable_model_invocation=_bool_field(header, "disable-model-invocation"),
        user_invocable=_bool_field(header, "user-invocable"),
        body=doc.body,
    )


def parse_copilot_prompt(doc: ParsedDocument) -> CommandSpec:
    header = doc.header
    hint = _str_field(header, "hint")
    if hint and hint.startswith("Enter "):
        hint = f"[{hint[len('Enter '):]}]"
    model = _str_field(header, "model")
    return CommandSpec(
        name=_str_field(header, "name"),
        description=_str_field(header, "description"),
        allowed_tools=tools_copilot_to_claude(parse_allowed_tools(header.get("tools"))),
        argument_hint=hint,
        model=model_copilot_to_claude(model) if model else None,
        body=body_copilot_to_claude(doc.body),
    )


def render_claude_command(spec: CommandSpec) -> str:
    return render_frontmatter(
        [
            ("name", spec.name),
            ("description", spec.description),
            ("allowed-tools", format_allowed_tools(spec.allowed_tools) or None),
            ("argument-hint", spec.argument_hint),
            ("model", spec.model),
            ("disable-model-invocation", spec.disable_model_invocation),
            ("user-invocable", spec.user_invocable),
        ],
        spec.body,
    )


def render_copilot_prompt(spec: CommandSpec) -> str:
    hint = None
    if spec.argument_hint:
        hint = "Enter " + spec.argument_hint.lstrip("[").rstrip("]")
    return render_frontmatter(
        [
            ("name", spec.name),
            ("description", spec.description),
            ("tools", tools_claude_to_copilot(spec.allowed_tools) or None),
            ("hint", hint),
            ("model", model_claude_to_copilot(spec.model) if spec.model else None),
        ],
        body_claude_to_copilot(spec.body),
    )


def parse_claude_agent(doc: ParsedDocument) -> AgentSpec:
    header = doc.header
    return AgentSpec(
        name=_str_field(header, "name"),
        description=_str_field(header, "description"),
        tools=parse_allowed_tools(header.get("tools")),
        model=_str_field(header, "model"),
        body=doc.body,
    )


def parse_copilot_agent(doc: ParsedDocument) -> AgentSpec:
    header = doc.header
    model = _str_field(header, "model")
    return AgentSpec(
        name=_str_field(header, "name"),
        description=_str_field(header, "description"),
        tools=tools_copilot_to_claude(parse_allowed_tools(header.get("tools"))),
        model=model_copilot_to_claude(model) if model else None,
        body=doc.body,
    )


def parse_codex_agent(doc: ParsedDocument) -> AgentSpec:
    return AgentSpec(description=_str_field(doc.header, "description"), body=doc.body)


def render_claude_agent(spec: AgentSpec) -> str:
    return render_frontmatter(
        [
            ("name", spec.name),
            ("description", spec.description),
            ("tools", format_allowed_tools(spec.tools) or None),
            ("model", spec.model),
        ],
        spec.body,
    )


def render_copilot_agent(spec: AgentSpec) -> str:
    return render_frontmatter(
        [
            ("name", spec.name),
            ("description", spec.description),
            ("tools", tools_claude_to_copilot(spec.tools) or None),
            ("model", model_claude_to_copilot(spec.model) if spec.model else None),
            ("target", "vscode"),
        ],
        spec.body,
    )


def render_codex_agent(spec: AgentSpec) -> str:
    return render_frontmatter([("description", spec.description)], spec.body)


_COMMAND_PARSERS: Dict[DocumentFormat, Callable[[ParsedDocument], CommandSpec]] = {
    DocumentFormat.CLAUDE: parse_claude_command,
    DocumentFormat.COPILOT: parse_copilot_prompt,
}
_COMMAND_RENDERERS: Dict[DocumentFormat, Callable[[CommandSpec], str]] = {
    DocumentFormat.CLAUDE: render_claude_command,
    DocumentFormat.COPILOT: render_copilot_prompt,
}
_AGENT_PARSERS: Dict[DocumentFormat, Callable[[ParsedDocument], AgentSpec]] = {
    DocumentFormat.CLAUDE: parse_claude_agent,
    DocumentFormat.COPILOT: parse_copilot_agent,
    DocumentFormat.CODEX: parse_codex_agent,
}
_AGENT_RENDERERS: Dict[DocumentFormat, Callable[[AgentSpec], str]] = {
    DocumentFormat.CLAUDE: render_claude_agent,
    DocumentFormat.COPILOT: render_copilot_agent,
    DocumentFormat.CODEX: render_codex_agent,
}

# Which dialect each target reads per kind. Pairs missing here have no
# destination analog and are reported as UnsupportedConversion.
TARGET_FORMATS: Dict[Tuple[ComponentKind, str], DocumentFormat] = {
    (ComponentKind.SKILL, "codex"): DocumentFormat.CLAUDE,
    (ComponentKind.SKILL, "copilot"): DocumentFormat.CLAUDE,
    (ComponentKind.SKILL, "gemini"): DocumentFormat.CLAUDE,
    (ComponentKind.SKILL, "antigravity"): DocumentFormat.CLAUDE,
    (ComponentKind.AGENT, "codex"): DocumentFormat.CODEX,
    (ComponentKind.AGENT, "copilot"): DocumentFormat.COPILOT,
    (ComponentKind.COMMAND, "copilot"): DocumentFormat.COPILOT,
    (ComponentKind.INSTRUCTION, "codex"): DocumentFormat.CLAUDE,
    (ComponentKind.INSTRUCTION, "copilot"): DocumentFormat.CLAUDE,
    (ComponentKind.INSTRUCTION, "gemini"): DocumentFormat.CLAUDE,
}


def target_format(kind: ComponentKind, target_id: str) -> DocumentFormat:
    try:
        return TARGET_FORMATS[(kind, target_id)]
    except KeyError:
        raise UnsupportedConversion(kind.value, target_id) from None


def _convert_command(
    doc: ParsedDocument, source: DocumentFormat, dest: DocumentFormat, name: str
) -> str:
    spec = _COMMAND_PARSERS[source](doc)
    spec.name = spec.name or name
    return _COMMAND_RENDERERS[dest](spec)


def _convert_agent(
    doc: ParsedDocument, source: DocumentFormat, dest: DocumentFormat, name: str
) -> str:
    spec = _AGENT_PARSERS[source](doc)
    spec.name = spec.name or name
    return _AGENT_RENDERERS[dest](spec)


def convert_component(
    kind: ComponentKind,
    target_id: str,
    content: str,
    *,
    name: str,
    source_format: DocumentFormat = DocumentFormat.CLAUDE,
) -> str:
    """Rewrite one component file for ``target_id``.

    Skills are copied unchanged. Instructions lose their frontmatter since
    they are merged into a shared instruction file. Raises
    ``UnsupportedConversion`` when the target has no analog for ``kind``.
    """
    dest_format = target_format(kind, target_id)
    if kind == ComponentKind.SKILL:
        return content
    doc = parse_frontmatter(content)
    if kind == ComponentKind.INSTRUCTION:
        return doc.body.lstrip("\n")
    if source_format == dest_format:
        return content
    if kind == ComponentKind.COMMAND:
        if source_format not in _COMMAND_PARSERS:
            raise UnsupportedConversion(
                kind.value, target_id, f"cannot read {source_format.value} commands"
            )
        return _convert_command(doc, source_format, dest_format, name)
    if kind == ComponentKind.AGENT:
        return _convert_agent(doc, source_format, dest_format, name)
    raise UnsupportedConversion(kind.value, target_id)


__all__ = [
    "AgentSpec",
    "CommandSpec",
    "DocumentFormat",
    "TARGET_FORMATS",
    "body_claude_to_copilot",
    "body_copilot_to_claude",
    "convert_component",
    "model_claude_to_codex",
    "model_claude_to_copilot",
    "model_codex_to_claude",
    "model_copilot_to_claude",
    "parse_allowed_tools",
    "target_format",
    "tool_claude_to_copilot",
    "tool_copilot_to_claude",
    "tools_claude_to_copilot",
    "tools_copilot_to_claude",
]
