"""Tool schema conversion: ToolSpec -> per-protocol tool JSON.

Parameter schemas are passed through untouched (deep-copied so callers can
reuse their specs); only the surrounding keys differ between protocols.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from switchboard.errors import BuildError, UnsupportedToolError
from switchboard.models import FreeformTool, FunctionTool, WireApi

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from switchboard.models import ToolSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolConversion:
    """Converted tool JSON plus the names dropped in non-strict mode."""

    tools: list[dict[str, Any]]
    dropped: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.tools)


def _check_unique(tools: Sequence[ToolSpec]) -> None:
    seen: set[str] = set()
    for tool in tools:
        if tool.name in seen:
            raise BuildError(
                f"Duplicate tool name: {tool.name!r}",
                kind="duplicate_tool",
                hint="Tool names must be unique within one request.",
            )
        seen.add(tool.name)


def _supported(
    tools: Sequence[ToolSpec],
    *,
    wire_api: WireApi,
    strict: bool,
    allow_freeform: bool,
) -> tuple[list[ToolSpec], tuple[str, ...]]:
    """Split *tools* into the usable ones and the names to drop.

    Raises UnsupportedToolError in strict mode instead of dropping.
    """
    _check_unique(tools)
    kept: list[ToolSpec] = []
    dropped: list[str] = []
    for tool in tools:
        if isinstance(tool, FreeformTool) and not allow_freeform:
            if strict:
                raise UnsupportedToolError(
                    f"Freeform tool {tool.name!r} is not supported by the "
                    f"{wire_api.value} wire protocol",
                    tool_name=tool.name,
                    hint="Describe the tool with a JSON schema, or pass strict_tools=False to drop it.",
                )
            logger.warning(
                "Dropping freeform tool %s: unsupported by %s", tool.name, wire_api.value
            )
            dropped.append(tool.name)
            continue
        kept.append(tool)
    return kept, tuple(dropped)


def to_chat_tools(tools: Sequence[ToolSpec], *, strict: bool = True) -> ToolConversion:
    """Chat Completions: ``{"type": "function", "function": {...}}``."""
    kept, dropped = _supported(
        tools, wire_api=WireApi.CHAT, strict=strict, allow_freeform=False
    )
    out = [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": deepcopy(tool.parameters),
            },
        }
        for tool in kept
        if isinstance(tool, FunctionTool)
    ]
    return ToolConversion(out, dropped)


def to_responses_tools(
    tools: Sequence[ToolSpec], *, strict: bool = True
) -> ToolConversion:
    """Responses API: flat function tools plus ``custom`` freeform tools."""
    kept, dropped = _supported(
        tools, wire_api=WireApi.RESPONSES, strict=strict, allow_freeform=True
    )
    out: list[dict[str, Any]] = []
    for tool in kept:
        if isinstance(tool, FreeformTool):
            out.append(
                {
                    "type": "custom",
                    "name": tool.name,
                    "description": tool.description,
                    "format": {
                        "type": tool.grammar.type,
                        "syntax": tool.grammar.syntax,
                        "definition": tool.grammar.definition,
                    },
                }
            )
        else:
            out.append(
                {
                    "type": "function",
                    "name": tool.name,
                    "description": tool.description,
                    "strict": tool.strict,
                    "parameters": deepcopy(tool.parameters),
                }
            )
    return ToolConversion(out, dropped)


def to_gemini_tools(tools: Sequence[ToolSpec], *, strict: bool = True) -> ToolConversion:
    """Gemini: one ``tools`` entry holding every ``functionDeclarations`` item."""
    kept, dropped = _supported(
        tools, wire_api=WireApi.GOOGLE_GENAI, strict=strict, allow_freeform=False
    )
    declarations = [
        {
            "name": tool.name,
            "description": tool.description,
            "parameters": deepcopy(tool.parameters),
        }
        for tool in kept
        if isinstance(tool, FunctionTool)
    ]
    if not declarations:
        return ToolConversion([], dropped)
    return ToolConversion([{"functionDeclarations": declarations}], dropped)


def to_anthropic_tools(
    tools: Sequence[ToolSpec], *, strict: bool = True
) -> ToolConversion:
    """Anthropic: flat ``{name, description, input_schema}`` entries."""
    kept, dropped = _supported(
        tools, wire_api=WireApi.ANTHROPIC_MESSAGES, strict=strict, allow_freeform=False
    )
    out = [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": deepcopy(tool.parameters),
        }
        for tool in kept
        if isinstance(tool, FunctionTool)
    ]
    return ToolConversion(out, dropped)


def convert_tools(
    tools: Sequence[ToolSpec], wire_api: WireApi, *, strict: bool = True
) -> ToolConversion:
    """Convert *tools* for *wire_api*."""
    if wire_api is WireApi.RESPONSES:
        return to_responses_tools(tools, strict=strict)
    if wire_api is WireApi.CHAT:
        return to_chat_tools(tools, strict=strict)
    if wire_api is WireApi.GOOGLE_GENAI:
        return to_gemini_tools(tools, strict=strict)
    if wire_api is WireApi.ANTHROPIC_MESSAGES:
        return to_anthropic_tools(tools, strict=strict)
    raise ValueError(f"Unknown wire api: {wire_api!r}")


def iter_function_triples(
    converted: Iterable[dict[str, Any]],
) -> Iterable[tuple[str, str, dict[str, Any]]]:
    """Yield ``(name, description, parameters)`` back out of converted tool JSON.

    Accepts the output of any converter; freeform ``custom`` tools are skipped.
    """
    for entry in converted:
        if "functionDeclarations" in entry:
            for decl in entry["functionDeclarations"]:
                yield decl["name"], decl.get("description", ""), decl["parameters"]
        elif entry.get("type") == "function" and "function" in entry:
            fn = entry["function"]
            yield fn["name"], fn.get("description", ""), fn["parameters"]
        elif entry.get("type") == "function":
            yield entry["name"], entry.get("description", ""), entry["parameters"]
        elif "input_schema" in entry:
            yield entry["name"], entry.get("description", ""), entry["input_schema"]
