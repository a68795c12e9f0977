"""Domain models shared by every wire protocol.

Conversation items and tool specs flow *into* the request builders; unified
events flow *out* of the stream parsers. Everything here is a frozen value so
one request can borrow the caller's history without copying it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
from typing import Any, Literal, Union

Role = Literal["user", "assistant", "system", "developer"]


class WireApi(str, Enum):
    """Wire protocol a provider speaks.

    Protocols use different request/response shapes and cannot be detected
    at runtime, so every provider declares one.
    """

    RESPONSES = "responses"
    CHAT = "chat"
    GOOGLE_GENAI = "google_genai"
    ANTHROPIC_MESSAGES = "anthropic_messages"


# =============================================================================
# Conversation items
# =============================================================================


@dataclass(frozen=True)
class InputText:
    """Caller-authored text."""

    text: str


@dataclass(frozen=True)
class OutputText:
    """Model-authored text."""

    text: str


ContentPart = Union[InputText, OutputText]


@dataclass(frozen=True)
class Message:
    """A conversational message turn."""

    role: Role
    content: tuple[ContentPart, ...] = ()
    id: str | None = None

    @property
    def text(self) -> str:
        """Concatenated text of all content parts."""
        return "".join(part.text for part in self.content)

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", content=(InputText(text),))

    @classmethod
    def assistant(cls, text: str, *, id: str | None = None) -> Message:  # noqa: A002
        return cls(role="assistant", content=(OutputText(text),), id=id)


@dataclass(frozen=True)
class FunctionCall:
    """A tool invocation requested by the model."""

    call_id: str
    name: str
    #: JSON text, exactly as produced by the model.
    arguments: str = "{}"
    id: str | None = None

    def parsed_arguments(self) -> Any:
        """Decode ``arguments``; an empty string decodes to ``{}``."""
        if not self.arguments.strip():
            return {}
        return json.loads(self.arguments)


@dataclass(frozen=True)
class FunctionCallOutput:
    """Result of executing a FunctionCall, sent back to the model."""

    call_id: str
    output: str
    success: bool | None = None


@dataclass(frozen=True)
class CustomToolCall:
    """A freeform tool invocation (Responses API only)."""

    call_id: str
    name: str
    input: str
    id: str | None = None


@dataclass(frozen=True)
class CustomToolCallOutput:
    """Result of a freeform tool invocation."""

    call_id: str
    output: str


@dataclass(frozen=True)
class Reasoning:
    """A reasoning block; ``encrypted_content`` is opaque and replayed verbatim."""

    summary: tuple[str, ...] = ()
    encrypted_content: str | None = None
    id: str | None = None


ConversationItem = Union[
    Message,
    FunctionCall,
    FunctionCallOutput,
    CustomToolCall,
    CustomToolCallOutput,
    Reasoning,
]

# =============================================================================
# Tool specs
# =============================================================================


@dataclass(frozen=True)
class FunctionTool:
    """A JSON-schema described function tool."""

    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    strict: bool = False


@dataclass(frozen=True)
class FreeformFormat:
    """Grammar constraining a freeform tool's input."""

    syntax: str
    definition: str
    type: str = "grammar"


@dataclass(frozen=True)
class FreeformTool:
    """A tool whose input is free text constrained by a grammar."""

    name: str
    description: str
    grammar: FreeformFormat


ToolSpec = Union[FunctionTool, FreeformTool]

# =============================================================================
# Request
# =============================================================================


@dataclass(frozen=True)
class GenerationSettings:
    """Sampling and output controls, mapped per protocol."""

    temperature: float | None = None
    top_p: float | None = None
    max_output_tokens: int | None = None
    reasoning_effort: str | None = None
    reasoning_summary: str | None = None
    stop: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProviderRequest:
    """A provider-agnostic request for one conversation turn."""

    model: str
    instructions: str = ""
    items: tuple[ConversationItem, ...] = ()
    tools: tuple[ToolSpec, ...] = ()
    parallel_tool_calls: bool = False
    settings: GenerationSettings = field(default_factory=GenerationSettings)
    #: Responses API only; ignored elsewhere.
    previous_response_id: str | None = None
    #: Reject (True) or drop with a warning (False) unsupported tool variants.
    strict_tools: bool = True


# =============================================================================
# Unified stream events
# =============================================================================


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    reasoning_output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def merge(self, other: TokenUsage) -> TokenUsage:
        """Return the field-wise sum of two usage records."""
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cached_input_tokens=self.cached_input_tokens + other.cached_input_tokens,
            reasoning_output_tokens=(
                self.reasoning_output_tokens + other.reasoning_output_tokens
            ),
        )


class StreamErrorKind(str, Enum):
    """Why a stream ended without ``Completed``."""

    MALFORMED_TOOL_ARGUMENTS = "malformed_tool_arguments"
    TRUNCATED = "truncated"
    IDLE_TIMEOUT = "idle_timeout"
    PROVIDER_ERROR = "provider_error"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class OutputTextDelta:
    text: str
    item_index: int | None = None


@dataclass(frozen=True)
class ReasoningDelta:
    text: str
    item_index: int | None = None


@dataclass(frozen=True)
class OutputItemAdded:
    item: ConversationItem


@dataclass(frozen=True)
class OutputItemDone:
    item: ConversationItem


@dataclass(frozen=True)
class Completed:
    response_id: str | None
    token_usage: TokenUsage | None = None
    stop_reason: str | None = None


@dataclass(frozen=True)
class StreamError:
    kind: StreamErrorKind
    message: str = ""
    status: int | None = None
    body: str | None = None


@dataclass(frozen=True)
class StreamWarning:
    """Non-fatal notice emitted before any provider event."""

    message: str


UnifiedEvent = Union[
    OutputTextDelta,
    ReasoningDelta,
    OutputItemAdded,
    OutputItemDone,
    Completed,
    StreamError,
    StreamWarning,
]

TERMINAL_EVENTS = (Completed, StreamError)


def is_terminal(event: UnifiedEvent) -> bool:
    """Whether *event* ends a unified event sequence."""
    return isinstance(event, TERMINAL_EVENTS)
