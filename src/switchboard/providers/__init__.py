"""Provider adapters, one per wire protocol."""

from __future__ import annotations

from switchboard.models import WireApi
from switchboard.providers.anthropic import AnthropicAdapter
from switchboard.providers.base import (
    BuiltRequest,
    ProviderAdapter,
    StreamParser,
    aparse_bytes,
    parse_bytes,
)
from switchboard.providers.chat import ChatAdapter
from switchboard.providers.gemini import GeminiAdapter
from switchboard.providers.responses import ResponsesAdapter

_ADAPTERS: dict[WireApi, type[ProviderAdapter]] = {
    WireApi.RESPONSES: ResponsesAdapter,
    WireApi.CHAT: ChatAdapter,
    WireApi.GOOGLE_GENAI: GeminiAdapter,
    WireApi.ANTHROPIC_MESSAGES: AnthropicAdapter,
}


def adapter_for(wire_api: WireApi | str) -> ProviderAdapter:
    """Return a fresh adapter for *wire_api*.

    Raises:
        ValueError: for an unknown wire protocol.
    """
    try:
        return _ADAPTERS[WireApi(wire_api)]()
    except (KeyError, ValueError):
        raise ValueError(f"Unknown wire api: {wire_api!r}") from None


__all__ = [
    "AnthropicAdapter",
    "BuiltRequest",
    "ChatAdapter",
    "GeminiAdapter",
    "ProviderAdapter",
    "ResponsesAdapter",
    "StreamParser",
    "adapter_for",
    "aparse_bytes",
    "parse_bytes",
]
