"""OpenAI Chat Completions adapter (also most OpenAI-compatible servers)."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from switchboard.models import (
    FunctionCall,
    FunctionCallOutput,
    Message,
    OutputItemAdded,
    OutputItemDone,
    OutputTextDelta,
    Reasoning,
    ReasoningDelta,
    StreamErrorKind,
    TokenUsage,
    WireApi,
)
from switchboard.providers.base import ProviderAdapter, StreamParser

if TYPE_CHECKING:
    from switchboard.auth import ResolvedCredential
    from switchboard.config import ProviderInfo
    from switchboard.models import ProviderRequest, UnifiedEvent
    from switchboard.sse import SSEFrame
    from switchboard.tools import ToolConversion

logger = logging.getLogger(__name__)

# Arena keys for the assistant text and reasoning; tool calls use their
# (non-negative) provider index.
_TEXT_SLOT = -1
_REASONING_SLOT = -2


class ChatAdapter(ProviderAdapter):
    """Chat Completions (``POST /chat/completions``)."""

    wire_api = WireApi.CHAT

    def auth_headers(self, credential: ResolvedCredential | None) -> dict[str, str]:
        if credential is None:
            return {}
        return {"authorization": credential.bearer}

    def build_body(
        self,
        request: ProviderRequest,
        tools: ToolConversion,
        provider: ProviderInfo,
    ) -> dict[str, Any]:
        settings = request.settings
        body: dict[str, Any] = {
            "model": request.model,
            "messages": _build_messages(request),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            body["tools"] = tools.tools
            body["tool_choice"] = "auto"
            body["parallel_tool_calls"] = request.parallel_tool_calls
        if settings.temperature is not None:
            body["temperature"] = settings.temperature
        if settings.top_p is not None:
            body["top_p"] = settings.top_p
        if settings.max_output_tokens is not None:
            body["max_tokens"] = settings.max_output_tokens
        if settings.reasoning_effort is not None:
            body["reasoning_effort"] = settings.reasoning_effort
        if settings.stop:
            body["stop"] = list(settings.stop)
        return body

    def new_parser(self) -> ChatStreamParser:
        return ChatStreamParser()


def _build_messages(request: ProviderRequest) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if request.instructions:
        messages.append({"role": "system", "content": request.instructions})

    for item in request.items:
        if isinstance(item, Message):
            role = "system" if item.role == "developer" else item.role
            text = item.text
            if role == "assistant" and not text:
                continue
            messages.append({"role": role, "content": text})
        elif isinstance(item, FunctionCall):
            call = {
                "id": item.call_id,
                "type": "function",
                "function": {"name": item.name, "arguments": item.arguments},
            }
            last = messages[-1] if messages else None
            if last is not None and last["role"] == "assistant":
                last.setdefault("tool_calls", []).append(call)
            else:
                messages.append({"role": "assistant", "content": None, "tool_calls": [call]})
        elif isinstance(item, FunctionCallOutput):
            messages.append(
                {"role": "tool", "tool_call_id": item.call_id, "content": item.output}
            )
        # Reasoning and freeform tool items are not representable in Chat.
    return messages


def _parse_usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    prompt_details = raw.get("prompt_tokens_details") or {}
    completion_details = raw.get("completion_tokens_details") or {}
    return TokenUsage(
        input_tokens=raw.get("prompt_tokens") or 0,
        output_tokens=raw.get("completion_tokens") or 0,
        cached_input_tokens=prompt_details.get("cached_tokens") or 0,
        reasoning_output_tokens=completion_details.get("reasoning_tokens") or 0,
    )


class ChatStreamParser(StreamParser):
    """Accumulates ``choices[0].delta`` chunks until ``finish_reason``.

    Tool-call fragments are keyed by their ``index``; the ``id`` and
    ``function.name`` usually arrive only on the first fragment.
    """

    def __init__(self) -> None:
        super().__init__()
        self._usage: TokenUsage | None = None
        self._stop_reason: str | None = None
        self._items_done = False

    def on_frame(self, frame: SSEFrame) -> list[UnifiedEvent]:
        if frame.is_done:
            events = [] if self._items_done else self._finish_items()
            if self.finished:
                return events
            return [*events, self.complete(self._usage, self._stop_reason)]

        payload = frame.json()
        if payload is None:
            return []
        if "error" in payload:
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            return [
                self.fail(
                    StreamErrorKind.PROVIDER_ERROR,
                    message or "provider reported an error",
                    body=json.dumps(payload),
                )
            ]

        if self.response_id is None and isinstance(payload.get("id"), str):
            self.response_id = payload["id"]
        usage = _parse_usage(payload.get("usage"))
        if usage is not None:
            self._usage = usage

        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or self._items_done:
            return []
        choice = choices[0] if isinstance(choices[0], dict) else {}
        events = self._on_delta(choice.get("delta") or {})
        finish_reason = choice.get("finish_reason")
        if isinstance(finish_reason, str):
            self._stop_reason = finish_reason
            events.extend(self._finish_items())
        return events

    def on_end(self) -> list[UnifiedEvent]:
        # Some servers omit [DONE]; a seen finish_reason is enough.
        if self._items_done:
            return [self.complete(self._usage, self._stop_reason)]
        return []

    def _on_delta(self, delta: dict[str, Any]) -> list[UnifiedEvent]:
        events: list[UnifiedEvent] = []

        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if isinstance(reasoning, str) and reasoning:
            if _REASONING_SLOT not in self.arena:
                self.arena.open(_REASONING_SLOT, "reasoning")
            self.arena.append(_REASONING_SLOT, reasoning)
            events.append(ReasoningDelta(reasoning))

        content = delta.get("content")
        if isinstance(content, str) and content:
            if _TEXT_SLOT not in self.arena:
                self.arena.open(_TEXT_SLOT, "text")
            self.arena.append(_TEXT_SLOT, content)
            events.append(OutputTextDelta(content))

        for call in delta.get("tool_calls") or []:
            if not isinstance(call, dict):
                continue
            index = call.get("index", 0)
            if not isinstance(index, int) or index < 0:
                continue
            fn = call.get("function") or {}
            if index not in self.arena:
                # The announced id sticks even if a later fragment carries one.
                slot = self.arena.open(
                    index,
                    "function_call",
                    call_id=call.get("id") or f"call_{index}",
                    name=fn.get("name") or "",
                )
                events.append(
                    OutputItemAdded(
                        FunctionCall(
                            call_id=slot.meta["call_id"],
                            name=slot.meta["name"],
                            arguments="",
                        )
                    )
                )
            else:
                slot = self.arena.get(index)
                if not slot.meta["name"] and fn.get("name"):
                    slot.meta["name"] = fn["name"]
            arguments = fn.get("arguments")
            if isinstance(arguments, str):
                self.arena.append(index, arguments)
        return events

    def _finish_items(self) -> list[UnifiedEvent]:
        """Close every open slot: reasoning, then text, then tool calls by index."""
        self._items_done = True
        events: list[UnifiedEvent] = []
        if _REASONING_SLOT in self.arena:
            slot = self.arena.close(_REASONING_SLOT)
            events.append(OutputItemDone(Reasoning(summary=(slot.text,))))
        if _TEXT_SLOT in self.arena:
            slot = self.arena.close(_TEXT_SLOT)
            events.append(OutputItemDone(Message.assistant(slot.text)))
        for index in self.arena.open_indices():
            slot = self.arena.close(index)
            raw = slot.text or "{}"
            try:
                json.loads(raw)
            except ValueError:
                events.append(
                    self.fail(
                        StreamErrorKind.MALFORMED_TOOL_ARGUMENTS,
                        f"tool call {index} ({slot.meta['name']}) has malformed JSON arguments",
                        body=raw[:200],
                    )
                )
                return events
            events.append(
                OutputItemDone(
                    FunctionCall(
                        call_id=slot.meta["call_id"],
                        name=slot.meta["name"],
                        arguments=raw,
                    )
                )
            )
        return events
