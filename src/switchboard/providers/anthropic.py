"""Anthropic Messages API adapter."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from switchboard.config import ANTHROPIC_VERSION
from switchboard.errors import BuildError
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
from switchboard.providers.base import ProviderAdapter, StreamParser, drop_empty

if TYPE_CHECKING:
    from switchboard.auth import ResolvedCredential
    from switchboard.config import ProviderInfo
    from switchboard.models import ProviderRequest, UnifiedEvent
    from switchboard.sse import SSEFrame
    from switchboard.tools import ToolConversion

logger = logging.getLogger(__name__)

#: Interleaved thinking lets the model think between tool calls.
_INTERLEAVED_THINKING_BETA_HEADER = "interleaved-thinking-2025-05-14"

_MANUAL_THINKING_BUDGETS = {
    "low": 2048,
    "medium": 4096,
    "high": 6144,
    "max": 7168,
}


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Messages API (``POST /messages``)."""

    wire_api = WireApi.ANTHROPIC_MESSAGES

    def auth_headers(self, credential: ResolvedCredential | None) -> dict[str, str]:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if credential is None:
            return headers
        if credential.scheme == "api_key":
            headers["x-api-key"] = credential.secret
        else:
            headers["authorization"] = credential.bearer
        return headers

    def build_body(
        self,
        request: ProviderRequest,
        tools: ToolConversion,
        provider: ProviderInfo,
    ) -> dict[str, Any]:
        settings = request.settings
        if settings.max_output_tokens is None:
            raise BuildError(
                "Anthropic requires max_tokens",
                kind="missing_required_field",
                hint="Set GenerationSettings(max_output_tokens=...).",
            )

        system_parts, messages = _build_messages(request)
        if request.instructions:
            system_parts.insert(0, request.instructions)

        body: dict[str, Any] = {
            "model": request.model,
            "max_tokens": settings.max_output_tokens,
            "messages": messages,
            "stream": True,
        }
        system = "\n\n".join(p for p in system_parts if p)
        if system:
            body["system"] = system
        if settings.temperature is not None:
            body["temperature"] = settings.temperature
        if settings.top_p is not None:
            body["top_p"] = settings.top_p
        if settings.stop:
            body["stop_sequences"] = list(settings.stop)
        if tools:
            body["tools"] = tools.tools
            if not request.parallel_tool_calls:
                body["tool_choice"] = {"type": "auto", "disable_parallel_tool_use": True}
        if settings.reasoning_effort is not None:
            effort = settings.reasoning_effort.strip().lower()
            budget = _MANUAL_THINKING_BUDGETS.get(effort)
            if budget is None:
                allowed = ", ".join(sorted(_MANUAL_THINKING_BUDGETS))
                raise BuildError(
                    f"Unsupported reasoning_effort for Anthropic: {settings.reasoning_effort!r}",
                    hint=f"Use one of: {allowed}.",
                )
            if budget >= settings.max_output_tokens:
                raise BuildError(
                    f"Thinking budget {budget} for effort {effort!r} must be below "
                    f"max_tokens ({settings.max_output_tokens})",
                    hint="Raise max_output_tokens or lower reasoning_effort.",
                )
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
        return body

    def request_headers(self, request: ProviderRequest, body: dict[str, Any]) -> dict[str, str]:
        if "thinking" in body and "tools" in body:
            return {"anthropic-beta": _INTERLEAVED_THINKING_BETA_HEADER}
        return {}

    def new_parser(self) -> AnthropicStreamParser:
        return AnthropicStreamParser()


def _build_messages(
    request: ProviderRequest,
) -> tuple[list[str], list[dict[str, Any]]]:
    """Render items as Anthropic messages.

    Returns system text gathered from system/developer messages plus the
    message list. Anthropic requires strict user/assistant alternation, so
    consecutive same-role messages are merged.
    """
    system_parts: list[str] = []
    messages: list[dict[str, Any]] = []

    for item in request.items:
        if isinstance(item, Message):
            if item.role in ("system", "developer"):
                system_parts.append(item.text)
                continue
            blocks = [
                {"type": "text", "text": part.text} for part in item.content if part.text
            ]
            _append_message(messages, {"role": item.role, "content": blocks})
        elif isinstance(item, FunctionCall):
            try:
                args = item.parsed_arguments()
            except ValueError:
                logger.debug("Replaying tool call %s with unparseable arguments", item.call_id)
                args = {}
            _append_message(
                messages,
                {
                    "role": "assistant",
                    "content": [
                        {
                            "type": "tool_use",
                            "id": item.call_id,
                            "name": item.name,
                            "input": args,
                        }
                    ],
                },
            )
        elif isinstance(item, FunctionCallOutput):
            block: dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": item.call_id,
                "content": item.output,
            }
            if item.success is False:
                block["is_error"] = True
            _append_message(messages, {"role": "user", "content": [block]})
        elif isinstance(item, Reasoning):
            thinking = _thinking_block_for_replay(item)
            if thinking is None:
                logger.debug("Skipping reasoning item without a signature")
                continue
            _append_message(messages, {"role": "assistant", "content": [thinking]})
        # Freeform tool items have no Anthropic representation.

    return system_parts, drop_empty(messages, "content")


def _thinking_block_for_replay(item: Reasoning) -> dict[str, str] | None:
    """Rebuild the thinking block an earlier response produced.

    Thinking blocks carry their signature in ``encrypted_content``; redacted
    blocks carry only their opaque data there and have no summary.
    """
    if not item.encrypted_content:
        return None
    if item.summary:
        return {
            "type": "thinking",
            "thinking": "".join(item.summary),
            "signature": item.encrypted_content,
        }
    return {"type": "redacted_thinking", "data": item.encrypted_content}


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match."""
    if not msg["content"]:
        return
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)


def _usage_fields(raw: Any) -> dict[str, int]:
    if not isinstance(raw, dict):
        return {}
    fields: dict[str, int] = {}
    for src, dst in (
        ("input_tokens", "input_tokens"),
        ("output_tokens", "output_tokens"),
        ("cache_read_input_tokens", "cached_input_tokens"),
    ):
        value = raw.get(src)
        if isinstance(value, int):
            fields[dst] = value
    return fields


class AnthropicStreamParser(StreamParser):
    """State machine over ``message_start`` ... ``message_stop``."""

    def __init__(self) -> None:
        super().__init__()
        self._usage: dict[str, int] = {}
        self._stop_reason: str | None = None

    def on_frame(self, frame: SSEFrame) -> list[UnifiedEvent]:
        payload = frame.json()
        if payload is None:
            return []
        event_type = frame.event or payload.get("type")

        if event_type == "message_start":
            message = payload.get("message") or {}
            if isinstance(message.get("id"), str):
                self.response_id = message["id"]
            self._usage.update(_usage_fields(message.get("usage")))
            return []
        if event_type == "content_block_start":
            return self._on_block_start(payload)
        if event_type == "content_block_delta":
            return self._on_block_delta(payload)
        if event_type == "content_block_stop":
            return self._on_block_stop(payload)
        if event_type == "message_delta":
            delta = payload.get("delta") or {}
            if isinstance(delta.get("stop_reason"), str):
                self._stop_reason = delta["stop_reason"]
            # Usage on message_delta is cumulative for the message.
            self._usage.update(_usage_fields(payload.get("usage")))
            return []
        if event_type == "message_stop":
            leftover = self.arena.discard_all()
            if leftover:
                logger.warning(
                    "message_stop with %d unclosed block(s) (%s); dropping them",
                    len(leftover),
                    ", ".join(slot.kind for slot in leftover),
                )
            return [self.complete(TokenUsage(**self._usage), self._stop_reason)]
        if event_type == "error":
            error = payload.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else None
            return [
                self.fail(
                    StreamErrorKind.PROVIDER_ERROR,
                    message or "provider reported an error",
                    body=json.dumps(payload),
                )
            ]
        # ping and unknown events
        return []

    def _on_block_start(self, payload: dict[str, Any]) -> list[UnifiedEvent]:
        index = payload.get("index")
        block = payload.get("content_block") or {}
        if not isinstance(index, int) or index in self.arena:
            return []
        kind = block.get("type")
        if kind == "text":
            self.arena.open(index, "text")
            initial = block.get("text") or ""
            if initial:
                self.arena.append(index, initial)
                return [OutputTextDelta(initial, item_index=index)]
            return []
        if kind == "tool_use":
            call_id = block.get("id") or f"toolu_{index}"
            name = block.get("name") or ""
            self.arena.open(index, "tool_use", call_id=call_id, name=name)
            seed = block.get("input")
            if isinstance(seed, dict) and seed:
                self.arena.append(index, json.dumps(seed))
            return [OutputItemAdded(FunctionCall(call_id=call_id, name=name, arguments=""))]
        if kind == "thinking":
            self.arena.open(index, "thinking", signature=block.get("signature"))
            return []
        if kind == "redacted_thinking":
            self.arena.open(index, "redacted_thinking", data=block.get("data"))
            return []
        self.arena.open(index, "ignored")
        return []

    def _on_block_delta(self, payload: dict[str, Any]) -> list[UnifiedEvent]:
        index = payload.get("index")
        delta = payload.get("delta") or {}
        if not isinstance(index, int) or index not in self.arena:
            return []
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text") or ""
            self.arena.append(index, text)
            return [OutputTextDelta(text, item_index=index)] if text else []
        if delta_type == "input_json_delta":
            self.arena.append(index, delta.get("partial_json") or "")
            return []
        if delta_type == "thinking_delta":
            text = delta.get("thinking") or ""
            self.arena.append(index, text)
            return [ReasoningDelta(text, item_index=index)] if text else []
        if delta_type == "signature_delta":
            self.arena.get(index).meta["signature"] = delta.get("signature")
        return []

    def _on_block_stop(self, payload: dict[str, Any]) -> list[UnifiedEvent]:
        index = payload.get("index")
        if not isinstance(index, int) or index not in self.arena:
            return []
        slot = self.arena.close(index)
        if slot.kind == "text":
            return [OutputItemDone(Message.assistant(slot.text))]
        if slot.kind == "tool_use":
            raw = slot.text or "{}"
            try:
                json.loads(raw)
            except ValueError:
                return [
                    self.fail(
                        StreamErrorKind.MALFORMED_TOOL_ARGUMENTS,
                        f"tool_use block {index} ({slot.meta['name']}) has malformed JSON input",
                        body=raw[:200],
                    )
                ]
            return [
                OutputItemDone(
                    FunctionCall(
                        call_id=slot.meta["call_id"],
                        name=slot.meta["name"],
                        arguments=raw,
                    )
                )
            ]
        if slot.kind == "thinking":
            return [
                OutputItemDone(
                    Reasoning(
                        summary=(slot.text,) if slot.text else (),
                        encrypted_content=slot.meta.get("signature"),
                    )
                )
            ]
        if slot.kind == "redacted_thinking":
            return [OutputItemDone(Reasoning(encrypted_content=slot.meta.get("data")))]
        return []
