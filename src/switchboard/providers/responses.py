"""OpenAI Responses API adapter."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from switchboard.models import (
    CustomToolCall,
    CustomToolCallOutput,
    FunctionCall,
    FunctionCallOutput,
    InputText,
    Message,
    OutputItemAdded,
    OutputItemDone,
    OutputText,
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
    from switchboard.models import ConversationItem, ProviderRequest, UnifiedEvent
    from switchboard.sse import SSEFrame
    from switchboard.tools import ToolConversion

logger = logging.getLogger(__name__)

# Fragment-carrying delta events -> fragment kind.
_DELTA_EVENTS = {
    "response.output_text.delta": "text",
    "response.function_call_arguments.delta": "arguments",
    "response.custom_tool_call_input.delta": "input",
    "response.reasoning_summary_text.delta": "reasoning",
    "response.reasoning_text.delta": "reasoning",
}


class ResponsesAdapter(ProviderAdapter):
    """Responses API (``POST /responses``)."""

    wire_api = WireApi.RESPONSES

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
        # Azure deployments resolve item references server-side, so items
        # must be stored and keep their ids.
        store = provider.is_azure_responses_endpoint()
        body: dict[str, Any] = {
            "model": request.model,
            "input": [_render_item(item, keep_ids=store) for item in request.items],
            "parallel_tool_calls": request.parallel_tool_calls,
            "store": store,
            "stream": True,
        }
        if tools:
            body["tools"] = tools.tools
            body["tool_choice"] = "auto"
        if request.instructions:
            body["instructions"] = request.instructions
        if request.previous_response_id:
            body["previous_response_id"] = request.previous_response_id
        if settings.reasoning_effort is not None:
            body["reasoning"] = {
                "effort": settings.reasoning_effort,
                "summary": settings.reasoning_summary or "auto",
            }
            if not store:
                body["include"] = ["reasoning.encrypted_content"]
        if settings.temperature is not None:
            body["temperature"] = settings.temperature
        if settings.top_p is not None:
            body["top_p"] = settings.top_p
        if settings.max_output_tokens is not None:
            body["max_output_tokens"] = settings.max_output_tokens
        if settings.stop:
            logger.debug("Responses API has no stop sequences; ignoring %d", len(settings.stop))
        return body

    def new_parser(self) -> ResponsesStreamParser:
        return ResponsesStreamParser()


def _render_item(item: ConversationItem, *, keep_ids: bool) -> dict[str, Any]:
    out: dict[str, Any]
    if isinstance(item, Message):
        out = {
            "type": "message",
            "role": item.role,
            "content": [
                {
                    "type": "output_text" if isinstance(part, OutputText) else "input_text",
                    "text": part.text,
                }
                for part in item.content
            ],
        }
    elif isinstance(item, FunctionCall):
        out = {
            "type": "function_call",
            "call_id": item.call_id,
            "name": item.name,
            "arguments": item.arguments,
        }
    elif isinstance(item, FunctionCallOutput):
        out = {"type": "function_call_output", "call_id": item.call_id, "output": item.output}
    elif isinstance(item, CustomToolCall):
        out = {
            "type": "custom_tool_call",
            "call_id": item.call_id,
            "name": item.name,
            "input": item.input,
        }
    elif isinstance(item, CustomToolCallOutput):
        out = {"type": "custom_tool_call_output", "call_id": item.call_id, "output": item.output}
    else:
        out = {
            "type": "reasoning",
            "summary": [{"type": "summary_text", "text": text} for text in item.summary],
        }
        if item.encrypted_content is not None:
            out["encrypted_content"] = item.encrypted_content
    item_id = getattr(item, "id", None)
    if keep_ids and item_id:
        out["id"] = item_id
    return out


def parse_output_item(raw: Any) -> ConversationItem | None:
    """Decode one Responses output item; None for item types not modelled."""
    if not isinstance(raw, dict):
        return None
    item_type = raw.get("type")
    item_id = raw.get("id")
    if item_type == "message":
        parts: list[InputText | OutputText] = []
        for part in raw.get("content") or []:
            if not isinstance(part, dict) or not isinstance(part.get("text"), str):
                continue
            cls = InputText if part.get("type") == "input_text" else OutputText
            parts.append(cls(part["text"]))
        return Message(role=raw.get("role") or "assistant", content=tuple(parts), id=item_id)
    if item_type == "function_call":
        return FunctionCall(
            call_id=raw.get("call_id") or item_id or "",
            name=raw.get("name") or "",
            arguments=raw.get("arguments") or "",
            id=item_id,
        )
    if item_type == "custom_tool_call":
        return CustomToolCall(
            call_id=raw.get("call_id") or item_id or "",
            name=raw.get("name") or "",
            input=raw.get("input") or "",
            id=item_id,
        )
    if item_type == "reasoning":
        summary = tuple(
            part["text"]
            for part in raw.get("summary") or []
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        return Reasoning(
            summary=summary, encrypted_content=raw.get("encrypted_content"), id=item_id
        )
    return None


def _parse_usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    input_details = raw.get("input_tokens_details") or {}
    output_details = raw.get("output_tokens_details") or {}
    return TokenUsage(
        input_tokens=raw.get("input_tokens") or 0,
        output_tokens=raw.get("output_tokens") or 0,
        cached_input_tokens=input_details.get("cached_tokens") or 0,
        reasoning_output_tokens=output_details.get("reasoning_tokens") or 0,
    )


class ResponsesStreamParser(StreamParser):
    """Mostly a relay: items already arrive scoped by ``output_index``.

    Delta fragments are still merged per item so ``output_item.done`` can be
    completed when the provider sends it without the final text.
    """

    def on_frame(self, frame: SSEFrame) -> list[UnifiedEvent]:
        payload = frame.json()
        if payload is None:
            return []
        event_type = payload.get("type") or frame.event

        if event_type == "response.created":
            response = payload.get("response") or {}
            if isinstance(response.get("id"), str):
                self.response_id = response["id"]
            return []
        if event_type == "response.output_item.added":
            return self._on_item_added(payload)
        if event_type in _DELTA_EVENTS:
            return self._on_delta(payload, _DELTA_EVENTS[event_type])
        if event_type == "response.output_item.done":
            return self._on_item_done(payload)
        if event_type == "response.completed":
            response = payload.get("response") or {}
            if isinstance(response.get("id"), str):
                self.response_id = response["id"]
            leftover = self.arena.discard_all()
            if leftover:
                logger.warning(
                    "response.completed with %d unfinished item(s) (%s); dropping them",
                    len(leftover),
                    ", ".join(slot.kind for slot in leftover),
                )
            return [self.complete(_parse_usage(response.get("usage")))]
        if event_type == "response.failed":
            response = payload.get("response") or {}
            error = response.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else None
            return [
                self.fail(
                    StreamErrorKind.PROVIDER_ERROR,
                    message or "response failed",
                    body=json.dumps(error) if error else None,
                )
            ]
        if event_type == "response.incomplete":
            response = payload.get("response") or {}
            details = response.get("incomplete_details") or {}
            reason = details.get("reason") if isinstance(details, dict) else None
            return [
                self.fail(
                    StreamErrorKind.PROVIDER_ERROR,
                    f"response incomplete: {reason or 'unknown reason'}",
                    body=json.dumps(details) if details else None,
                )
            ]
        if event_type == "error":
            return [
                self.fail(
                    StreamErrorKind.PROVIDER_ERROR,
                    payload.get("message") or "provider reported an error",
                    body=json.dumps(payload),
                )
            ]
        return []

    def _on_item_added(self, payload: dict[str, Any]) -> list[UnifiedEvent]:
        index = payload.get("output_index")
        item = parse_output_item(payload.get("item"))
        if item is None:
            return []
        if isinstance(index, int) and index not in self.arena:
            self.arena.open(index, type(item).__name__)
        return [OutputItemAdded(item)]

    def _on_delta(self, payload: dict[str, Any], kind: str) -> list[UnifiedEvent]:
        index = payload.get("output_index")
        delta = payload.get("delta")
        if not isinstance(delta, str) or not delta:
            return []
        if isinstance(index, int) and index in self.arena and kind != "reasoning":
            self.arena.append(index, delta)
        item_index = index if isinstance(index, int) else None
        if kind == "text":
            return [OutputTextDelta(delta, item_index=item_index)]
        if kind == "reasoning":
            return [ReasoningDelta(delta, item_index=item_index)]
        return []

    def _on_item_done(self, payload: dict[str, Any]) -> list[UnifiedEvent]:
        index = payload.get("output_index")
        accumulated = ""
        if isinstance(index, int) and index in self.arena:
            accumulated = self.arena.close(index).text
        item = parse_output_item(payload.get("item"))
        if item is None:
            return []

        if isinstance(item, Message) and not item.text and accumulated:
            item = Message(role=item.role, content=(OutputText(accumulated),), id=item.id)
        elif isinstance(item, CustomToolCall) and not item.input and accumulated:
            item = CustomToolCall(
                call_id=item.call_id, name=item.name, input=accumulated, id=item.id
            )
        elif isinstance(item, FunctionCall):
            arguments = item.arguments or accumulated or "{}"
            try:
                json.loads(arguments)
            except ValueError:
                return [
                    self.fail(
                        StreamErrorKind.MALFORMED_TOOL_ARGUMENTS,
                        f"function call {item.name!r} has malformed JSON arguments",
                        body=arguments[:200],
                    )
                ]
            if arguments != item.arguments:
                item = FunctionCall(
                    call_id=item.call_id, name=item.name, arguments=arguments, id=item.id
                )
        return [OutputItemDone(item)]
