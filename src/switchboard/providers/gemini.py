"""Google Gemini (Generative Language API) adapter."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

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

#: Gemini's functionResponse needs a name, but FunctionCallOutput only
#: carries the call id.
FUNCTION_RESPONSE_NAME = "function"

_THINKING_BUDGETS = {
    "minimal": 0,
    "low": 1024,
    "medium": 8192,
    "high": 24576,
}

_TEXT_SLOT = 0
_REASONING_SLOT = 1


class GeminiAdapter(ProviderAdapter):
    """``POST /models/{model}:streamGenerateContent?alt=sse``."""

    wire_api = WireApi.GOOGLE_GENAI

    def auth_headers(self, credential: ResolvedCredential | None) -> dict[str, str]:
        if credential is None:
            return {}
        if credential.scheme == "api_key":
            return {"x-goog-api-key": credential.secret}
        return {"authorization": credential.bearer}

    def build_body(
        self,
        request: ProviderRequest,
        tools: ToolConversion,
        provider: ProviderInfo,
    ) -> dict[str, Any]:
        system_parts, contents = _build_contents(request)
        if request.instructions:
            system_parts.insert(0, request.instructions)

        body: dict[str, Any] = {"contents": contents}
        system = [{"text": text} for text in system_parts if text]
        if system:
            body["systemInstruction"] = {"parts": system}
        if tools:
            body["tools"] = tools.tools

        config = _generation_config(request)
        if config:
            body["generationConfig"] = config
        return body

    def new_parser(self) -> GeminiStreamParser:
        return GeminiStreamParser()


def _generation_config(request: ProviderRequest) -> dict[str, Any]:
    settings = request.settings
    config: dict[str, Any] = {}
    if settings.temperature is not None:
        config["temperature"] = settings.temperature
    if settings.top_p is not None:
        config["topP"] = settings.top_p
    if settings.max_output_tokens is not None:
        config["maxOutputTokens"] = settings.max_output_tokens
    if settings.stop:
        config["stopSequences"] = list(settings.stop)
    if settings.reasoning_effort is not None:
        effort = settings.reasoning_effort.strip().lower()
        budget = _THINKING_BUDGETS.get(effort)
        if budget is None:
            allowed = ", ".join(_THINKING_BUDGETS)
            raise BuildError(
                f"Unsupported reasoning_effort for Gemini: {settings.reasoning_effort!r}",
                hint=f"Use one of: {allowed}.",
            )
        config["thinkingConfig"] = {"thinkingBudget": budget, "includeThoughts": budget > 0}
    return config


def _build_contents(
    request: ProviderRequest,
) -> tuple[list[str], list[dict[str, Any]]]:
    system_parts: list[str] = []
    contents: list[dict[str, Any]] = []

    def add(role: str, parts: list[dict[str, Any]]) -> None:
        if not parts:
            return
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"] = contents[-1]["parts"] + parts
        else:
            contents.append({"role": role, "parts": parts})

    for item in request.items:
        if isinstance(item, Message):
            if item.role in ("system", "developer"):
                system_parts.append(item.text)
                continue
            role = "model" if item.role == "assistant" else "user"
            add(role, [{"text": part.text} for part in item.content if part.text])
        elif isinstance(item, FunctionCall):
            try:
                args = item.parsed_arguments()
            except ValueError:
                logger.debug("Replaying tool call %s with unparseable arguments", item.call_id)
                args = {}
            add("model", [{"functionCall": {"name": item.name, "args": args}}])
        elif isinstance(item, FunctionCallOutput):
            add(
                "user",
                [
                    {
                        "functionResponse": {
                            "name": FUNCTION_RESPONSE_NAME,
                            "response": {"content": item.output},
                        }
                    }
                ],
            )

    return system_parts, drop_empty(contents, "parts")


def _parse_usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    return TokenUsage(
        input_tokens=raw.get("promptTokenCount") or 0,
        output_tokens=raw.get("candidatesTokenCount") or 0,
        cached_input_tokens=raw.get("cachedContentTokenCount") or 0,
        reasoning_output_tokens=raw.get("thoughtsTokenCount") or 0,
    )


class GeminiStreamParser(StreamParser):
    """Each frame is a full GenerateContentResponse chunk.

    Function calls arrive whole, so they are emitted as OutputItemAdded and
    OutputItemDone in one step. The stream ends at the frame carrying
    ``finishReason``; usage may trail in a later frame.
    """

    def __init__(self) -> None:
        super().__init__()
        self._usage: TokenUsage | None = None
        self._finish_reason: str | None = None
        self._calls = 0

    def on_frame(self, frame: SSEFrame) -> list[UnifiedEvent]:
        payload = frame.json()
        if payload is None:
            return []

        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            return [
                self.fail(
                    StreamErrorKind.PROVIDER_ERROR,
                    error.get("message") or "provider reported an error",
                    status=code if isinstance(code, int) else None,
                    body=json.dumps(payload),
                )
            ]

        if self.response_id is None and isinstance(payload.get("responseId"), str):
            self.response_id = payload["responseId"]
        usage = _parse_usage(payload.get("usageMetadata"))
        if usage is not None:
            self._usage = usage

        feedback = payload.get("promptFeedback") or {}
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            return [
                self.fail(
                    StreamErrorKind.PROVIDER_ERROR,
                    f"prompt blocked: {feedback['blockReason']}",
                    body=json.dumps(payload),
                )
            ]

        if self._finish_reason is not None:
            # Trailing usage-only frame after finishReason.
            return [self.complete(self._usage, self._finish_reason)] if usage else []

        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return []
        candidate = candidates[0] if isinstance(candidates[0], dict) else {}
        events = self._on_parts((candidate.get("content") or {}).get("parts") or [])

        finish_reason = candidate.get("finishReason")
        if isinstance(finish_reason, str) and finish_reason:
            self._finish_reason = finish_reason
            events.extend(self._close_text())
            if usage is not None:
                events.append(self.complete(self._usage, finish_reason))
        return events

    def on_end(self) -> list[UnifiedEvent]:
        if self._finish_reason is not None:
            return [self.complete(self._usage, self._finish_reason)]
        return []

    def _on_parts(self, parts: list[Any]) -> list[UnifiedEvent]:
        events: list[UnifiedEvent] = []
        for part in parts:
            if not isinstance(part, dict):
                continue
            text = part.get("text")
            if isinstance(text, str) and text:
                if part.get("thought"):
                    if _REASONING_SLOT not in self.arena:
                        self.arena.open(_REASONING_SLOT, "reasoning")
                    self.arena.append(_REASONING_SLOT, text)
                    events.append(ReasoningDelta(text))
                else:
                    if _TEXT_SLOT not in self.arena:
                        self.arena.open(_TEXT_SLOT, "text")
                    self.arena.append(_TEXT_SLOT, text)
                    events.append(OutputTextDelta(text))
                continue
            call = part.get("functionCall")
            if isinstance(call, dict):
                self._calls += 1
                item = FunctionCall(
                    call_id=call.get("id") or f"call_{self._calls}",
                    name=call.get("name") or "",
                    arguments=json.dumps(call.get("args") or {}),
                )
                events.append(OutputItemAdded(item))
                events.append(OutputItemDone(item))
        return events

    def _close_text(self) -> list[UnifiedEvent]:
        events: list[UnifiedEvent] = []
        if _REASONING_SLOT in self.arena:
            slot = self.arena.close(_REASONING_SLOT)
            events.append(OutputItemDone(Reasoning(summary=(slot.text,))))
        if _TEXT_SLOT in self.arena:
            slot = self.arena.close(_TEXT_SLOT)
            events.append(OutputItemDone(Message.assistant(slot.text)))
        return events
