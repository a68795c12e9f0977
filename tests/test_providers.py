"""Request builders: bodies, URLs and headers per wire protocol."""

from __future__ import annotations

import pytest

from switchboard.auth import ResolvedCredential
from switchboard.config import ProviderInfo
from switchboard.errors import BuildError, HeaderCollisionError, UnsupportedToolError
from switchboard.models import (
    CustomToolCall,
    FreeformFormat,
    FreeformTool,
    FunctionCall,
    FunctionCallOutput,
    FunctionTool,
    GenerationSettings,
    Message,
    ProviderRequest,
    Reasoning,
    WireApi,
)
from switchboard.providers import (
    AnthropicAdapter,
    ChatAdapter,
    GeminiAdapter,
    ResponsesAdapter,
    adapter_for,
)
from switchboard.providers.base import assemble_headers
from switchboard.providers.gemini import FUNCTION_RESPONSE_NAME

pytestmark = pytest.mark.contract

KEY = ResolvedCredential(secret="sk-test", scheme="api_key")
BEARER = ResolvedCredential(secret="oauth-token", scheme="bearer")
WEATHER = FunctionTool(name="get_weather", description="Weather", parameters={"type": "object"})
SETTINGS = GenerationSettings(max_output_tokens=256)


def _provider(wire_api: WireApi, **fields) -> ProviderInfo:
    return ProviderInfo(name="p", base_url="https://llm.test/v1", wire_api=wire_api, **fields)


def _build(wire_api: WireApi, request: ProviderRequest, credential=KEY, **fields):
    return adapter_for(wire_api).build(request, _provider(wire_api, **fields), credential)


TOOL_TURN = (
    Message.user("weather in Paris?"),
    FunctionCall(call_id="call_1", name="get_weather", arguments='{"location": "Paris"}'),
    FunctionCallOutput(call_id="call_1", output="sunny"),
)


# =============================================================================
# Cross-protocol properties
# =============================================================================


def _rendered_messages(wire_api: WireApi, body: dict) -> list[dict]:
    if wire_api is WireApi.RESPONSES:
        return body["input"]
    if wire_api is WireApi.GOOGLE_GENAI:
        return body["contents"]
    return body["messages"]


@pytest.mark.parametrize(
    ("wire_api", "role"),
    [
        (WireApi.RESPONSES, "user"),
        (WireApi.CHAT, "user"),
        (WireApi.GOOGLE_GENAI, "user"),
        (WireApi.ANTHROPIC_MESSAGES, "user"),
    ],
)
def test_single_text_message_without_tools(wire_api: WireApi, role: str) -> None:
    request = ProviderRequest(model="m", items=(Message.user("hello"),), settings=SETTINGS)
    body = _build(wire_api, request).body

    (message,) = _rendered_messages(wire_api, body)
    assert message["role"] == role
    assert "tools" not in body


@pytest.mark.parametrize("wire_api", list(WireApi))
def test_empty_instructions_are_omitted(wire_api: WireApi) -> None:
    request = ProviderRequest(model="m", instructions="", items=(Message.user("hi"),), settings=SETTINGS)
    body = _build(wire_api, request).body
    assert "instructions" not in body
    assert "system" not in body
    assert "systemInstruction" not in body
    if wire_api is WireApi.CHAT:
        assert all(m["role"] != "system" for m in body["messages"])


def test_adapter_for_covers_every_wire_api() -> None:
    assert isinstance(adapter_for(WireApi.RESPONSES), ResponsesAdapter)
    assert isinstance(adapter_for("chat"), ChatAdapter)
    assert isinstance(adapter_for(WireApi.GOOGLE_GENAI), GeminiAdapter)
    assert isinstance(adapter_for(WireApi.ANTHROPIC_MESSAGES), AnthropicAdapter)
    with pytest.raises(ValueError, match="Unknown wire api"):
        adapter_for("smoke-signals")


def test_built_request_repr_hides_header_values() -> None:
    built = _build(WireApi.CHAT, ProviderRequest(model="m"))
    assert "sk-test" not in repr(built)
    assert "authorization" in repr(built)


# =============================================================================
# OpenAI Responses
# =============================================================================


def test_responses_body() -> None:
    request = ProviderRequest(
        model="gpt-5",
        instructions="be brief",
        items=(
            *TOOL_TURN,
            Message.assistant("It is sunny."),
            Reasoning(summary=("thought",), encrypted_content="enc", id="rs_1"),
            CustomToolCall(call_id="c2", name="apply_patch", input="*** Begin"),
        ),
        tools=(WEATHER,),
        parallel_tool_calls=True,
        settings=GenerationSettings(reasoning_effort="high", max_output_tokens=100),
        previous_response_id="resp_0",
    )
    built = _build(WireApi.RESPONSES, request)
    body = built.body

    assert built.url == "https://llm.test/v1/responses"
    assert built.headers["authorization"] == "Bearer sk-test"
    assert body["instructions"] == "be brief"
    assert body["stream"] is True
    assert body["store"] is False
    assert body["parallel_tool_calls"] is True
    assert body["previous_response_id"] == "resp_0"
    assert body["max_output_tokens"] == 100
    assert body["reasoning"] == {"effort": "high", "summary": "auto"}
    assert body["include"] == ["reasoning.encrypted_content"]
    assert [item["type"] for item in body["input"]] == [
        "message",
        "function_call",
        "function_call_output",
        "message",
        "reasoning",
        "custom_tool_call",
    ]
    assert body["input"][0]["content"] == [{"type": "input_text", "text": "weather in Paris?"}]
    assert body["input"][3]["content"] == [{"type": "output_text", "text": "It is sunny."}]
    assert body["input"][1] == {
        "type": "function_call",
        "call_id": "call_1",
        "name": "get_weather",
        "arguments": '{"location": "Paris"}',
    }
    assert body["input"][4]["encrypted_content"] == "enc"
    assert "id" not in body["input"][4]


def test_responses_azure_stores_items_with_ids() -> None:
    request = ProviderRequest(
        model="m", items=(Message.assistant("x", id="msg_1"),), settings=SETTINGS
    )
    provider = ProviderInfo(
        name="azure", base_url="https://r.openai.azure.com/openai", wire_api=WireApi.RESPONSES
    )
    body = ResponsesAdapter().build(request, provider, KEY).body
    assert body["store"] is True
    assert body["input"][0]["id"] == "msg_1"


def test_responses_accepts_freeform_tools() -> None:
    patch = FreeformTool(
        name="apply_patch", description="patch", grammar=FreeformFormat("lark", "start: /.+/")
    )
    body = _build(WireApi.RESPONSES, ProviderRequest(model="m", tools=(patch,))).body
    assert body["tools"][0]["type"] == "custom"


# =============================================================================
# OpenAI Chat
# =============================================================================


def test_chat_body() -> None:
    request = ProviderRequest(
        model="gpt-4o",
        instructions="sys",
        items=(*TOOL_TURN, Message.assistant("")),
        tools=(WEATHER,),
        settings=GenerationSettings(temperature=0.2, max_output_tokens=50, stop=("END",)),
    )
    built = _build(WireApi.CHAT, request)
    body = built.body

    assert built.url == "https://llm.test/v1/chat/completions"
    assert body["stream"] is True
    assert body["stream_options"] == {"include_usage": True}
    assert body["parallel_tool_calls"] is False
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 50
    assert body["stop"] == ["END"]
    assert body["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "weather in Paris?"},
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "get_weather", "arguments": '{"location": "Paris"}'},
                }
            ],
        },
        {"role": "tool", "tool_call_id": "call_1", "content": "sunny"},
    ]


def test_chat_folds_tool_calls_into_preceding_assistant_message() -> None:
    request = ProviderRequest(
        model="m",
        items=(
            Message.assistant("checking"),
            FunctionCall(call_id="a", name="f", arguments="{}"),
            FunctionCall(call_id="b", name="g", arguments="{}"),
        ),
    )
    (message,) = _build(WireApi.CHAT, request).body["messages"]
    assert message["content"] == "checking"
    assert [c["id"] for c in message["tool_calls"]] == ["a", "b"]


def test_chat_without_credential_sends_no_authorization() -> None:
    built = _build(WireApi.CHAT, ProviderRequest(model="m"), credential=None)
    assert "authorization" not in {k.lower() for k in built.headers}


# =============================================================================
# Gemini
# =============================================================================


def test_gemini_body_and_url() -> None:
    request = ProviderRequest(
        model="gemini-2.5-pro",
        instructions="sys",
        items=(*TOOL_TURN, Message.assistant("It is sunny."), Message.user("thanks")),
        tools=(WEATHER,),
        settings=GenerationSettings(temperature=0.5, top_p=0.9, max_output_tokens=64),
    )
    built = _build(WireApi.GOOGLE_GENAI, request)
    body = built.body

    assert built.url == "https://llm.test/v1/models/gemini-2.5-pro:streamGenerateContent?alt=sse"
    assert built.headers["x-goog-api-key"] == "sk-test"
    assert "model" not in body
    assert body["systemInstruction"] == {"parts": [{"text": "sys"}]}
    assert body["tools"] == [
        {"functionDeclarations": [{"name": "get_weather", "description": "Weather", "parameters": {"type": "object"}}]}
    ]
    assert body["generationConfig"] == {"temperature": 0.5, "topP": 0.9, "maxOutputTokens": 64}
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user", "model", "user"]
    assert body["contents"][1]["parts"] == [
        {"functionCall": {"name": "get_weather", "args": {"location": "Paris"}}}
    ]
    assert body["contents"][2]["parts"] == [
        {
            "functionResponse": {
                "name": FUNCTION_RESPONSE_NAME,
                "response": {"content": "sunny"},
            }
        }
    ]


def test_gemini_merges_same_role_and_drops_empty_entries() -> None:
    request = ProviderRequest(
        model="m",
        items=(Message.user("a"), Message.user("b"), Message.assistant(""), Message.user("c")),
    )
    contents = _build(WireApi.GOOGLE_GENAI, request).body["contents"]
    assert contents == [{"role": "user", "parts": [{"text": "a"}, {"text": "b"}, {"text": "c"}]}]


def test_gemini_oauth_uses_bearer() -> None:
    built = _build(WireApi.GOOGLE_GENAI, ProviderRequest(model="m"), credential=BEARER)
    assert built.headers["authorization"] == "Bearer oauth-token"
    assert "x-goog-api-key" not in built.headers


def test_gemini_rejects_unknown_reasoning_effort() -> None:
    request = ProviderRequest(model="m", settings=GenerationSettings(reasoning_effort="ludicrous"))
    with pytest.raises(BuildError):
        _build(WireApi.GOOGLE_GENAI, request)


# =============================================================================
# Anthropic
# =============================================================================


def test_anthropic_body() -> None:
    request = ProviderRequest(
        model="claude-sonnet-4-5",
        instructions="sys",
        items=(
            Message(role="developer", content=Message.user("dev note").content),
            *TOOL_TURN,
            FunctionCallOutput(call_id="call_2", output="boom", success=False),
        ),
        tools=(WEATHER,),
        settings=GenerationSettings(max_output_tokens=1024, stop=("STOP",)),
    )
    built = _build(WireApi.ANTHROPIC_MESSAGES, request)
    body = built.body

    assert built.url == "https://llm.test/v1/messages"
    assert built.headers["x-api-key"] == "sk-test"
    assert built.headers["anthropic-version"] == "2023-06-01"
    assert body["max_tokens"] == 1024
    assert body["system"] == "sys\n\ndev note"
    assert body["stop_sequences"] == ["STOP"]
    assert body["tools"] == [{"name": "get_weather", "description": "Weather", "input_schema": {"type": "object"}}]
    assert body["tool_choice"] == {"type": "auto", "disable_parallel_tool_use": True}
    assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
    assert body["messages"][1]["content"] == [
        {"type": "tool_use", "id": "call_1", "name": "get_weather", "input": {"location": "Paris"}}
    ]
    assert body["messages"][2]["content"] == [
        {"type": "tool_result", "tool_use_id": "call_1", "content": "sunny"},
        {"type": "tool_result", "tool_use_id": "call_2", "content": "boom", "is_error": True},
    ]


def test_anthropic_requires_max_tokens() -> None:
    with pytest.raises(BuildError) as exc:
        _build(WireApi.ANTHROPIC_MESSAGES, ProviderRequest(model="m", items=(Message.user("hi"),)))
    assert exc.value.kind == "missing_required_field"


def test_anthropic_drops_empty_assistant_turn() -> None:
    request = ProviderRequest(
        model="m",
        items=(Message.user("hi"), Message.assistant(""), Message.user("again")),
        settings=SETTINGS,
    )
    messages = _build(WireApi.ANTHROPIC_MESSAGES, request).body["messages"]
    assert messages == [
        {"role": "user", "content": [{"type": "text", "text": "hi"}, {"type": "text", "text": "again"}]}
    ]


def test_anthropic_parallel_tool_calls_leave_tool_choice_unset() -> None:
    request = ProviderRequest(model="m", tools=(WEATHER,), parallel_tool_calls=True, settings=SETTINGS)
    assert "tool_choice" not in _build(WireApi.ANTHROPIC_MESSAGES, request).body


def test_anthropic_thinking_budget() -> None:
    request = ProviderRequest(
        model="m", settings=GenerationSettings(max_output_tokens=8000, reasoning_effort="medium")
    )
    body = _build(WireApi.ANTHROPIC_MESSAGES, request).body
    assert body["thinking"] == {"type": "enabled", "budget_tokens": 4096}


def test_anthropic_thinking_budget_must_fit_max_tokens() -> None:
    request = ProviderRequest(
        model="m", settings=GenerationSettings(max_output_tokens=1024, reasoning_effort="low")
    )
    with pytest.raises(BuildError) as exc:
        _build(WireApi.ANTHROPIC_MESSAGES, request)
    assert exc.value.kind == "invalid_request"
    assert "max_tokens" in str(exc.value)


def test_anthropic_replays_thinking_before_tool_use() -> None:
    request = ProviderRequest(
        model="m",
        items=(
            Message.user("weather in Paris?"),
            Reasoning(summary=("Need the ", "weather tool."), encrypted_content="sig-1"),
            Reasoning(encrypted_content="opaque-data"),
            Reasoning(summary=("no signature",)),
            *TOOL_TURN[1:],
        ),
        tools=(WEATHER,),
        settings=GenerationSettings(max_output_tokens=8000, reasoning_effort="low"),
    )
    built = _build(WireApi.ANTHROPIC_MESSAGES, request)

    assert built.headers["anthropic-beta"] == "interleaved-thinking-2025-05-14"
    assistant = built.body["messages"][1]
    assert assistant["role"] == "assistant"
    assert assistant["content"] == [
        {"type": "thinking", "thinking": "Need the weather tool.", "signature": "sig-1"},
        {"type": "redacted_thinking", "data": "opaque-data"},
        {"type": "tool_use", "id": "call_1", "name": "get_weather", "input": {"location": "Paris"}},
    ]


def test_anthropic_beta_header_only_with_thinking_and_tools() -> None:
    request = ProviderRequest(model="m", tools=(WEATHER,), settings=SETTINGS)
    assert "anthropic-beta" not in _build(WireApi.ANTHROPIC_MESSAGES, request).headers


def test_anthropic_rejects_freeform_tools() -> None:
    patch = FreeformTool(
        name="apply_patch", description="patch", grammar=FreeformFormat("lark", "start: /.+/")
    )
    request = ProviderRequest(model="m", tools=(patch,), settings=SETTINGS)
    with pytest.raises(UnsupportedToolError):
        _build(WireApi.ANTHROPIC_MESSAGES, request)


# =============================================================================
# Header assembly
# =============================================================================


def test_configured_and_env_headers_are_merged(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROJECT_ID", "proj-9")
    provider = _provider(
        WireApi.CHAT,
        http_headers={"X-Team": "infra"},
        env_http_headers={"OpenAI-Project": "PROJECT_ID"},
    )
    headers = assemble_headers({"authorization": "Bearer k"}, provider)
    assert headers["X-Team"] == "infra"
    assert headers["OpenAI-Project"] == "proj-9"
    assert headers["authorization"] == "Bearer k"
    assert headers["accept"] == "text/event-stream"


def test_header_collision_fails_fast() -> None:
    provider = _provider(WireApi.ANTHROPIC_MESSAGES, http_headers={"X-Api-Key": "other"})
    with pytest.raises(HeaderCollisionError) as exc:
        assemble_headers({"x-api-key": "sk"}, provider)
    assert exc.value.header == "X-Api-Key"


def test_env_header_collision_fails_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SNEAKY", "Bearer other")
    with pytest.raises(HeaderCollisionError):
        _build(WireApi.CHAT, ProviderRequest(model="m"), env_http_headers={"Authorization": "SNEAKY"})


def test_identical_duplicate_of_mandatory_header_is_allowed() -> None:
    provider = _provider(WireApi.ANTHROPIC_MESSAGES, http_headers={"anthropic-version": "2023-06-01"})
    request = ProviderRequest(model="m", settings=SETTINGS)
    headers = AnthropicAdapter().build(request, provider, KEY).headers
    assert headers["anthropic-version"] == "2023-06-01"
