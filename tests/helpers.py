"""Test helpers (small, reusable builders).

Keep this file tiny and purpose-built: SSE byte builders for parser tests and
an httpx mock transport for ModelClient tests.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx

from switchboard.config import ProviderInfo, ProviderRegistry
from switchboard.models import WireApi
from switchboard.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, Callable, Iterable

# Zero-delay retries keep transport tests fast and deterministic.
FAST_RETRY = RetryPolicy(initial_delay_s=0.0, jitter=False)


def sse(data: Any, event: str | None = None) -> bytes:
    """Encode one SSE frame; dict/list payloads are JSON-encoded."""
    text = data if isinstance(data, str) else json.dumps(data)
    head = f"event: {event}\n" if event else ""
    return f"{head}data: {text}\n\n".encode()


def sse_stream(frames: Iterable[tuple[str | None, Any]]) -> bytes:
    return b"".join(sse(data, event) for event, data in frames)


def anthropic_stream(*payloads: dict[str, Any]) -> bytes:
    """Anthropic frames repeat ``type`` as the SSE event name."""
    return b"".join(sse(p, p["type"]) for p in payloads)


def split_at(data: bytes, cuts: Iterable[int]) -> list[bytes]:
    """Split *data* at the given byte offsets."""
    chunks: list[bytes] = []
    prev = 0
    for cut in sorted(set(cuts)):
        if 0 < cut < len(data):
            chunks.append(data[prev:cut])
            prev = cut
    chunks.append(data[prev:])
    return chunks


def registry_with(
    provider_id: str = "test",
    *,
    wire_api: WireApi = WireApi.CHAT,
    **fields: Any,
) -> ProviderRegistry:
    """Registry holding one provider pointed at a fake host."""
    fields.setdefault("base_url", "https://llm.test/v1")
    return ProviderRegistry(
        {provider_id: ProviderInfo(name=provider_id, wire_api=wire_api, **fields)}
    )


def mock_http(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def sse_response(body: bytes, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code, headers={"content-type": "text/event-stream"}, content=body
    )


async def collect(events: AsyncIterable[Any]) -> list[Any]:
    return [event async for event in events]
