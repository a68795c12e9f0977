"""Provider adapter protocol: one request builder + one stream parser per wire API."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, ClassVar

from switchboard.accumulator import SlotArena
from switchboard.errors import HeaderCollisionError
from switchboard.models import (
    Completed,
    StreamError,
    StreamErrorKind,
    is_terminal,
)
from switchboard.sse import SSEDecoder
from switchboard.tools import ToolConversion, convert_tools

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Iterable, Mapping

    from switchboard.auth import ResolvedCredential
    from switchboard.config import ProviderInfo
    from switchboard.models import (
        ProviderRequest,
        TokenUsage,
        UnifiedEvent,
        WireApi,
    )
    from switchboard.sse import SSEFrame

logger = logging.getLogger(__name__)

_BASE_HEADERS = {
    "content-type": "application/json",
    "accept": "text/event-stream",
}


@dataclass(frozen=True)
class BuiltRequest:
    """Everything needed to issue one streaming POST."""

    url: str
    headers: dict[str, str]
    body: dict[str, Any]
    dropped_tools: tuple[str, ...] = ()

    def __repr__(self) -> str:
        """Header values may hold secrets; show names only."""
        return (
            f"BuiltRequest(url={self.url!r}, headers={sorted(self.headers)!r}, "
            f"body_keys={sorted(self.body)!r}, dropped_tools={self.dropped_tools!r})"
        )


def assemble_headers(
    mandatory: Mapping[str, str], provider: ProviderInfo
) -> dict[str, str]:
    """Merge protocol-mandatory headers with the provider's configured ones.

    Configured headers (static, then environment-sourced) may not replace a
    mandatory header with a different value; that raises
    HeaderCollisionError instead of silently winning.
    """
    headers: dict[str, str] = {}
    owned: dict[str, str] = {}
    for name, value in {**_BASE_HEADERS, **mandatory}.items():
        headers[name] = value
        owned[name.lower()] = value

    for source in (provider.http_headers or {}, provider.env_headers()):
        for name, value in source.items():
            existing = owned.get(name.lower())
            if existing is not None:
                if existing != value:
                    raise HeaderCollisionError(
                        f"Header {name!r} configured for provider {provider.name!r} "
                        "collides with a protocol-mandatory header",
                        header=name,
                        hint="Remove it from http_headers/env_http_headers.",
                    )
                continue
            headers[name] = value
    return headers


class StreamParser(ABC):
    """Incremental frame -> UnifiedEvent state machine for one response.

    ``feed`` and ``finish`` never emit anything after the first terminal
    event (Completed or StreamError). A stream that ends without a terminal
    event is reported as truncated.
    """

    def __init__(self) -> None:
        self.arena = SlotArena()
        self.response_id: str | None = None
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, frame: SSEFrame) -> list[UnifiedEvent]:
        if self._finished:
            return []
        return self._settle(self.on_frame(frame))

    def finish(self) -> list[UnifiedEvent]:
        """Signal end of input."""
        if self._finished:
            return []
        events = self._settle(self.on_end())
        if not self._finished:
            events.append(
                self.fail(
                    StreamErrorKind.TRUNCATED,
                    "stream closed before a terminal event",
                )
            )
        return events

    @abstractmethod
    def on_frame(self, frame: SSEFrame) -> list[UnifiedEvent]:
        """Handle one frame; unknown events and fields must be ignored."""

    def on_end(self) -> list[UnifiedEvent]:
        """Handle end of input before truncation is reported."""
        return []

    def fail(
        self,
        kind: StreamErrorKind,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> StreamError:
        """Discard open slots and produce the terminal StreamError."""
        discarded = self.arena.discard_all()
        if discarded:
            logger.debug(
                "Discarding %d open slot(s) after %s", len(discarded), kind.value
            )
        self._finished = True
        return StreamError(kind=kind, message=message, status=status, body=body)

    def complete(
        self, usage: TokenUsage | None, stop_reason: str | None = None
    ) -> Completed:
        self._finished = True
        return Completed(
            response_id=self.response_id, token_usage=usage, stop_reason=stop_reason
        )

    def _settle(self, events: list[UnifiedEvent]) -> list[UnifiedEvent]:
        for i, event in enumerate(events):
            if is_terminal(event):
                self._finished = True
                return events[: i + 1]
        return events


class ProviderAdapter(ABC):
    """Request builder + stream parser for one wire protocol."""

    wire_api: ClassVar[WireApi]

    def build(
        self,
        request: ProviderRequest,
        provider: ProviderInfo,
        credential: ResolvedCredential | None,
    ) -> BuiltRequest:
        """Produce the URL, headers and JSON body for *request*."""
        tools = convert_tools(request.tools, self.wire_api, strict=request.strict_tools)
        body = self.build_body(request, tools, provider)
        mandatory = {**self.auth_headers(credential), **self.request_headers(request, body)}
        headers = assemble_headers(mandatory, provider)
        return BuiltRequest(
            url=provider.full_url(request.model),
            headers=headers,
            body=body,
            dropped_tools=tools.dropped,
        )

    @abstractmethod
    def build_body(
        self,
        request: ProviderRequest,
        tools: ToolConversion,
        provider: ProviderInfo,
    ) -> dict[str, Any]:
        """Render the protocol's JSON body."""

    @abstractmethod
    def auth_headers(self, credential: ResolvedCredential | None) -> dict[str, str]:
        """Protocol-mandatory headers, including authentication."""

    def request_headers(self, request: ProviderRequest, body: dict[str, Any]) -> dict[str, str]:
        """Headers that depend on the rendered request; none by default."""
        return {}

    @abstractmethod
    def new_parser(self) -> StreamParser:
        """Fresh parser with empty accumulation state."""


def parse_bytes(parser: StreamParser, chunks: Iterable[bytes]) -> list[UnifiedEvent]:
    """Run a complete byte stream through *parser*."""
    decoder = SSEDecoder()
    events: list[UnifiedEvent] = []
    for chunk in chunks:
        for frame in decoder.feed(chunk):
            events.extend(parser.feed(frame))
    for frame in decoder.flush():
        events.extend(parser.feed(frame))
    events.extend(parser.finish())
    return events


async def aparse_bytes(
    parser: StreamParser, chunks: AsyncIterable[bytes]
) -> AsyncIterator[UnifiedEvent]:
    """Lazily run an async byte stream through *parser*."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            for event in parser.feed(frame):
                yield event
        if parser.finished:
            return
    for frame in decoder.flush():
        for event in parser.feed(frame):
            yield event
    for event in parser.finish():
        yield event


def drop_empty(entries: Iterable[dict[str, Any]], key: str) -> list[dict[str, Any]]:
    """Drop rendered entries whose *key* list is empty."""
    kept = []
    for entry in entries:
        if entry.get(key):
            kept.append(entry)
        else:
            logger.debug("Dropping %s entry with empty %s", entry.get("role"), key)
    return kept


__all__ = [
    "BuiltRequest",
    "ProviderAdapter",
    "StreamParser",
    "aparse_bytes",
    "assemble_headers",
    "drop_empty",
    "parse_bytes",
]
