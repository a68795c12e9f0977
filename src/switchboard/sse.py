"""Incremental Server-Sent-Events decoding.

Bytes arrive in arbitrary chunks; frames are only produced once their
terminating blank line has been seen. ``event:`` is optional (Gemini never
sends it) and lines the decoder does not understand are skipped.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
import json
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Iterable

DONE_SENTINEL = "[DONE]"

_LINE_END = re.compile(r"\r\n?|\n")


@dataclass(frozen=True)
class SSEFrame:
    """One dispatched SSE frame."""

    event: str | None
    data: str

    @property
    def is_done(self) -> bool:
        return self.data.strip() == DONE_SENTINEL

    def json(self) -> dict[str, Any] | None:
        """Decode ``data`` as a JSON object.

        Returns None for empty payloads, the ``[DONE]`` sentinel, non-JSON
        text, and JSON values that are not objects.
        """
        text = self.data.strip()
        if not text or text == DONE_SENTINEL:
            return None
        try:
            value = json.loads(text)
        except ValueError:
            return None
        return value if isinstance(value, dict) else None


class SSEDecoder:
    """Stateful bytes -> SSEFrame decoder."""

    def __init__(self) -> None:
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        #: Offset in ``_buffer`` before which no line terminator exists.
        self._scanned = 0
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, chunk: bytes) -> list[SSEFrame]:
        """Consume *chunk* and return every frame it completed."""
        self._buffer += self._text.decode(chunk)
        return self._drain(final=False)

    def flush(self) -> list[SSEFrame]:
        """Return a trailing frame that was never terminated by a blank line."""
        self._buffer += self._text.decode(b"", final=True)
        frames = self._drain(final=True)
        if self._buffer:
            self._process_line(self._buffer, frames)
            self._buffer = ""
            self._scanned = 0
        frame = self._dispatch()
        if frame is not None:
            frames.append(frame)
        return frames

    def _drain(self, *, final: bool) -> list[SSEFrame]:
        frames: list[SSEFrame] = []
        buffer = self._buffer
        pos = 0
        scan = self._scanned
        while True:
            match = _LINE_END.search(buffer, scan)
            if match is None:
                break
            # A trailing \r may be the first half of \r\n; wait for more input.
            if match.group() == "\r" and match.end() == len(buffer) and not final:
                break
            self._process_line(buffer[pos : match.start()], frames)
            pos = scan = match.end()
        self._buffer = buffer[pos:]
        self._scanned = len(self._buffer)
        if self._buffer.endswith("\r"):
            self._scanned -= 1
        return frames

    def _process_line(self, line: str, frames: list[SSEFrame]) -> None:
        if not line:
            frame = self._dispatch()
            if frame is not None:
                frames.append(frame)
            return
        if line.startswith(":"):
            return
        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)

    def _dispatch(self) -> SSEFrame | None:
        event, data = self._event, self._data
        self._event, self._data = None, []
        if not data:
            return None
        return SSEFrame(event=event, data="\n".join(data))


def decode_frames(chunks: Iterable[bytes]) -> list[SSEFrame]:
    """Decode a complete, already-buffered byte stream."""
    decoder = SSEDecoder()
    frames: list[SSEFrame] = []
    for chunk in chunks:
        frames.extend(decoder.feed(chunk))
    frames.extend(decoder.flush())
    return frames


async def aiter_frames(chunks: AsyncIterable[bytes]) -> AsyncIterator[SSEFrame]:
    """Decode frames lazily from an async byte source."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
    for frame in decoder.flush():
        yield frame
