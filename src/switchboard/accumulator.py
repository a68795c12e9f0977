"""Per-stream accumulation arena.

Streamed items arrive as fragments keyed by a small integer (Anthropic block
index, Chat tool-call index, Responses output index). Each slot has an
explicit open -> append* -> close lifecycle; a slot is closed at most once
and everything still open is discarded when the stream fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from switchboard.errors import InternalError


@dataclass
class Slot:
    """One in-progress item."""

    index: int
    kind: str
    meta: dict[str, Any] = field(default_factory=dict)
    fragments: list[str] = field(default_factory=list)
    closed: bool = False

    @property
    def text(self) -> str:
        return "".join(self.fragments)


class SlotArena:
    """Open slots keyed by index."""

    def __init__(self) -> None:
        self._slots: dict[int, Slot] = {}

    def __contains__(self, index: object) -> bool:
        return index in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def open(self, index: int, kind: str, **meta: Any) -> Slot:
        if index in self._slots:
            raise InternalError(f"Slot {index} is already open")
        slot = Slot(index=index, kind=kind, meta=dict(meta))
        self._slots[index] = slot
        return slot

    def get(self, index: int) -> Slot:
        slot = self._slots.get(index)
        if slot is None:
            raise InternalError(f"Slot {index} is not open")
        return slot

    def append(self, index: int, fragment: str) -> Slot:
        slot = self.get(index)
        if fragment:
            slot.fragments.append(fragment)
        return slot

    def close(self, index: int) -> Slot:
        """Remove and return the slot at *index*; it cannot be closed again."""
        slot = self._slots.pop(index, None)
        if slot is None:
            raise InternalError(f"Slot {index} is not open (double close?)")
        slot.closed = True
        return slot

    def open_indices(self) -> list[int]:
        return sorted(self._slots)

    def discard_all(self) -> list[Slot]:
        """Drop every open slot, e.g. when the stream fails."""
        slots = [self._slots[i] for i in sorted(self._slots)]
        self._slots.clear()
        return slots
