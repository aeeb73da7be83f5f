"""Bounded output accumulator."""

from __future__ import annotations

from ..config import DEFAULT_MAX_OUTPUT_BYTES


class OutputBuffer:
    """Append-only list of text chunks capped at ``capacity`` UTF-8 bytes.

    Input past the cap is dropped silently; the earliest bytes are the ones
    kept. A chunk is never cut inside a multi-byte character.
    """

    __slots__ = ("_capacity", "_chunks", "_size", "_dropped")

    def __init__(self, capacity: int = DEFAULT_MAX_OUTPUT_BYTES) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self._capacity = capacity
        self._chunks: list[str] = []
        self._size = 0
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._size

    @property
    def remaining(self) -> int:
        return self._capacity - self._size

    @property
    def truncated(self) -> bool:
        return self._dropped > 0

    def append(self, chunk: str) -> int:
        """Store as much of ``chunk`` as fits and return the number of bytes kept."""

        if not chunk:
            return 0
        encoded = chunk.encode("utf-8")
        available = self.remaining
        if len(encoded) <= available:
            self._chunks.append(chunk)
            self._size += len(encoded)
            return len(encoded)

        self._dropped += len(encoded) - available
        if available <= 0:
            return 0
        kept = encoded[:available].decode("utf-8", errors="ignore")
        if not kept:
            return 0
        kept_bytes = len(kept.encode("utf-8"))
        self._chunks.append(kept)
        self._size += kept_bytes
        return kept_bytes

    def text(self) -> str:
        return "".join(self._chunks)

    def __len__(self) -> int:
        return len(self._chunks)


__all__ = ["OutputBuffer"]
