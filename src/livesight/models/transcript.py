"""Rolling transcript of a live session (display only)."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime

from livesight.models.enums import TranscriptRole

DEFAULT_TRANSCRIPT_LIMIT = 16


def _utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class TranscriptionEntry:
    """One transcription fragment from either side of the conversation."""

    role: TranscriptRole
    """Who spoke: the user (input transcription) or the model (output)."""

    text: str
    """Fragment text as delivered by the service."""

    timestamp: datetime = field(default_factory=_utcnow)
    """When the fragment was received."""


class TranscriptLog:
    """Bounded ring of the most recent transcription entries.

    Appending beyond ``limit`` silently drops the oldest entry.
    """

    def __init__(self, limit: int = DEFAULT_TRANSCRIPT_LIMIT) -> None:
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        self._entries: deque[TranscriptionEntry] = deque(maxlen=limit)

    @property
    def limit(self) -> int:
        return self._entries.maxlen or 0

    def append(self, role: TranscriptRole | str, text: str) -> TranscriptionEntry:
        entry = TranscriptionEntry(role=TranscriptRole(role), text=text)
        self._entries.append(entry)
        return entry

    def entries(self) -> list[TranscriptionEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TranscriptionEntry]:
        return iter(list(self._entries))
