"""Read-only view of the session lifecycle for display collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field

from livesight.models.enums import SessionStatus
from livesight.models.transcript import TranscriptionEntry


@dataclass(frozen=True)
class LifecycleSnapshot:
    status: SessionStatus
    transcripts: tuple[TranscriptionEntry, ...] = field(default_factory=tuple)
    last_error: str | None = None
    muted: bool = False
    listening: bool = False
    """Whether the passive start-phrase listener is currently running."""
    credential_index: int = 0
