"""Data models for livesight."""

from livesight.models.enums import SessionStatus, TranscriptRole
from livesight.models.snapshot import LifecycleSnapshot
from livesight.models.transcript import TranscriptionEntry, TranscriptLog

__all__ = [
    "LifecycleSnapshot",
    "SessionStatus",
    "TranscriptLog",
    "TranscriptRole",
    "TranscriptionEntry",
]
