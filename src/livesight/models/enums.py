"""String enums for livesight."""

from __future__ import annotations

from enum import StrEnum, unique


@unique
class SessionStatus(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ERROR = "error"
    # Error substate: no usable credential, never retried
    CREDENTIALS_MISSING = "credentials_missing"


@unique
class TranscriptRole(StrEnum):
    USER = "user"
    MODEL = "model"
