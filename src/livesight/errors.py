"""Exception hierarchy for livesight."""

from __future__ import annotations

CREDENTIALS_MISSING_MESSAGE = (
    "API keys not configured. Set GEMINI_API_KEY or GEMINI_API_KEY_1..GEMINI_API_KEY_9."
)
CONNECTION_ISSUE_MESSAGE = "Connection issue. Returning to idle..."
INITIALIZE_FAILED_MESSAGE = "Failed to initialize."


class LiveSightError(Exception):
    """Base exception for all livesight errors."""


class CredentialsMissingError(LiveSightError):
    """No usable credential is configured. Not retryable."""

    def __init__(self, message: str = CREDENTIALS_MISSING_MESSAGE) -> None:
        super().__init__(message)


class ConnectFailureError(LiveSightError):
    """Opening the live stream failed for one credential."""

    def __init__(self, message: str, *, credential_index: int | None = None) -> None:
        super().__init__(message)
        self.credential_index = credential_index


class DeviceUnavailableError(LiveSightError):
    """Camera or microphone could not be acquired."""


class TransportError(LiveSightError):
    """The live stream failed mid-session."""


class TransportClosedError(TransportError):
    """The remote side closed the live stream normally."""
