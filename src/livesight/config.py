"""Session configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

from livesight.credentials import DEFAULT_ENV_PREFIX, CredentialPool

DEFAULT_MODEL = "gemini-2.5-flash-native-audio-preview-12-2025"
DEFAULT_VOICE = "Kore"

SYSTEM_INSTRUCTION = """You are a proactive Navigation Problem Solver for the visually impaired.
Keep the user moving safely with short, decisive spoken guidance based on the live camera feed.

CORE COMMANDS:
1. SAFE PATH: If the way ahead is clear, say: "Go straight, your way is correct and safe."
2. HAZARD: If there is an obstacle or danger, say:
   "Stop! Way is not correct. Hazard ahead. Recommendation: Turn to your left side now."
   or "Veer right to avoid the car." Always give a concrete recommendation.
3. REASSURANCE: Periodically confirm safety: "You are safe, continue straight."
4. DESCRIPTION: Only describe the surroundings when it matters for safety or when asked.
5. VOICE CONTROL: If the user says "Stop", "Turn off" or "Goodbye",
   call the stopNavigation tool immediately.

BE PUNCHY, FAST, AND DIRECT. Use o'clock positions for spatial awareness."""


class LiveSightConfig(BaseModel):
    """Live navigation session configuration.

    Defaults match the Gemini Live native-audio models: 16 kHz PCM in,
    24 kHz PCM out, one 320x240 JPEG snapshot per second.
    """

    model: str = DEFAULT_MODEL
    voice: str = DEFAULT_VOICE
    system_instruction: str = SYSTEM_INSTRUCTION

    # Audio
    input_sample_rate: int = Field(default=16000, gt=0)
    output_sample_rate: int = Field(default=24000, gt=0)
    mic_block_size: int = Field(default=4096, gt=0)
    input_device: int | str | None = None
    output_device: int | str | None = None

    # Video
    video_interval: float = Field(default=1.0, gt=0)
    snapshot_width: int = Field(default=320, gt=0)
    snapshot_height: int = Field(default=240, gt=0)
    jpeg_quality: int = Field(default=50, ge=1, le=100)
    camera_width: int = Field(default=640, gt=0)
    camera_height: int = Field(default=480, gt=0)
    camera_index: int = 0
    """Preferred ("environment-facing") camera device index."""
    max_fallback_cameras: int = Field(default=4, ge=1)

    # Session
    transcript_limit: int = Field(default=16, ge=1)
    restart_listening_delay: float = Field(default=1.0, ge=0)
    ping_interval: float = 10.0
    ping_timeout: float = 5.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> LiveSightConfig:
        """Build a config, applying ``LIVESIGHT_*`` overrides."""
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        if env.get("LIVESIGHT_MODEL"):
            overrides["model"] = env["LIVESIGHT_MODEL"]
        if env.get("LIVESIGHT_VOICE"):
            overrides["voice"] = env["LIVESIGHT_VOICE"]
        if env.get("LIVESIGHT_CAMERA"):
            overrides["camera_index"] = int(env["LIVESIGHT_CAMERA"])
        return cls(**overrides)  # type: ignore[arg-type]


def load_credentials(
    environ: Mapping[str, str] | None = None, *, prefix: str = DEFAULT_ENV_PREFIX
) -> CredentialPool:
    """Read the available API keys from the environment."""
    return CredentialPool.from_env(environ, prefix=prefix)
