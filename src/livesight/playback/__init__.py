"""Inbound speech playback."""

from livesight.playback.output import OutputDevice, PlaybackHandle, SpeakerOutput
from livesight.playback.scheduler import AudioBuffer, PlaybackScheduler, decode_pcm16

__all__ = [
    "AudioBuffer",
    "OutputDevice",
    "PlaybackHandle",
    "PlaybackScheduler",
    "SpeakerOutput",
    "decode_pcm16",
]
