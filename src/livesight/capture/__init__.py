"""Device capture."""

from livesight.capture.media import (
    AudioTrack,
    CameraTrack,
    CaptureSource,
    MediaCaptureSource,
    MediaStream,
    MediaTrack,
    MicrophoneTrack,
    VideoTrack,
)

__all__ = [
    "AudioTrack",
    "CameraTrack",
    "CaptureSource",
    "MediaCaptureSource",
    "MediaStream",
    "MediaTrack",
    "MicrophoneTrack",
    "VideoTrack",
]
