"""livesight - Realtime audio/video navigation sessions over Gemini Live."""

from livesight._version import __version__
from livesight.capture.media import (
    CameraTrack,
    CaptureSource,
    MediaCaptureSource,
    MediaStream,
    MicrophoneTrack,
)
from livesight.config import LiveSightConfig, load_credentials
from livesight.connector import (
    STOP_NAVIGATION,
    LiveConnection,
    LiveConnector,
    LiveSession,
    SessionConnector,
    build_connect_config,
)
from livesight.credentials import CredentialPool
from livesight.dispatcher import InboundDispatcher, ToolCall
from livesight.errors import (
    ConnectFailureError,
    CredentialsMissingError,
    DeviceUnavailableError,
    LiveSightError,
    TransportClosedError,
    TransportError,
)
from livesight.framer import AudioFramer, VideoFramer, encode_jpeg, encode_pcm
from livesight.lifecycle import PassiveListener, SessionLifecycle
from livesight.models import (
    LifecycleSnapshot,
    SessionStatus,
    TranscriptionEntry,
    TranscriptLog,
    TranscriptRole,
)
from livesight.playback import (
    AudioBuffer,
    OutputDevice,
    PlaybackHandle,
    PlaybackScheduler,
    SpeakerOutput,
    decode_pcm16,
)

__all__ = [
    "AudioBuffer",
    "AudioFramer",
    "CameraTrack",
    "CaptureSource",
    "ConnectFailureError",
    "CredentialPool",
    "CredentialsMissingError",
    "DeviceUnavailableError",
    "InboundDispatcher",
    "LifecycleSnapshot",
    "LiveConnection",
    "LiveConnector",
    "LiveSession",
    "LiveSightConfig",
    "LiveSightError",
    "MediaCaptureSource",
    "MediaStream",
    "MicrophoneTrack",
    "OutputDevice",
    "PassiveListener",
    "PlaybackHandle",
    "PlaybackScheduler",
    "STOP_NAVIGATION",
    "SessionConnector",
    "SessionLifecycle",
    "SessionStatus",
    "SpeakerOutput",
    "ToolCall",
    "TranscriptLog",
    "TranscriptRole",
    "TranscriptionEntry",
    "TransportClosedError",
    "TransportError",
    "VideoFramer",
    "__version__",
    "build_connect_config",
    "decode_pcm16",
    "encode_jpeg",
    "encode_pcm",
    "load_credentials",
]
