"""Mock devices, connector and session for testing.

Every mock records the calls it receives and offers ``simulate_*``
helpers to drive events that would normally come from hardware or the
network.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import numpy as np

from livesight.capture.media import (
    AudioBlockSink,
    AudioTrack,
    CaptureSource,
    MediaStream,
    VideoTrack,
)
from livesight.connector import LiveConnection, LiveConnector
from livesight.errors import (
    ConnectFailureError,
    DeviceUnavailableError,
    TransportClosedError,
    TransportError,
)
from livesight.playback.output import OutputDevice, PlaybackHandle
from livesight.playback.scheduler import AudioBuffer


@dataclass
class MockCall:
    """Record of a method call for test assertions."""

    method: str
    args: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class MockOutputDevice(OutputDevice):
    """Output device with a manually advanced clock.

    Example:
        output = MockOutputDevice()
        handle = output.play(buffer, 0.0)
        output.advance(buffer.duration)
        assert handle.finished
    """

    def __init__(self) -> None:
        self.calls: list[MockCall] = []
        self.handles: list[PlaybackHandle] = []
        self.stopped_handles: list[PlaybackHandle] = []
        self.opened = False
        self.closed = False
        self._time = 0.0

    @property
    def current_time(self) -> float:
        return self._time

    def open(self) -> None:
        self.calls.append(MockCall(method="open"))
        self.opened = True

    def play(self, buffer: AudioBuffer, start_at: float) -> PlaybackHandle:
        self.calls.append(MockCall(method="play", args={"start_at": start_at}))
        handle = PlaybackHandle(buffer, start_at, on_stop=self.stopped_handles.append)
        self.handles.append(handle)
        return handle

    def close(self) -> None:
        self.calls.append(MockCall(method="close"))
        self.closed = True

    def advance(self, seconds: float) -> None:
        """Move the clock forward and finish every buffer that has ended."""
        self._time += seconds
        for handle in list(self.handles):
            if not handle.done and handle.end_at <= self._time + 1e-9:
                handle.mark_finished()


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


class MockMicrophoneTrack(AudioTrack):
    def __init__(self) -> None:
        self.sink: AudioBlockSink | None = None
        self.connect_count = 0
        self.stop_count = 0
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def connect(self, sink: AudioBlockSink) -> None:
        self.connect_count += 1
        self.sink = sink

    def disconnect(self) -> None:
        self.sink = None

    def stop(self) -> None:
        self.stop_count += 1
        self._stopped = True
        self.sink = None

    def simulate_block(self, samples: np.ndarray | None = None, *, size: int = 4096) -> None:
        """Deliver one captured block to the connected sink, if any."""
        if samples is None:
            samples = np.zeros(size, dtype=np.float32)
        if self.sink is not None:
            self.sink(samples)


class MockCameraTrack(VideoTrack):
    def __init__(self, *, ready: bool = True) -> None:
        self.is_ready = ready
        self.snapshots = 0
        self.stop_count = 0
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def ready(self) -> bool:
        return self.is_ready and not self._stopped

    def snapshot(self, width: int, height: int) -> np.ndarray | None:
        self.snapshots += 1
        return np.zeros((height, width, 3), dtype=np.uint8)

    def stop(self) -> None:
        self.stop_count += 1
        self._stopped = True


class MockCaptureSource(CaptureSource):
    """Capture source handing out mock tracks.

    Set ``fail`` to make the next acquisitions raise
    :class:`DeviceUnavailableError`.
    """

    def __init__(self, *, fail: bool = False, camera_ready: bool = True) -> None:
        self.fail = fail
        self.camera_ready = camera_ready
        self.calls: list[MockCall] = []
        self.streams: list[MediaStream] = []

    @property
    def last_stream(self) -> MediaStream | None:
        return self.streams[-1] if self.streams else None

    async def acquire(self) -> MediaStream:
        self.calls.append(MockCall(method="acquire"))
        if self.fail:
            raise DeviceUnavailableError("No camera could be opened")
        stream = MediaStream([MockMicrophoneTrack(), MockCameraTrack(ready=self.camera_ready)])
        self.streams.append(stream)
        return stream


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class MockLiveSession(LiveConnection):
    """In-memory live connection.

    Messages queued with :meth:`simulate_message` are yielded by
    :meth:`messages`; :meth:`simulate_close` and :meth:`simulate_error`
    end the stream the way a real connection would.
    """

    def __init__(self, credential: str, *, credential_index: int | None = None) -> None:
        self.credential = credential
        self.credential_index = credential_index
        self.calls: list[MockCall] = []
        self.sent_audio: list[bytes] = []
        self.sent_images: list[bytes] = []
        self.tool_responses: list[tuple[str | None, str, dict[str, Any]]] = []
        self.close_count = 0
        self._closed = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit_audio(self, pcm: bytes) -> None:
        if self._closed:
            return
        self.sent_audio.append(pcm)

    def submit_image(self, jpeg: bytes) -> None:
        if self._closed:
            return
        self.sent_images.append(jpeg)

    async def send_tool_response(
        self, call_id: str | None, name: str, response: dict[str, Any]
    ) -> None:
        self.calls.append(
            MockCall(
                method="send_tool_response",
                args={"call_id": call_id, "name": name, "response": response},
            )
        )
        self.tool_responses.append((call_id, name, response))

    async def messages(self) -> AsyncIterator[Any]:
        while True:
            item = await self._inbox.get()
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self) -> None:
        self.close_count += 1
        if self._closed:
            return
        self._closed = True
        self.calls.append(MockCall(method="close"))

    # -- Simulation helpers --

    def simulate_message(self, message: Any) -> None:
        self._inbox.put_nowait(message)

    def simulate_close(self, reason: str = "closed by server") -> None:
        self._inbox.put_nowait(TransportClosedError(reason))

    def simulate_error(self, reason: str = "connection reset") -> None:
        self._inbox.put_nowait(TransportError(reason))


class MockLiveConnector(LiveConnector):
    """Connector that fails for credentials listed in ``failing``.

    Example:
        connector = MockLiveConnector(failing={"k1"})
        with pytest.raises(ConnectFailureError):
            await connector.connect("k1")
        session = await connector.connect("k2")
    """

    def __init__(self, *, failing: set[str] | None = None, fail_all: bool = False) -> None:
        self.failing = set(failing or ())
        self.fail_all = fail_all
        self.calls: list[MockCall] = []
        self.sessions: list[MockLiveSession] = []

    @property
    def attempted(self) -> list[str]:
        return [c.args["credential"] for c in self.calls if c.method == "connect"]

    @property
    def last_session(self) -> MockLiveSession | None:
        return self.sessions[-1] if self.sessions else None

    async def connect(
        self, credential: str, *, credential_index: int | None = None
    ) -> MockLiveSession:
        self.calls.append(
            MockCall(
                method="connect",
                args={"credential": credential, "credential_index": credential_index},
            )
        )
        if self.fail_all or credential in self.failing:
            raise ConnectFailureError(
                f"API key rejected: {credential}", credential_index=credential_index
            )
        session = MockLiveSession(credential, credential_index=credential_index)
        self.sessions.append(session)
        return session


# ---------------------------------------------------------------------------
# Passive listener
# ---------------------------------------------------------------------------


class MockPassiveListener:
    def __init__(self) -> None:
        self.calls: list[MockCall] = []
        self.running = False

    def start(self) -> None:
        self.calls.append(MockCall(method="start"))
        self.running = True

    def stop(self) -> None:
        self.calls.append(MockCall(method="stop"))
        self.running = False


# ---------------------------------------------------------------------------
# Server message builders
# ---------------------------------------------------------------------------


def make_server_message(
    *,
    input_text: str | None = None,
    output_text: str | None = None,
    audio: list[bytes | str] | None = None,
    interrupted: bool = False,
    tool_calls: list[tuple[str | None, str, dict[str, Any]]] | None = None,
) -> SimpleNamespace:
    """Build an object shaped like a ``LiveServerMessage``.

    Args:
        input_text: User speech transcription fragment.
        output_text: Model speech transcription fragment.
        audio: Inline audio payloads, one part each.
        interrupted: Whether the server signals an interruption.
        tool_calls: ``(id, name, args)`` tuples.
    """
    server_content = None
    if input_text is not None or output_text is not None or audio or interrupted:
        model_turn = None
        if audio:
            model_turn = SimpleNamespace(
                parts=[
                    SimpleNamespace(
                        inline_data=SimpleNamespace(data=data, mime_type="audio/pcm;rate=24000")
                    )
                    for data in audio
                ]
            )
        server_content = SimpleNamespace(
            input_transcription=(
                SimpleNamespace(text=input_text) if input_text is not None else None
            ),
            output_transcription=(
                SimpleNamespace(text=output_text) if output_text is not None else None
            ),
            model_turn=model_turn,
            interrupted=interrupted,
            turn_complete=False,
        )

    tool_call = None
    if tool_calls:
        tool_call = SimpleNamespace(
            function_calls=[
                SimpleNamespace(id=call_id, name=name, args=args)
                for call_id, name, args in tool_calls
            ]
        )

    return SimpleNamespace(server_content=server_content, tool_call=tool_call, go_away=None)


def pcm16_bytes(duration: float, sample_rate: int = 24000, value: int = 1000) -> bytes:
    """Constant-valued int16 PCM lasting *duration* seconds."""
    frames = round(duration * sample_rate)
    return np.full(frames, value, dtype="<i2").tobytes()
