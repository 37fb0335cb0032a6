"""Camera and microphone acquisition.

The microphone uses a ``sounddevice`` ``RawInputStream`` whose callback
runs in the PortAudio thread; each block is handed to the connected
sink on the event loop thread via ``call_soon_threadsafe``.  The camera
is an OpenCV ``VideoCapture``; reads are blocking and are meant to run
in a worker thread (``asyncio.to_thread``).

Requires the optional dependencies::

    pip install livesight[local-audio,camera]
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import numpy as np

from livesight._deps import import_cv2, import_sounddevice
from livesight.config import LiveSightConfig
from livesight.errors import DeviceUnavailableError

logger = logging.getLogger("livesight.capture.media")

AudioBlockSink = Callable[[np.ndarray], Any]


class MediaTrack(ABC):
    """One hardware track of a :class:`MediaStream`."""

    kind: str = ""

    @property
    @abstractmethod
    def stopped(self) -> bool: ...

    @abstractmethod
    def stop(self) -> None:
        """Release the underlying device. Idempotent."""
        ...


class AudioTrack(MediaTrack):
    kind = "audio"

    @abstractmethod
    def connect(self, sink: AudioBlockSink) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...


class VideoTrack(MediaTrack):
    kind = "video"

    @property
    @abstractmethod
    def ready(self) -> bool: ...

    @abstractmethod
    def snapshot(self, width: int, height: int) -> np.ndarray | None: ...


class MicrophoneTrack(AudioTrack):
    """Mono float32 microphone capture in fixed-size blocks.

    The stream is opened but not started until :meth:`connect`.
    """

    def __init__(
        self,
        sd: Any,
        *,
        sample_rate: int = 16000,
        block_size: int = 4096,
        device: int | str | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.block_size = block_size
        self._sink: AudioBlockSink | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._started = False
        self._stopped = False
        self._blocks_captured = 0
        self._stream = sd.RawInputStream(
            samplerate=sample_rate,
            blocksize=block_size,
            channels=1,
            dtype="float32",
            device=device,
            callback=self._mic_callback,
        )

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def connected(self) -> bool:
        return self._sink is not None

    def connect(self, sink: AudioBlockSink) -> None:
        """Start capture, delivering each block to *sink* on the loop thread."""
        if self._stopped:
            raise DeviceUnavailableError("microphone track already stopped")
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self._sink = sink
        if not self._started:
            self._stream.start()
            self._started = True
        logger.info(
            "Microphone started: %dHz, block=%d samples", self.sample_rate, self.block_size
        )

    def disconnect(self) -> None:
        """Detach the sink and pause capture. Blocks in flight are dropped."""
        self._sink = None
        if self._started and not self._stopped:
            self._started = False
            try:
                self._stream.stop()
            except Exception:
                logger.debug("Error stopping microphone stream", exc_info=True)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._sink = None
        self._started = False
        try:
            self._stream.abort()
            self._stream.close()
        except Exception:
            logger.debug("Error closing microphone stream", exc_info=True)
        logger.info("Microphone stopped after %d block(s)", self._blocks_captured)

    # -- Mic callback (runs in PortAudio C thread) --

    def _mic_callback(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        sink = self._sink
        if sink is None or self._stopped:
            return
        if status:
            logger.warning("Mic status: %s", status)
        self._blocks_captured += 1
        samples = np.frombuffer(bytes(indata), dtype=np.float32)
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self._deliver, sink, samples)
        else:
            self._deliver(sink, samples)

    def _deliver(self, sink: AudioBlockSink, samples: np.ndarray) -> None:
        # Drop blocks captured before a disconnect that land after it
        if self._sink is not sink:
            return
        sink(samples)


class CameraTrack(VideoTrack):
    """OpenCV camera producing BGR frames on demand."""

    def __init__(self, cv2: Any, capture: Any, *, index: int) -> None:
        self._cv2 = cv2
        self._capture = capture
        self.index = index
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def ready(self) -> bool:
        """True while the camera is open and can deliver a frame."""
        return not self._stopped and bool(self._capture.isOpened())

    def snapshot(self, width: int, height: int) -> np.ndarray | None:
        """Grab the current frame scaled to ``width`` x ``height``.

        Blocking; call from a worker thread.  Returns None if no frame is
        available.
        """
        with self._lock:
            if self._stopped:
                return None
            ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        return self._cv2.resize(frame, (width, height), interpolation=self._cv2.INTER_AREA)

    def stop(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            try:
                self._capture.release()
            except Exception:
                logger.debug("Error releasing camera %d", self.index, exc_info=True)
        logger.info("Camera %d released", self.index)


class MediaStream:
    """Combined audio+video capture owned by one session."""

    def __init__(self, tracks: list[MediaTrack]) -> None:
        self._tracks = list(tracks)
        self._stopped = False

    @property
    def tracks(self) -> list[MediaTrack]:
        return list(self._tracks)

    @property
    def audio(self) -> AudioTrack | None:
        for track in self._tracks:
            if isinstance(track, AudioTrack):
                return track
        return None

    @property
    def video(self) -> VideoTrack | None:
        for track in self._tracks:
            if isinstance(track, VideoTrack):
                return track
        return None

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Stop every constituent track. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        for track in self._tracks:
            try:
                track.stop()
            except Exception:
                logger.exception("Error stopping %s track", track.kind)


class CaptureSource(ABC):
    @abstractmethod
    async def acquire(self) -> MediaStream: ...


class MediaCaptureSource(CaptureSource):
    """Acquires the session's camera and microphone.

    The preferred camera is opened at the configured resolution.  If it
    cannot be opened, acquisition retries once with unconstrained video:
    the first camera index that opens, at whatever resolution it
    delivers.

    Args:
        config: Session configuration (device indexes, rates, geometry).
    """

    def __init__(self, config: LiveSightConfig | None = None) -> None:
        self._config = config or LiveSightConfig()

    async def acquire(self) -> MediaStream:
        """Open camera and microphone.

        Raises:
            DeviceUnavailableError: No camera or no microphone could be
                opened.  Nothing stays open when this is raised.
        """
        video = await asyncio.to_thread(self._open_camera)
        try:
            audio = await asyncio.to_thread(self._open_microphone)
        except BaseException:
            video.stop()
            raise
        return MediaStream([audio, video])

    def _open_camera(self) -> CameraTrack:
        cv2 = import_cv2()
        cfg = self._config

        capture = cv2.VideoCapture(cfg.camera_index)
        if capture.isOpened():
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, cfg.camera_width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg.camera_height)
            logger.info(
                "Camera %d opened at %dx%d",
                cfg.camera_index,
                cfg.camera_width,
                cfg.camera_height,
            )
            return CameraTrack(cv2, capture, index=cfg.camera_index)
        capture.release()

        logger.warning(
            "Preferred camera %d unavailable, retrying with any camera", cfg.camera_index
        )
        for index in range(cfg.max_fallback_cameras):
            capture = cv2.VideoCapture(index)
            if capture.isOpened():
                logger.info("Fallback camera %d opened", index)
                return CameraTrack(cv2, capture, index=index)
            capture.release()

        raise DeviceUnavailableError("No camera could be opened")

    def _open_microphone(self) -> MicrophoneTrack:
        sd = import_sounddevice()
        cfg = self._config
        try:
            return MicrophoneTrack(
                sd,
                sample_rate=cfg.input_sample_rate,
                block_size=cfg.mic_block_size,
                device=cfg.input_device,
            )
        except Exception as exc:
            raise DeviceUnavailableError(f"No microphone could be opened: {exc}") from exc
