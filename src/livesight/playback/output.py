"""Speaker output with a sample-accurate clock and per-buffer start times.

``SpeakerOutput`` keeps a ``RawOutputStream`` running for the whole
session.  PortAudio pulls samples at the hardware rate; the callback
mixes every scheduled buffer that overlaps the requested block and
feeds silence elsewhere.  The number of frames handed to PortAudio is
the device clock, so a buffer scheduled at ``t`` starts exactly
``t * sample_rate`` frames after the stream was opened.

Requires the ``sounddevice`` optional dependency::

    pip install livesight[local-audio]
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import numpy as np

from livesight._deps import import_sounddevice

if TYPE_CHECKING:
    from livesight.playback.scheduler import AudioBuffer

logger = logging.getLogger("livesight.playback.output")

PlaybackEndedCallback = Callable[["PlaybackHandle"], Any]


class PlaybackHandle:
    """Owned handle to one scheduled buffer.

    ``stop()`` is idempotent and a no-op once the buffer has finished.
    Ended callbacks fire once, on natural completion only.
    """

    def __init__(
        self,
        buffer: AudioBuffer,
        start_at: float,
        *,
        on_stop: Callable[[PlaybackHandle], None] | None = None,
    ) -> None:
        self.buffer = buffer
        self.start_at = start_at
        self._on_stop = on_stop
        self._ended_callbacks: list[PlaybackEndedCallback] = []
        self._stopped = False
        self._finished = False

    @property
    def end_at(self) -> float:
        return self.start_at + self.buffer.duration

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def done(self) -> bool:
        return self._stopped or self._finished

    def on_ended(self, callback: PlaybackEndedCallback) -> None:
        if self._finished:
            callback(self)
            return
        self._ended_callbacks.append(callback)

    def stop(self) -> None:
        if self.done:
            return
        self._stopped = True
        self._ended_callbacks.clear()
        if self._on_stop is not None:
            self._on_stop(self)

    def mark_finished(self) -> None:
        """Record natural completion and fire ended callbacks."""
        if self.done:
            return
        self._finished = True
        callbacks, self._ended_callbacks = self._ended_callbacks, []
        for cb in callbacks:
            try:
                cb(self)
            except Exception:
                logger.exception("Error in playback ended callback")

    def __repr__(self) -> str:
        state = "stopped" if self._stopped else "finished" if self._finished else "pending"
        return f"PlaybackHandle(start_at={self.start_at:.3f}, end_at={self.end_at:.3f}, {state})"


class OutputDevice(ABC):
    """Audio output with its own clock, in seconds since :meth:`open`."""

    @property
    @abstractmethod
    def current_time(self) -> float: ...

    @abstractmethod
    def open(self) -> None: ...

    @abstractmethod
    def play(self, buffer: AudioBuffer, start_at: float) -> PlaybackHandle:
        """Schedule *buffer* to start at *start_at* on the device clock."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Stop all playback and release the device. Idempotent."""
        ...


class _Scheduled:
    __slots__ = ("handle", "samples", "start_frame")

    def __init__(self, handle: PlaybackHandle, samples: np.ndarray, start_frame: int) -> None:
        self.handle = handle
        self.samples = samples
        self.start_frame = start_frame

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.samples)


class SpeakerOutput(OutputDevice):
    """Mono float32 speaker output mixing scheduled buffers.

    Args:
        sample_rate: Playback sample rate (Hz).
        device: Sounddevice output device index or name (None = default).
    """

    def __init__(self, *, sample_rate: int = 24000, device: int | str | None = None) -> None:
        self._sd = import_sounddevice()
        self._sample_rate = sample_rate
        self._device = device
        self._stream: Any | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._scheduled: list[_Scheduled] = []
        self._buffer_lock = threading.Lock()
        self._frames_played = 0
        self._cb_status_errors = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def current_time(self) -> float:
        with self._buffer_lock:
            frames = self._frames_played
        return frames / self._sample_rate

    def open(self) -> None:
        if self._stream is not None:
            return
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        with self._buffer_lock:
            self._frames_played = 0
        out = self._sd.RawOutputStream(
            samplerate=self._sample_rate,
            channels=1,
            dtype="float32",
            device=self._device,
            callback=self._speaker_callback,
        )
        out.start()
        self._stream = out
        logger.info("Speaker output started: %dHz", self._sample_rate)

    def play(self, buffer: AudioBuffer, start_at: float) -> PlaybackHandle:
        """Schedule *buffer* at *start_at*, or at once if that time has passed.

        The returned handle carries the start time actually used.
        """
        with self._buffer_lock:
            # A start already behind the callback plays whole from the next block
            start_frame = max(round(start_at * self._sample_rate), self._frames_played)
            handle = PlaybackHandle(
                buffer, start_frame / self._sample_rate, on_stop=self._unschedule
            )
            self._scheduled.append(_Scheduled(handle, buffer.samples, start_frame))
        return handle

    def close(self) -> None:
        with self._buffer_lock:
            self._scheduled.clear()
        out = self._stream
        if out is None:
            return
        self._stream = None
        try:
            out.abort()
            out.close()
        except Exception:
            logger.debug("Error closing speaker stream", exc_info=True)
        logger.info(
            "Speaker output stopped: played=%.1fs pa_err=%d",
            self._frames_played / self._sample_rate,
            self._cb_status_errors,
        )

    def _unschedule(self, handle: PlaybackHandle) -> None:
        with self._buffer_lock:
            self._scheduled = [s for s in self._scheduled if s.handle is not handle]

    # -- Speaker callback (runs in PortAudio C thread) --

    def _speaker_callback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            self._cb_status_errors += 1

        mix = np.zeros(frames, dtype=np.float32)
        finished: list[PlaybackHandle] = []
        with self._buffer_lock:
            block_start = self._frames_played
            block_end = block_start + frames
            remaining: list[_Scheduled] = []
            for entry in self._scheduled:
                lo = max(block_start, entry.start_frame)
                hi = min(block_end, entry.end_frame)
                if hi > lo:
                    src = entry.samples[lo - entry.start_frame : hi - entry.start_frame]
                    mix[lo - block_start : hi - block_start] += src
                if entry.end_frame <= block_end:
                    finished.append(entry.handle)
                else:
                    remaining.append(entry)
            self._scheduled = remaining
            self._frames_played = block_end

        np.clip(mix, -1.0, 1.0, out=mix)
        outdata[:] = mix.tobytes()

        loop = self._loop
        for handle in finished:
            if loop is not None and not loop.is_closed():
                loop.call_soon_threadsafe(handle.mark_finished)
            else:
                handle.mark_finished()
