"""Gapless scheduling of streamed model speech."""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass

import numpy as np

from livesight.playback.output import OutputDevice, PlaybackHandle

logger = logging.getLogger("livesight.playback.scheduler")

OUTPUT_SAMPLE_RATE = 24000


@dataclass(frozen=True)
class AudioBuffer:
    """Decoded mono float32 samples ready for playback."""

    samples: np.ndarray
    sample_rate: int

    @property
    def frames(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


def decode_pcm16(chunk: bytes | str, sample_rate: int = OUTPUT_SAMPLE_RATE) -> AudioBuffer:
    """Decode little-endian int16 PCM (raw or base64) to float32 in [-1, 1).

    A trailing odd byte is dropped.
    """
    data = base64.b64decode(chunk) if isinstance(chunk, str) else bytes(chunk)
    usable = len(data) - (len(data) % 2)
    pcm = np.frombuffer(data[:usable], dtype="<i2")
    samples = pcm.astype(np.float32) / 32768.0
    return AudioBuffer(samples=samples, sample_rate=sample_rate)


class PlaybackScheduler:
    """Schedules each chunk to start exactly when the previous one ends.

    ``next_start_time`` is a cursor on the output device clock.  It only
    moves forward, except that :meth:`flush` resets it to 0 so the next
    chunk starts at the device's current time.  Every scheduled handle
    stays in :attr:`pending` until it finishes or is flushed.

    Chunks must be scheduled one at a time in arrival order (the
    dispatcher awaits each call).  A chunk whose decode completes after a
    flush is discarded.
    """

    def __init__(self, output: OutputDevice, *, sample_rate: int = OUTPUT_SAMPLE_RATE) -> None:
        self._output = output
        self._sample_rate = sample_rate
        self._next_start_time = 0.0
        self._pending: set[PlaybackHandle] = set()
        # Bumped on flush/close so decodes in flight become stale
        self._generation = 0
        self._closed = False
        self._scheduled_count = 0
        self._stale_dropped = 0

    @property
    def next_start_time(self) -> float:
        return self._next_start_time

    @property
    def pending(self) -> frozenset[PlaybackHandle]:
        return frozenset(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stale_dropped(self) -> int:
        return self._stale_dropped

    async def schedule(self, chunk: bytes | str) -> PlaybackHandle | None:
        if self._closed or not chunk:
            return None

        generation = self._generation
        buffer = await asyncio.to_thread(decode_pcm16, chunk, self._sample_rate)

        if generation != self._generation or self._closed:
            self._stale_dropped += 1
            logger.debug("Dropping chunk decoded after flush (%d frames)", buffer.frames)
            return None
        if buffer.frames == 0:
            return None

        # No await from here on: cursor read and write stay atomic
        start_at = max(self._next_start_time, self._output.current_time)
        handle = self._output.play(buffer, start_at)
        # The device may start late if its clock moved past start_at
        self._next_start_time = handle.end_at
        self._pending.add(handle)
        handle.on_ended(self._pending.discard)

        self._scheduled_count += 1
        if self._scheduled_count % 50 == 1:
            logger.debug(
                "Scheduled chunk #%d at %.3fs (%.3fs), %d pending",
                self._scheduled_count,
                handle.start_at,
                buffer.duration,
                len(self._pending),
            )
        return handle

    def flush(self) -> None:
        """Stop everything pending and reset the cursor."""
        self._generation += 1
        handles = list(self._pending)
        self._pending.clear()
        for handle in handles:
            try:
                handle.stop()
            except Exception:
                logger.debug("Error stopping playback handle", exc_info=True)
        self._next_start_time = 0.0
        if handles:
            logger.info("[barge-in] stopped %d scheduled chunk(s)", len(handles))

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True
