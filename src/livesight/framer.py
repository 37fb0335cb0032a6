"""Outbound media framing: microphone PCM blocks and periodic JPEG snapshots."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Protocol

import numpy as np

from livesight._deps import import_cv2

logger = logging.getLogger("livesight.framer")

AUDIO_MIME_TYPE = "audio/pcm;rate=16000"
IMAGE_MIME_TYPE = "image/jpeg"


class MediaSink(Protocol):
    """Where framed media goes. Both calls must return without blocking."""

    def submit_audio(self, pcm: bytes) -> None: ...

    def submit_image(self, jpeg: bytes) -> None: ...


class SnapshotSource(Protocol):
    @property
    def ready(self) -> bool: ...

    def snapshot(self, width: int, height: int) -> np.ndarray | None: ...


def encode_pcm(samples: np.ndarray) -> bytes:
    """Convert float32 samples in [-1, 1] to little-endian int16 bytes."""
    scaled = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0) * 32768.0
    return np.clip(scaled, -32768, 32767).astype("<i2").tobytes()


def encode_jpeg(frame: np.ndarray, quality: int = 50) -> bytes:
    """Compress a BGR frame to JPEG bytes."""
    cv2 = import_cv2()
    ok, encoded = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return encoded.tobytes()


class AudioFramer:
    """Encodes microphone blocks and submits them to the session.

    Runs on the event loop thread, once per captured block.  While muted,
    blocks are discarded before encoding: silence is omitted, never sent.
    Ordering is preserved by the sink's own send queue.
    """

    def __init__(self, sink: MediaSink, *, muted: bool = False) -> None:
        self._sink = sink
        self.muted = muted
        self.blocks_sent = 0
        self.blocks_dropped_muted = 0

    def on_block(self, samples: np.ndarray) -> None:
        if self.muted:
            self.blocks_dropped_muted += 1
            return
        self._sink.submit_audio(encode_pcm(samples))
        self.blocks_sent += 1
        if self.blocks_sent == 1:
            logger.info("First audio block submitted (%d samples)", len(samples))


class VideoFramer:
    """Samples the camera on a fixed interval and submits JPEG stills.

    A tick that finds the camera not ready is skipped; there is no
    catch-up.  Each ready tick spawns its own snapshot+encode task, so a
    slow encode never delays the next tick and overlapping encodes run
    independently.
    """

    def __init__(
        self,
        sink: MediaSink,
        source: SnapshotSource,
        *,
        interval: float = 1.0,
        width: int = 320,
        height: int = 240,
        quality: int = 50,
    ) -> None:
        self._sink = sink
        self._source = source
        self._interval = interval
        self._width = width
        self._height = height
        self._quality = quality
        self._ticker: asyncio.Task[None] | None = None
        self._encodes: set[asyncio.Task[None]] = set()
        self._stopped = False
        self.ticks = 0
        self.ticks_skipped = 0
        self.frames_sent = 0

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    def start(self) -> None:
        if self._ticker is not None or self._stopped:
            return
        self._ticker = asyncio.get_running_loop().create_task(
            self._run(), name="livesight_video_ticker"
        )

    async def stop(self) -> None:
        """Cancel the ticker and every encode in flight. Idempotent."""
        self._stopped = True
        tasks: list[asyncio.Task[Any]] = list(self._encodes)
        if self._ticker is not None:
            tasks.append(self._ticker)
            self._ticker = None
        self._encodes.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

    def tick(self) -> asyncio.Task[None] | None:
        """Run one cadence step; returns the spawned encode task, if any."""
        self.ticks += 1
        if self._stopped or not self._source.ready:
            self.ticks_skipped += 1
            return None
        task = asyncio.get_running_loop().create_task(
            self._capture_and_submit(), name=f"livesight_video_frame:{self.ticks}"
        )
        self._encodes.add(task)
        task.add_done_callback(self._encode_done)
        return task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.tick()

    async def _capture_and_submit(self) -> None:
        jpeg = await asyncio.to_thread(self._snapshot_jpeg)
        if jpeg is None or self._stopped:
            return
        self._sink.submit_image(jpeg)
        self.frames_sent += 1
        if self.frames_sent == 1:
            logger.info("First video frame submitted (%d bytes)", len(jpeg))

    def _snapshot_jpeg(self) -> bytes | None:
        frame = self._source.snapshot(self._width, self._height)
        if frame is None:
            return None
        return encode_jpeg(frame, self._quality)

    def _encode_done(self, task: asyncio.Task[None]) -> None:
        self._encodes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Video frame dropped: %s", exc)
