"""Session state machine tying capture, connection, dispatch and playback together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any, Protocol

from livesight.capture.media import CaptureSource, MediaStream
from livesight.config import LiveSightConfig
from livesight.connector import LiveConnection, LiveConnector
from livesight.credentials import CredentialPool
from livesight.dispatcher import InboundDispatcher, ToolCallCallback
from livesight.errors import (
    CONNECTION_ISSUE_MESSAGE,
    CREDENTIALS_MISSING_MESSAGE,
    INITIALIZE_FAILED_MESSAGE,
    ConnectFailureError,
    TransportClosedError,
    TransportError,
)
from livesight.framer import AudioFramer, VideoFramer
from livesight.models.enums import SessionStatus
from livesight.models.snapshot import LifecycleSnapshot
from livesight.models.transcript import TranscriptionEntry, TranscriptLog
from livesight.playback.output import OutputDevice, SpeakerOutput
from livesight.playback.scheduler import PlaybackScheduler

logger = logging.getLogger("livesight.lifecycle")

StatusCallback = Callable[[SessionStatus], Any]
TranscriptionCallback = Callable[[TranscriptionEntry], Any]
ErrorCallback = Callable[[str], Any]
OutputFactory = Callable[[], OutputDevice]


class PassiveListener(Protocol):
    """Start-phrase detector that runs while no session is open.

    ``start``/``stop`` may be plain or async.
    """

    def start(self) -> Any: ...

    def stop(self) -> Any: ...


class SessionLifecycle:
    """Owns one navigation session at a time.

    States: ``idle``, ``connecting``, ``active``, ``error`` (reported, then
    straight back to ``idle``) and ``credentials_missing``, which is
    entered at construction when the pool is empty and never left.

    ``start()`` acquires camera and microphone, then tries each distinct
    credential once, rotating a persistent index past each failure.  On
    success the microphone feeds an :class:`AudioFramer`, a
    :class:`VideoFramer` samples the camera, and a receive task routes
    server messages through an :class:`InboundDispatcher`.  User stop,
    the ``stopNavigation`` tool, and remote close or failure all run the
    same idempotent teardown, after which passive listening resumes.

    Example:
        lifecycle = SessionLifecycle(
            pool=CredentialPool.from_env(),
            connector=SessionConnector(config),
            capture=MediaCaptureSource(config),
            config=config,
        )
        lifecycle.on_status_change(print)
        await lifecycle.start()
        ...
        await lifecycle.stop()
    """

    def __init__(
        self,
        *,
        pool: CredentialPool,
        connector: LiveConnector,
        capture: CaptureSource,
        output_factory: OutputFactory | None = None,
        listener: PassiveListener | None = None,
        config: LiveSightConfig | None = None,
    ) -> None:
        self._config = config or LiveSightConfig()
        self._pool = pool
        self._connector = connector
        self._capture = capture
        self._output_factory = output_factory or self._default_output
        self._listener = listener

        self._status = SessionStatus.IDLE
        self._last_error: str | None = None
        if pool.is_empty:
            self._status = SessionStatus.CREDENTIALS_MISSING
            self._last_error = CREDENTIALS_MISSING_MESSAGE
            logger.warning("No usable credentials configured")

        # Persists across sessions so a failed key is not retried first
        self._credential_index = 0
        self._active_credential_index: int | None = None

        # Owned for the lifetime of one session
        self._session: LiveConnection | None = None
        self._stream: MediaStream | None = None
        self._output: OutputDevice | None = None
        self._scheduler: PlaybackScheduler | None = None
        self._dispatcher: InboundDispatcher | None = None
        self._audio_framer: AudioFramer | None = None
        self._video_framer: VideoFramer | None = None
        self._receive_task: asyncio.Task[None] | None = None

        # Bumped on every start and teardown; stale work compares against it
        self._generation = 0
        self._stopping = False
        self._muted = False
        self._listening = False
        self._restart_handle: asyncio.TimerHandle | None = None
        self._transcripts = TranscriptLog(self._config.transcript_limit)
        self.late_messages_dropped = 0

        # Callbacks
        self._status_callbacks: list[StatusCallback] = []
        self._transcription_callbacks: list[TranscriptionCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._tool_call_callbacks: list[ToolCallCallback] = []

        # Track fire-and-forget tasks for clean shutdown
        self._scheduled_tasks: set[asyncio.Task[Any]] = set()

    # -- Properties --

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def credential_index(self) -> int:
        return self._credential_index

    @property
    def active_credential(self) -> str | None:
        if self._active_credential_index is None or self._status != SessionStatus.ACTIVE:
            return None
        return self._pool.get(self._active_credential_index)

    @property
    def session(self) -> LiveConnection | None:
        return self._session

    @property
    def scheduler(self) -> PlaybackScheduler | None:
        return self._scheduler

    @property
    def transcripts(self) -> list[TranscriptionEntry]:
        return self._transcripts.entries()

    def snapshot(self) -> LifecycleSnapshot:
        return LifecycleSnapshot(
            status=self._status,
            transcripts=tuple(self._transcripts.entries()),
            last_error=self._last_error,
            muted=self._muted,
            listening=self._listening,
            credential_index=self._credential_index,
        )

    # -- Callback registration --

    def on_status_change(self, callback: StatusCallback) -> None:
        self._status_callbacks.append(callback)

    def on_transcription(self, callback: TranscriptionCallback) -> None:
        self._transcription_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    def on_tool_call(self, callback: ToolCallCallback) -> None:
        """Receive tool calls other than ``stopNavigation``."""
        self._tool_call_callbacks.append(callback)

    # -- Public operations --

    async def listen(self) -> None:
        """Start the passive listener if no session is open."""
        if self._status in (SessionStatus.CONNECTING, SessionStatus.ACTIVE):
            return
        await self._resume_listener()

    async def start(self) -> bool:
        """Open a session. Returns True if the session became active.

        Ignored while a session is connecting or active.
        """
        if self._status == SessionStatus.CREDENTIALS_MISSING:
            logger.warning("start ignored: no usable credentials")
            await self._fire_error(CREDENTIALS_MISSING_MESSAGE)
            return False
        if self._status in (SessionStatus.CONNECTING, SessionStatus.ACTIVE):
            logger.debug("start ignored: session already %s", self._status)
            return False

        self._cancel_listener_restart()
        self._generation += 1
        generation = self._generation
        self._last_error = None
        self._transcripts.clear()
        await self._pause_listener()
        await self._set_status(SessionStatus.CONNECTING)

        try:
            stream = await self._capture.acquire()
        except Exception as exc:
            if generation != self._generation:
                return False
            logger.error("Media acquisition failed: %s", exc)
            await self._fail(str(exc) or INITIALIZE_FAILED_MESSAGE)
            return False
        if generation != self._generation:
            stream.stop()
            return False
        self._stream = stream

        session, failure = await self._connect_with_failover(generation)
        if generation != self._generation:
            # Stopped while connecting; teardown already released media
            if session is not None:
                await session.close()
            return False
        if session is None:
            self._release_media()
            await self._fail(str(failure or "") or INITIALIZE_FAILED_MESSAGE)
            return False

        return await self._activate(session, stream, generation)

    async def stop(self) -> None:
        """Tear the session down. No-op when nothing is open."""
        await self._teardown()

    def set_muted(self, muted: bool) -> None:
        if self._status != SessionStatus.ACTIVE:
            return
        self._muted = muted
        if self._audio_framer is not None:
            self._audio_framer.muted = muted
        logger.info("Microphone %s", "muted" if muted else "unmuted")

    def toggle_mute(self) -> bool:
        self.set_muted(not self._muted)
        return self._muted

    def clear_error(self) -> None:
        """Dismiss the last error. The credentials-missing condition stays."""
        if self._status == SessionStatus.CREDENTIALS_MISSING:
            return
        self._last_error = None

    async def close(self) -> None:
        """Stop everything, including the passive listener. For process shutdown."""
        await self._teardown(resume_listening=False)
        self._cancel_listener_restart()
        await self._pause_listener()
        tasks = list(self._scheduled_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

    # -- Connect --

    async def _connect_with_failover(
        self, generation: int
    ) -> tuple[LiveConnection | None, ConnectFailureError | None]:
        """Try each distinct credential once, starting at the persistent index."""
        attempts = self._pool.size()
        last_error: ConnectFailureError | None = None
        for attempt in range(1, attempts + 1):
            index = self._credential_index
            try:
                session = await self._connector.connect(
                    self._pool.get(index), credential_index=index
                )
                return session, None
            except ConnectFailureError as exc:
                last_error = exc
                self._credential_index = self._pool.rotate(index)
                logger.warning(
                    "Connect attempt %d/%d failed (credential #%d): %s",
                    attempt,
                    attempts,
                    index,
                    exc,
                )
            if generation != self._generation:
                return None, last_error
        logger.error("All %d credential(s) failed", attempts)
        return None, last_error

    async def _activate(
        self, session: LiveConnection, stream: MediaStream, generation: int
    ) -> bool:
        cfg = self._config
        try:
            output = self._output_factory()
            output.open()
        except Exception as exc:
            logger.error("Speaker output unavailable: %s", exc)
            await session.close()
            self._release_media()
            await self._fail(str(exc) or INITIALIZE_FAILED_MESSAGE)
            return False

        scheduler = PlaybackScheduler(output, sample_rate=cfg.output_sample_rate)
        dispatcher = InboundDispatcher(
            session, scheduler, self._transcripts, on_stop=self._stop_from_tool
        )
        dispatcher.on_transcription(self._fire_transcription)
        for cb in self._tool_call_callbacks:
            dispatcher.on_tool_call(cb)

        self._session = session
        self._output = output
        self._scheduler = scheduler
        self._dispatcher = dispatcher
        self._active_credential_index = session.credential_index
        self._muted = False
        self._audio_framer = AudioFramer(session, muted=False)
        await self._set_status(SessionStatus.ACTIVE)

        if stream.audio is not None:
            stream.audio.connect(self._audio_framer.on_block)
        if stream.video is not None:
            self._video_framer = VideoFramer(
                session,
                stream.video,
                interval=cfg.video_interval,
                width=cfg.snapshot_width,
                height=cfg.snapshot_height,
                quality=cfg.jpeg_quality,
            )
            self._video_framer.start()

        self._receive_task = self._track_task(
            self._receive_loop(session, dispatcher, generation),
            name=f"livesight_recv:{generation}",
        )
        logger.info("Session active (credential #%s)", session.credential_index)
        return True

    # -- Receive loop --

    async def _receive_loop(
        self, session: LiveConnection, dispatcher: InboundDispatcher, generation: int
    ) -> None:
        try:
            async with contextlib.aclosing(session.messages()) as messages:
                async for message in messages:
                    if self._session is not session or generation != self._generation:
                        self.late_messages_dropped += 1
                        logger.debug("Dropping message received after teardown")
                        return
                    if await dispatcher.dispatch(message):
                        return
        except asyncio.CancelledError:
            raise
        except TransportClosedError as exc:
            logger.info("Live stream closed by server: %s", exc)
            if self._session is session:
                await self._teardown()
        except TransportError as exc:
            logger.warning("Live stream failed: %s", exc)
            if self._session is session:
                await self._teardown(error=CONNECTION_ISSUE_MESSAGE)
        except Exception:
            logger.exception("Receive loop failed")
            if self._session is session:
                await self._teardown(error=CONNECTION_ISSUE_MESSAGE)

    async def _stop_from_tool(self) -> None:
        await self._teardown()

    # -- Teardown --

    async def _teardown(self, *, error: str | None = None, resume_listening: bool = True) -> None:
        if self._stopping or self._status not in (
            SessionStatus.CONNECTING,
            SessionStatus.ACTIVE,
        ):
            return
        self._stopping = True
        self._generation += 1
        try:
            session, self._session = self._session, None
            receive_task, self._receive_task = self._receive_task, None
            video_framer, self._video_framer = self._video_framer, None
            scheduler, self._scheduler = self._scheduler, None
            output, self._output = self._output, None
            self._audio_framer = None
            self._dispatcher = None
            self._active_credential_index = None

            if video_framer is not None:
                await video_framer.stop()
            stream = self._stream
            if stream is not None and stream.audio is not None:
                stream.audio.disconnect()
            if scheduler is not None:
                scheduler.close()
            if output is not None:
                try:
                    output.close()
                except Exception:
                    logger.exception("Error closing speaker output")
            self._release_media()
            if session is not None:
                await session.close()
            if receive_task is not None and receive_task is not asyncio.current_task():
                receive_task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await receive_task

            self._muted = False
            if error:
                self._last_error = error
                await self._set_status(SessionStatus.ERROR)
                await self._fire_error(error)
            await self._set_status(SessionStatus.IDLE)
            logger.info("Session stopped")
            if resume_listening:
                self._schedule_listener_restart()
        finally:
            self._stopping = False

    def _release_media(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()

    async def _fail(self, message: str) -> None:
        """Surface a start failure, pass through ``error`` and settle in ``idle``."""
        self._last_error = message
        await self._set_status(SessionStatus.ERROR)
        await self._fire_error(message)
        await self._set_status(SessionStatus.IDLE)
        await self._resume_listener()

    # -- Passive listener --

    def _schedule_listener_restart(self) -> None:
        self._cancel_listener_restart()
        if self._listener is None:
            return
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(
            self._config.restart_listening_delay, self._on_restart_timer
        )

    def _on_restart_timer(self) -> None:
        self._restart_handle = None
        if self._status in (SessionStatus.CONNECTING, SessionStatus.ACTIVE):
            return
        self._track_task(self._resume_listener(), name="livesight_listener_restart")

    def _cancel_listener_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    async def _pause_listener(self) -> None:
        if self._listener is None or not self._listening:
            return
        self._listening = False
        try:
            result = self._listener.stop()
            if hasattr(result, "__await__"):
                await result
        except Exception:
            logger.exception("Error stopping passive listener")

    async def _resume_listener(self) -> None:
        if self._listener is None or self._listening:
            return
        try:
            result = self._listener.start()
            if hasattr(result, "__await__"):
                await result
            self._listening = True
            logger.debug("Passive listening resumed")
        except Exception:
            logger.exception("Error starting passive listener")

    # -- Helpers --

    def _default_output(self) -> OutputDevice:
        return SpeakerOutput(
            sample_rate=self._config.output_sample_rate, device=self._config.output_device
        )

    async def _set_status(self, status: SessionStatus) -> None:
        if status == self._status:
            return
        logger.debug("status %s -> %s", self._status, status)
        self._status = status
        for cb in self._status_callbacks:
            try:
                result = cb(status)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in status callback")

    async def _fire_transcription(self, entry: TranscriptionEntry) -> None:
        for cb in self._transcription_callbacks:
            try:
                result = cb(entry)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in transcription callback")

    async def _fire_error(self, message: str) -> None:
        for cb in self._error_callbacks:
            try:
                result = cb(message)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in error callback")

    # -- Task tracking --

    def _track_task(
        self, coro: Any, *, name: str, loop: asyncio.AbstractEventLoop | None = None
    ) -> asyncio.Task[Any]:
        """Create a tracked asyncio task with automatic cleanup and error logging."""
        loop = loop or asyncio.get_running_loop()
        task = loop.create_task(coro, name=name)
        self._scheduled_tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        """Done-callback: log exceptions and remove from tracked set."""
        self._scheduled_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Unhandled exception in task %s: %s",
                task.get_name(),
                exc,
                exc_info=exc,
            )
