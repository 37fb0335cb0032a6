"""Gemini Live connection setup and the open-session handle.

Requires the ``google-genai`` package.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any

from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from livesight.config import LiveSightConfig
from livesight.errors import (
    ConnectFailureError,
    LiveSightError,
    TransportClosedError,
    TransportError,
)
from livesight.framer import AUDIO_MIME_TYPE, IMAGE_MIME_TYPE

logger = logging.getLogger("livesight.connector")

STOP_NAVIGATION = "stopNavigation"

STOP_NAVIGATION_TOOL: dict[str, Any] = {
    "name": STOP_NAVIGATION,
    "description": "Ends the navigation session and stops the eyes assistant.",
    "parameters": {"type": "OBJECT", "properties": {}},
}


def build_connect_config(config: LiveSightConfig) -> Any:
    """Build the fixed ``LiveConnectConfig`` for a navigation session.

    Audio-only responses in the configured prebuilt voice, transcription
    in both directions, and the single ``stopNavigation`` tool.
    """
    from google.genai import types

    return types.LiveConnectConfig(
        response_modalities=["AUDIO"],
        speech_config=types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=config.voice)
            )
        ),
        system_instruction=config.system_instruction,
        input_audio_transcription=types.AudioTranscriptionConfig(),
        output_audio_transcription=types.AudioTranscriptionConfig(),
        tools=[
            types.Tool(
                function_declarations=[
                    types.FunctionDeclaration(
                        name=STOP_NAVIGATION_TOOL["name"],
                        description=STOP_NAVIGATION_TOOL["description"],
                        parameters=STOP_NAVIGATION_TOOL["parameters"],
                    )
                ]
            )
        ],
    )


class LiveConnection(ABC):
    """An open bidirectional stream to the live service."""

    credential_index: int | None = None

    @property
    @abstractmethod
    def closed(self) -> bool: ...

    @abstractmethod
    def submit_audio(self, pcm: bytes) -> None:
        """Queue one PCM block for sending. Must not block."""
        ...

    @abstractmethod
    def submit_image(self, jpeg: bytes) -> None:
        """Queue one JPEG still for sending. Must not block."""
        ...

    @abstractmethod
    async def send_tool_response(
        self, call_id: str | None, name: str, response: dict[str, Any]
    ) -> None: ...

    @abstractmethod
    def messages(self) -> AsyncIterator[Any]: ...

    @abstractmethod
    async def close(self) -> None: ...


class LiveConnector(ABC):
    """Opens one :class:`LiveConnection` per call, without retrying."""

    @abstractmethod
    async def connect(
        self, credential: str, *, credential_index: int | None = None
    ) -> LiveConnection: ...


class LiveSession(LiveConnection):
    """An open Gemini Live stream.

    Outbound media is queued by :meth:`submit_audio` / :meth:`submit_image`
    without blocking and sent by a single sender task, so blobs reach the
    wire in submission order.  After the first send failure further
    sends are suppressed; the receive side decides whether the session
    ends.
    """

    def __init__(
        self,
        live: Any,
        ctxmgr: Any,
        *,
        credential_index: int | None = None,
        on_close: Callable[[LiveSession], None] | None = None,
    ) -> None:
        self._live = live
        self._ctxmgr = ctxmgr
        self.credential_index = credential_index
        self._on_close = on_close
        self._queue: asyncio.Queue[tuple[str, bytes]] = asyncio.Queue()
        self._closed = False
        self._send_failed = False
        self.audio_sent = 0
        self.images_sent = 0
        self.send_errors = 0
        self._sender = asyncio.get_running_loop().create_task(
            self._send_loop(), name="livesight_send"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def submit_audio(self, pcm: bytes) -> None:
        self._submit("audio", pcm)

    def submit_image(self, jpeg: bytes) -> None:
        self._submit("video", jpeg)

    def _submit(self, kind: str, data: bytes) -> None:
        if self._closed or self._send_failed or not data:
            return
        self._queue.put_nowait((kind, data))

    async def send_tool_response(
        self, call_id: str | None, name: str, response: dict[str, Any]
    ) -> None:
        from google.genai import types

        await self._live.send_tool_response(
            function_responses=[types.FunctionResponse(id=call_id, name=name, response=response)]
        )
        logger.info("Tool response sent: %s (%s) -> %s", name, call_id, response)

    async def messages(self) -> AsyncIterator[Any]:
        """Yield server messages across turns until the stream ends.

        ``live.receive()`` yields the messages of a single model turn, so
        it is called in a loop.

        Raises:
            TransportClosedError: The server closed the stream normally.
            TransportError: The stream failed.
        """
        try:
            while not self._closed:
                received = 0
                async for message in self._live.receive():
                    received += 1
                    yield message
                if received == 0 and not self._closed:
                    raise TransportClosedError("live stream ended")
        except (asyncio.CancelledError, TransportError):
            raise
        except ConnectionClosedOK as exc:
            raise TransportClosedError(str(exc)) from exc
        except ConnectionClosed as exc:
            if exc.rcvd is not None and exc.rcvd.code == 1000:
                raise TransportClosedError(str(exc)) from exc
            raise TransportError(str(exc)) from exc
        except Exception as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc

    async def close(self) -> None:
        """Stop sending and close the stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._sender.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await self._sender
        with contextlib.suppress(Exception):
            await self._ctxmgr.__aexit__(None, None, None)
        if self._on_close is not None:
            self._on_close(self)
        logger.info(
            "Live session closed: sent=%d audio blocks, %d images, %d send error(s)",
            self.audio_sent,
            self.images_sent,
            self.send_errors,
        )

    async def _send_loop(self) -> None:
        from google.genai import types

        while True:
            kind, data = await self._queue.get()
            try:
                if kind == "audio":
                    await self._live.send_realtime_input(
                        audio=types.Blob(data=data, mime_type=AUDIO_MIME_TYPE)
                    )
                    self.audio_sent += 1
                    if self.audio_sent % 100 == 0:
                        logger.debug("%d audio blocks sent", self.audio_sent)
                else:
                    await self._live.send_realtime_input(
                        video=types.Blob(data=data, mime_type=IMAGE_MIME_TYPE)
                    )
                    self.images_sent += 1
            except Exception as exc:
                self.send_errors += 1
                self._send_failed = True
                dropped = self._queue.qsize()
                while not self._queue.empty():
                    self._queue.get_nowait()
                logger.warning(
                    "Send failed (%s), suppressing further sends (%d queued dropped)",
                    exc,
                    dropped,
                )
                return


class SessionConnector(LiveConnector):
    """Opens Gemini Live streams with the fixed navigation configuration.

    Performs a single attempt per call; credential failover belongs to
    the caller.  At most one stream from this connector may be open.

    Example:
        connector = SessionConnector(LiveSightConfig())
        session = await connector.connect(api_key)
        session.submit_audio(pcm)
        async for message in session.messages():
            ...
        await session.close()
    """

    def __init__(
        self,
        config: LiveSightConfig | None = None,
        *,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self._config = config or LiveSightConfig()
        self._client_factory = client_factory or self._default_client
        self._active: LiveSession | None = None
        self.attempts = 0

    @property
    def config(self) -> LiveSightConfig:
        return self._config

    @property
    def active(self) -> LiveSession | None:
        return self._active

    def _default_client(self, credential: str) -> Any:
        from google import genai
        from google.genai import types

        # Tighter WebSocket keepalive so dead connections surface quickly
        return genai.Client(
            api_key=credential,
            http_options=types.HttpOptions(
                async_client_args={
                    "ping_interval": self._config.ping_interval,
                    "ping_timeout": self._config.ping_timeout,
                }
            ),
        )

    async def connect(
        self, credential: str, *, credential_index: int | None = None
    ) -> LiveSession:
        """Open one stream with *credential*.

        Raises:
            ConnectFailureError: The stream could not be opened.
            LiveSightError: A stream from this connector is still open.
        """
        if self._active is not None and not self._active.closed:
            raise LiveSightError("a live session is already open")

        self.attempts += 1
        try:
            client = self._client_factory(credential)
            ctxmgr = client.aio.live.connect(
                model=self._config.model,
                config=build_connect_config(self._config),
            )
            live = await ctxmgr.__aenter__()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise ConnectFailureError(
                str(exc) or type(exc).__name__, credential_index=credential_index
            ) from exc

        session = LiveSession(
            live, ctxmgr, credential_index=credential_index, on_close=self._session_closed
        )
        self._active = session
        logger.info(
            "Live session connected: model=%s credential=#%s",
            self._config.model,
            credential_index,
        )
        return session

    def _session_closed(self, session: LiveSession) -> None:
        if self._active is session:
            self._active = None
