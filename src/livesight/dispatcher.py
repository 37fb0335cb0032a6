"""Routing of inbound Gemini Live server messages."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from livesight.connector import STOP_NAVIGATION
from livesight.models.enums import TranscriptRole
from livesight.models.transcript import TranscriptionEntry, TranscriptLog
from livesight.playback.output import PlaybackHandle

logger = logging.getLogger("livesight.dispatcher")

STOPPED_RESPONSE: dict[str, Any] = {"status": "stopped"}


@dataclass(frozen=True)
class ToolCall:
    """A function call requested by the model."""

    id: str | None
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


class ToolResponder(Protocol):
    async def send_tool_response(
        self, call_id: str | None, name: str, response: dict[str, Any]
    ) -> None: ...


class AudioScheduler(Protocol):
    async def schedule(self, chunk: bytes | str) -> PlaybackHandle | None: ...

    def flush(self) -> None: ...


StopCallback = Callable[[], Awaitable[None] | None]
TranscriptionCallback = Callable[[TranscriptionEntry], Any]
ToolCallCallback = Callable[[ToolCall], Any]


class InboundDispatcher:
    """Demultiplexes server messages in a fixed order.

    1. Tool calls.  ``stopNavigation`` is answered with
       ``{"status": "stopped"}``, the stop callback runs, and the rest of
       the message is ignored.  Other tools go to tool-call callbacks
       and get no response.
    2. Input transcription (user), then output transcription (model).
    3. Inline audio parts, scheduled in part order.
    4. Interruption, which flushes scheduled playback.
    """

    def __init__(
        self,
        responder: ToolResponder,
        scheduler: AudioScheduler,
        transcripts: TranscriptLog,
        *,
        on_stop: StopCallback | None = None,
    ) -> None:
        self._responder = responder
        self._scheduler = scheduler
        self._transcripts = transcripts
        self._on_stop = on_stop
        self._transcription_callbacks: list[TranscriptionCallback] = []
        self._tool_call_callbacks: list[ToolCallCallback] = []
        self.messages_received = 0
        self.audio_chunks_received = 0

    def on_transcription(self, callback: TranscriptionCallback) -> None:
        self._transcription_callbacks.append(callback)

    def on_tool_call(self, callback: ToolCallCallback) -> None:
        self._tool_call_callbacks.append(callback)

    async def dispatch(self, message: Any) -> bool:
        """Handle one server message.

        Returns:
            True if the message requested the session to stop.
        """
        self.messages_received += 1
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("recv: %s", _describe(message))

        tool_call = getattr(message, "tool_call", None)
        if tool_call:
            for fc in getattr(tool_call, "function_calls", None) or []:
                call = ToolCall(
                    id=getattr(fc, "id", None),
                    name=getattr(fc, "name", "") or "",
                    arguments=dict(fc.args) if getattr(fc, "args", None) else {},
                )
                if call.name == STOP_NAVIGATION:
                    logger.info("Model requested stop (%s)", call.id)
                    try:
                        await self._responder.send_tool_response(
                            call.id, call.name, STOPPED_RESPONSE
                        )
                    except Exception:
                        logger.exception("Failed to answer %s", call.name)
                    finally:
                        await self._fire_stop()
                    return True
                logger.info("Ignoring unknown tool call: %s", call.name)
                await self._fire_tool_call_callbacks(call)

        content = getattr(message, "server_content", None)
        if not content:
            return False

        input_tx = getattr(content, "input_transcription", None)
        if input_tx and input_tx.text:
            await self._record(TranscriptRole.USER, input_tx.text)

        output_tx = getattr(content, "output_transcription", None)
        if output_tx and output_tx.text:
            await self._record(TranscriptRole.MODEL, output_tx.text)

        model_turn = getattr(content, "model_turn", None)
        if model_turn:
            for part in getattr(model_turn, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                data = getattr(inline, "data", None) if inline else None
                if not data:
                    continue
                self.audio_chunks_received += 1
                if self.audio_chunks_received % 50 == 1:
                    logger.debug(
                        "audio chunk #%d (%d bytes)", self.audio_chunks_received, len(data)
                    )
                await self._scheduler.schedule(data)

        if getattr(content, "interrupted", False):
            logger.info("Model speech interrupted, flushing playback")
            self._scheduler.flush()

        return False

    async def _record(self, role: TranscriptRole, text: str) -> None:
        entry = self._transcripts.append(role, text)
        for cb in self._transcription_callbacks:
            try:
                result = cb(entry)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in transcription callback")

    async def _fire_tool_call_callbacks(self, call: ToolCall) -> None:
        for cb in self._tool_call_callbacks:
            try:
                result = cb(call)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in tool call callback for %s", call.name)

    async def _fire_stop(self) -> None:
        if self._on_stop is None:
            return
        result = self._on_stop()
        if hasattr(result, "__await__"):
            await result


def _describe(message: Any) -> str:
    parts: list[str] = []
    content = getattr(message, "server_content", None)
    if content:
        if getattr(content, "model_turn", None):
            parts.append("model_turn")
        if getattr(content, "turn_complete", False):
            parts.append("turn_complete")
        if getattr(content, "interrupted", False):
            parts.append("interrupted")
        if getattr(content, "input_transcription", None):
            parts.append(f"input_tx={content.input_transcription.text!r}")
        if getattr(content, "output_transcription", None):
            parts.append(f"output_tx={content.output_transcription.text!r}")
    if getattr(message, "tool_call", None):
        parts.append("tool_call")
    if getattr(message, "go_away", None):
        parts.append("go_away")
    return ", ".join(parts) or "empty"
