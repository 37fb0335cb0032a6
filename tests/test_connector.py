"""Tests for SessionConnector and LiveSession (google-genai mocked)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK
from websockets.frames import Close

from livesight.config import LiveSightConfig
from livesight.connector import (
    STOP_NAVIGATION,
    LiveSession,
    SessionConnector,
    build_connect_config,
)
from livesight.errors import (
    ConnectFailureError,
    LiveSightError,
    TransportClosedError,
    TransportError,
)


def _mock_genai_module() -> MagicMock:
    """Return a MagicMock that behaves like the google.genai module."""
    mod = MagicMock()
    types = MagicMock()
    for name in (
        "LiveConnectConfig",
        "SpeechConfig",
        "VoiceConfig",
        "PrebuiltVoiceConfig",
        "AudioTranscriptionConfig",
        "Tool",
        "FunctionDeclaration",
        "FunctionResponse",
        "Blob",
        "HttpOptions",
    ):
        setattr(types, name, MagicMock(side_effect=lambda **kw: SimpleNamespace(**kw)))
    mod.types = types
    return mod


def _genai_modules(mock_genai: MagicMock) -> dict[str, Any]:
    """Build sys.modules patch dict for connector tests."""
    return {
        "google": MagicMock(genai=mock_genai),
        "google.genai": mock_genai,
        "google.genai.types": mock_genai.types,
    }


@pytest.fixture
def genai() -> Iterator[MagicMock]:
    mock_genai = _mock_genai_module()
    with patch.dict("sys.modules", _genai_modules(mock_genai)):
        yield mock_genai


class _FakeLive:
    """Stand-in for the object yielded by ``client.aio.live.connect``."""

    def __init__(self, turns: list[list[Any] | BaseException] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.send_realtime_input = AsyncMock(side_effect=lambda **kw: self.sent.append(kw))
        self.send_tool_response = AsyncMock()
        self._turns = list(turns or [])

    async def receive(self) -> AsyncIterator[Any]:
        if not self._turns:
            return
        turn = self._turns.pop(0)
        if isinstance(turn, BaseException):
            raise turn
        for message in turn:
            yield message


class _FakeContext:
    def __init__(self, live: _FakeLive | None = None, error: Exception | None = None) -> None:
        self.live = live or _FakeLive()
        self.error = error
        self.exited = 0

    async def __aenter__(self) -> _FakeLive:
        if self.error is not None:
            raise self.error
        return self.live

    async def __aexit__(self, *args: Any) -> None:
        self.exited += 1


class _Clients:
    """Client factory recording each client it builds."""

    def __init__(self, ctx: _FakeContext) -> None:
        self.ctx = ctx
        self.clients: list[tuple[str, MagicMock]] = []

    def __call__(self, credential: str) -> MagicMock:
        client = MagicMock()
        client.aio.live.connect = MagicMock(return_value=self.ctx)
        self.clients.append((credential, client))
        return client


async def _open(
    ctx: _FakeContext, config: LiveSightConfig | None = None
) -> tuple[SessionConnector, LiveSession, _Clients]:
    clients = _Clients(ctx)
    connector = SessionConnector(config, client_factory=clients)
    session = await connector.connect("k1", credential_index=0)
    return connector, session, clients


async def _collect(session: LiveSession) -> tuple[list[Any], Exception | None]:
    received: list[Any] = []
    try:
        async for message in session.messages():
            received.append(message)
    except Exception as exc:
        return received, exc
    return received, None


# ---------------------------------------------------------------------------
# Connect configuration
# ---------------------------------------------------------------------------


class TestBuildConnectConfig:
    def test_fields(self, genai: MagicMock) -> None:
        cfg = build_connect_config(LiveSightConfig(voice="Puck", system_instruction="sys"))

        assert cfg.response_modalities == ["AUDIO"]
        assert cfg.system_instruction == "sys"
        voice = cfg.speech_config.voice_config.prebuilt_voice_config
        assert voice.voice_name == "Puck"
        assert cfg.input_audio_transcription is not None
        assert cfg.output_audio_transcription is not None

        declarations = cfg.tools[0].function_declarations
        assert len(declarations) == 1
        assert declarations[0].name == STOP_NAVIGATION
        assert declarations[0].parameters == {"type": "OBJECT", "properties": {}}


# ---------------------------------------------------------------------------
# SessionConnector
# ---------------------------------------------------------------------------


class TestSessionConnector:
    async def test_connect_uses_model_and_credential(self, genai: MagicMock) -> None:
        ctx = _FakeContext()
        connector, session, clients = await _open(ctx, LiveSightConfig(model="m1"))

        credential, client = clients.clients[0]
        assert credential == "k1"
        assert client.aio.live.connect.call_args.kwargs["model"] == "m1"
        assert session.credential_index == 0
        assert connector.active is session
        assert connector.attempts == 1

        await session.close()
        assert connector.active is None
        assert ctx.exited == 1

    def test_default_client_keepalive(self, genai: MagicMock) -> None:
        connector = SessionConnector(LiveSightConfig(ping_interval=7, ping_timeout=3))
        connector._default_client("k1")
        kwargs = genai.Client.call_args.kwargs
        assert kwargs["api_key"] == "k1"
        assert kwargs["http_options"].async_client_args == {
            "ping_interval": 7,
            "ping_timeout": 3,
        }

    def test_construction_does_not_import_genai(self) -> None:
        # The client library is only loaded when a client is built
        with patch.dict("sys.modules", {"google": None, "google.genai": None}):
            connector = SessionConnector(client_factory=_Clients(_FakeContext()))
        assert connector.attempts == 0
        assert connector.active is None

    async def test_connect_failure_is_wrapped(self, genai: MagicMock) -> None:
        connector = SessionConnector(
            client_factory=_Clients(_FakeContext(error=RuntimeError("API key not valid")))
        )
        with pytest.raises(ConnectFailureError, match="API key not valid") as info:
            await connector.connect("bad", credential_index=2)
        assert info.value.credential_index == 2
        assert connector.active is None

    async def test_only_one_open_session(self, genai: MagicMock) -> None:
        connector, session, _ = await _open(_FakeContext())
        with pytest.raises(LiveSightError):
            await connector.connect("k2")
        await session.close()

        second = await connector.connect("k2")
        await second.close()
        assert connector.attempts == 2


# ---------------------------------------------------------------------------
# LiveSession sending
# ---------------------------------------------------------------------------


class TestLiveSessionSend:
    async def test_blobs_sent_in_submission_order(self, genai: MagicMock, advance) -> None:
        ctx = _FakeContext()
        _, session, _ = await _open(ctx)
        session.submit_audio(b"a1")
        session.submit_image(b"v1")
        session.submit_audio(b"a2")
        await advance(10)
        await session.close()

        sent = ctx.live.sent
        assert [next(iter(kw)) for kw in sent] == ["audio", "video", "audio"]
        assert [next(iter(kw.values())).data for kw in sent] == [b"a1", b"v1", b"a2"]
        assert sent[0]["audio"].mime_type == "audio/pcm;rate=16000"
        assert sent[1]["video"].mime_type == "image/jpeg"
        assert session.audio_sent == 2
        assert session.images_sent == 1

    async def test_send_failure_suppresses_further_sends(
        self, genai: MagicMock, advance
    ) -> None:
        ctx = _FakeContext()
        ctx.live.send_realtime_input = AsyncMock(side_effect=ConnectionError("broken pipe"))
        _, session, _ = await _open(ctx)
        session.submit_audio(b"a1")
        session.submit_audio(b"a2")
        await advance(10)
        session.submit_audio(b"a3")
        await advance(10)
        await session.close()

        assert ctx.live.send_realtime_input.await_count == 1
        assert session.send_errors == 1

    async def test_submit_after_close_is_ignored(self, genai: MagicMock, advance) -> None:
        ctx = _FakeContext()
        _, session, _ = await _open(ctx)
        await session.close()
        session.submit_audio(b"late")
        await advance()
        assert ctx.live.sent == []

    async def test_tool_response(self, genai: MagicMock) -> None:
        ctx = _FakeContext()
        _, session, _ = await _open(ctx)
        await session.send_tool_response("c1", STOP_NAVIGATION, {"status": "stopped"})
        await session.close()

        responses = ctx.live.send_tool_response.call_args.kwargs["function_responses"]
        assert len(responses) == 1
        assert responses[0].id == "c1"
        assert responses[0].name == STOP_NAVIGATION
        assert responses[0].response == {"status": "stopped"}

    async def test_close_is_idempotent(self, genai: MagicMock) -> None:
        ctx = _FakeContext()
        _, session, _ = await _open(ctx)
        await session.close()
        await session.close()
        assert session.closed
        assert ctx.exited == 1


# ---------------------------------------------------------------------------
# LiveSession receiving
# ---------------------------------------------------------------------------


class TestLiveSessionMessages:
    async def test_messages_span_turns(self, genai: MagicMock) -> None:
        _, session, _ = await _open(_FakeContext(_FakeLive([["m1", "m2"], ["m3"]])))
        received, error = await _collect(session)
        await session.close()
        assert received == ["m1", "m2", "m3"]
        # An empty turn means the server ended the stream
        assert isinstance(error, TransportClosedError)

    async def test_normal_close_frame(self, genai: MagicMock) -> None:
        closed = ConnectionClosedOK(Close(1000, "bye"), None)
        _, session, _ = await _open(_FakeContext(_FakeLive([["m1"], closed])))
        received, error = await _collect(session)
        await session.close()
        assert received == ["m1"]
        assert isinstance(error, TransportClosedError)

    async def test_abnormal_close_is_error(self, genai: MagicMock) -> None:
        closed = ConnectionClosed(Close(1011, "internal error"), None)
        _, session, _ = await _open(_FakeContext(_FakeLive([closed])))
        _, error = await _collect(session)
        await session.close()
        assert isinstance(error, TransportError)
        assert not isinstance(error, TransportClosedError)

    async def test_other_failure_is_error(self, genai: MagicMock) -> None:
        _, session, _ = await _open(_FakeContext(_FakeLive([OSError("network unreachable")])))
        _, error = await _collect(session)
        await session.close()
        assert isinstance(error, TransportError)
        assert "network unreachable" in str(error)

    async def test_cancellation_propagates(self, genai: MagicMock) -> None:
        live = _FakeLive()

        async def _hang() -> AsyncIterator[Any]:
            await asyncio.Event().wait()
            yield None

        live.receive = _hang  # type: ignore[method-assign]
        _, session, _ = await _open(_FakeContext(live))
        task = asyncio.create_task(_collect(session))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await session.close()
