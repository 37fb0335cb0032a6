"""Tests for LiveSightConfig and models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from livesight.config import DEFAULT_MODEL, SYSTEM_INSTRUCTION, LiveSightConfig, load_credentials
from livesight.models import SessionStatus, TranscriptLog, TranscriptRole


class TestLiveSightConfig:
    def test_defaults(self) -> None:
        cfg = LiveSightConfig()
        assert cfg.model == DEFAULT_MODEL
        assert cfg.voice == "Kore"
        assert cfg.input_sample_rate == 16000
        assert cfg.output_sample_rate == 24000
        assert cfg.mic_block_size == 4096
        assert cfg.video_interval == 1.0
        assert (cfg.snapshot_width, cfg.snapshot_height) == (320, 240)
        assert cfg.jpeg_quality == 50
        assert (cfg.camera_width, cfg.camera_height) == (640, 480)
        assert cfg.transcript_limit == 16
        assert cfg.restart_listening_delay == 1.0

    def test_system_instruction_mentions_stop_tool(self) -> None:
        assert "stopNavigation" in SYSTEM_INSTRUCTION
        assert "o'clock" in SYSTEM_INSTRUCTION

    def test_from_env_overrides(self) -> None:
        cfg = LiveSightConfig.from_env(
            {"LIVESIGHT_MODEL": "m", "LIVESIGHT_VOICE": "Puck", "LIVESIGHT_CAMERA": "2"}
        )
        assert cfg.model == "m"
        assert cfg.voice == "Puck"
        assert cfg.camera_index == 2

    def test_from_env_empty(self) -> None:
        assert LiveSightConfig.from_env({}) == LiveSightConfig()

    def test_rejects_bad_quality(self) -> None:
        with pytest.raises(ValidationError):
            LiveSightConfig(jpeg_quality=0)

    def test_load_credentials(self) -> None:
        pool = load_credentials({"GEMINI_API_KEY_1": "a", "GEMINI_API_KEY_2": ""})
        assert pool.size() == 1


class TestTranscriptLog:
    def test_keeps_most_recent(self) -> None:
        log = TranscriptLog(limit=16)
        for i in range(20):
            log.append(TranscriptRole.USER, f"t{i}")
        entries = log.entries()
        assert len(entries) == 16
        assert entries[0].text == "t4"
        assert entries[-1].text == "t19"

    def test_role_coercion(self) -> None:
        entry = TranscriptLog().append("model", "hi")
        assert entry.role is TranscriptRole.MODEL
        assert entry.timestamp.tzinfo is not None

    def test_invalid_limit(self) -> None:
        with pytest.raises(ValueError):
            TranscriptLog(limit=0)


class TestSessionStatus:
    def test_values(self) -> None:
        assert SessionStatus.CREDENTIALS_MISSING == "credentials_missing"
        assert {s.value for s in SessionStatus} == {
            "idle",
            "connecting",
            "active",
            "error",
            "credentials_missing",
        }
