"""livesight - Navigation assistant on the local camera, mic and speakers.

Streams the microphone and one camera snapshot per second to Gemini
Live and plays the spoken guidance through the speakers.  Type commands
on stdin instead of saying the start phrase.

Requirements:
    pip install livesight[all]

Run with:
    GEMINI_API_KEY=... livesight

Environment variables:
    GEMINI_API_KEY, GEMINI_API_KEY_1 .. GEMINI_API_KEY_9
                        API keys, tried in order on connect failure
    LIVESIGHT_MODEL     Model name
    LIVESIGHT_VOICE     Voice preset (default: Kore)
    LIVESIGHT_CAMERA    Preferred camera index (default: 0)
    LIVESIGHT_LOG_LEVEL Logging level (default: INFO)

Commands: start, mute, stop, clear, quit.
"""

from __future__ import annotations

import asyncio
import logging
import os

from livesight.capture.media import MediaCaptureSource
from livesight.config import LiveSightConfig, load_credentials
from livesight.connector import SessionConnector
from livesight.lifecycle import SessionLifecycle
from livesight.models.enums import SessionStatus
from livesight.models.transcript import TranscriptionEntry

logger = logging.getLogger("livesight.console")

COMMANDS = {
    "start": "start",
    "s": "start",
    "mute": "mute",
    "m": "mute",
    "stop": "stop",
    "x": "stop",
    "clear": "clear",
    "quit": "quit",
    "q": "quit",
}


class KeyboardStartListener:
    """Stands in for the start-phrase detector: announces when typing ``start`` works."""

    def __init__(self) -> None:
        self.active = False

    def start(self) -> None:
        self.active = True
        print("Listening. Type 'start' to begin navigation.")

    def stop(self) -> None:
        self.active = False


def _print_status(status: SessionStatus) -> None:
    print(f"[status] {status}")


def _print_transcription(entry: TranscriptionEntry) -> None:
    label = "You" if entry.role == "user" else "AI"
    print(f"[{label}] {entry.text}")


def _print_error(message: str) -> None:
    print(f"[error] {message}")


async def run(config: LiveSightConfig | None = None) -> None:
    config = config or LiveSightConfig.from_env()
    pool = load_credentials()
    listener = KeyboardStartListener()
    lifecycle = SessionLifecycle(
        pool=pool,
        connector=SessionConnector(config),
        capture=MediaCaptureSource(config),
        listener=listener,
        config=config,
    )
    lifecycle.on_status_change(_print_status)
    lifecycle.on_transcription(_print_transcription)
    lifecycle.on_error(_print_error)

    if lifecycle.status == SessionStatus.CREDENTIALS_MISSING:
        _print_error(lifecycle.last_error or "")
    await lifecycle.listen()

    try:
        while True:
            line = await asyncio.to_thread(input, "> ")
            command = COMMANDS.get(line.strip().lower())
            if command is None:
                if line.strip():
                    print("Commands: start, mute, stop, clear, quit")
                continue
            if command == "quit":
                break
            if command == "start":
                await lifecycle.start()
            elif command == "mute":
                if lifecycle.status == SessionStatus.ACTIVE:
                    muted = lifecycle.toggle_mute()
                    print("[mic] muted" if muted else "[mic] live")
            elif command == "stop":
                await lifecycle.stop()
            elif command == "clear":
                lifecycle.clear_error()
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await lifecycle.close()
        logger.info("Stopped.")


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("LIVESIGHT_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
