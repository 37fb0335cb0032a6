"""Shared test fixtures and helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

import pytest

from livesight.config import LiveSightConfig
from livesight.credentials import CredentialPool
from livesight.lifecycle import SessionLifecycle
from livesight.mock import (
    MockCaptureSource,
    MockLiveConnector,
    MockOutputDevice,
    MockPassiveListener,
)


@pytest.fixture
def advance() -> Callable[[int], Coroutine[Any, Any, None]]:
    """Yield control to let pending tasks run without real delay.

    Replaces ``await asyncio.sleep(0.05)`` patterns with zero-delay
    event loop yields::

        await advance()       # 5 yields (default)
        await advance(10)     # 10 yields for heavier workloads
    """

    async def _advance(n: int = 5) -> None:
        for _ in range(n):
            await asyncio.sleep(0)

    return _advance


@pytest.fixture
def config() -> LiveSightConfig:
    # Long video interval keeps the ticker quiet; no listener restart delay
    return LiveSightConfig(video_interval=60.0, restart_listening_delay=0.0)


def make_lifecycle(
    credentials: list[str] | None = None,
    *,
    connector: MockLiveConnector | None = None,
    capture: MockCaptureSource | None = None,
    config: LiveSightConfig | None = None,
) -> tuple[
    SessionLifecycle,
    MockLiveConnector,
    MockCaptureSource,
    list[MockOutputDevice],
    MockPassiveListener,
]:
    """Create a SessionLifecycle wired to mocks.

    Returns the lifecycle plus its connector, capture source, the list of
    output devices it opened, and the passive listener.
    """
    connector = connector or MockLiveConnector()
    capture = capture or MockCaptureSource()
    outputs: list[MockOutputDevice] = []
    listener = MockPassiveListener()

    def _output_factory() -> MockOutputDevice:
        output = MockOutputDevice()
        outputs.append(output)
        return output

    lifecycle = SessionLifecycle(
        pool=CredentialPool(["k1"] if credentials is None else credentials),
        connector=connector,
        capture=capture,
        output_factory=_output_factory,
        listener=listener,
        config=config or LiveSightConfig(video_interval=60.0, restart_listening_delay=0.0),
    )
    return lifecycle, connector, capture, outputs, listener
