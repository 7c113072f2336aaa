"""Shared test fixtures for the LOKI test suite.

Provides:
- anyio backend selection for async tests
- Logger mocks
- Standard microphone / phrase / endpoint configuration
- A scripted in-memory microphone
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from unittest.mock import Mock

import pytest
from loki.assistant.config import MicConfig, PhraseConfig, WyomingEndpoint

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Mock with spec=logging.Logger so only real logger methods can be called."""
    return Mock(spec=logging.Logger)


# ============================================================================
# Audio Fixtures
# ============================================================================


@pytest.fixture
def mic_config():
    """Standard 16kHz mono mic configuration (960 bytes per 30ms chunk)."""
    return MicConfig(command=["arecord"], rate=16000, width=2, channels=1, chunk_ms=30)


@pytest.fixture
def phrase_config():
    return PhraseConfig(min_seconds=0.03, max_seconds=1.5, silence_ms=60, rms_floor=120, no_speech_ms=150)


@pytest.fixture
def wake_endpoint():
    return WyomingEndpoint(host="localhost", port=10400)


@pytest.fixture
def stt_endpoint():
    return WyomingEndpoint(host="localhost", port=10300, model="whisper-base")


def pcm_chunk(amplitude: int, samples: int = 480) -> bytes:
    """Build a constant-amplitude little-endian 16-bit chunk."""
    return amplitude.to_bytes(2, "little", signed=True) * samples


class ScriptedMic:
    """Microphone stand-in that replays chunks and yields to the event loop on each read."""

    def __init__(self, chunks: Iterable[bytes] | None = None, default: bytes | None = None) -> None:
        self.chunks = list(chunks or [])
        self.default = default if default is not None else pcm_chunk(0)
        self.reads = 0
        self.started = 0
        self.stopped = 0

    async def start(self) -> None:
        self.started += 1

    async def stop(self) -> None:
        self.stopped += 1

    async def read_chunk(self) -> bytes:
        await asyncio.sleep(0)
        self.reads += 1
        if self.chunks:
            return self.chunks.pop(0)
        return self.default


@pytest.fixture
def scripted_mic():
    return ScriptedMic()
