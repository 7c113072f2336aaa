"""Tests for the Wyoming wake word listener."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from loki.assistant.wake_detector import ListenerError, WakeWordListener
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.wake import Detect, Detection, NotDetected

from tests.conftest import ScriptedMic

pytestmark = pytest.mark.anyio


@pytest.fixture
def mock_client():
    client = AsyncMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.write_event = AsyncMock()
    client.read_event = AsyncMock(return_value=None)
    return client


@pytest.fixture
def patch_tcp_client(mock_client):
    with patch("loki.assistant.wake_detector.AsyncTcpClient") as ctor:
        ctor.return_value = mock_client
        yield ctor, mock_client


def _listener(wake_endpoint, mic_config, mic=None, wake_models=None) -> WakeWordListener:
    return WakeWordListener(
        endpoint=wake_endpoint,
        wake_models=wake_models or ["hey_jarvis"],
        mic=mic or ScriptedMic(),
        mic_config=mic_config,
    )


class TestRunSession:
    async def test_returns_detected_wake_word(self, wake_endpoint, mic_config, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Detection(name="hey_jarvis").event())
        listener = _listener(wake_endpoint, mic_config)

        assert await listener.run_session() == "hey_jarvis"
        client.disconnect.assert_awaited_once()

    async def test_detection_without_name_uses_model(self, wake_endpoint, mic_config, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Detection().event())
        listener = _listener(wake_endpoint, mic_config, wake_models=["hey_loki"])

        assert await listener.run_session() == "hey_loki"

    async def test_sends_detect_and_audio_events(self, wake_endpoint, mic_config, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Detection(name="hey_jarvis").event())
        listener = _listener(wake_endpoint, mic_config)

        await listener.run_session()

        events = [call.args[0] for call in client.write_event.call_args_list]
        assert Detect.is_type(events[0].type)
        assert Detect.from_event(events[0]).names == ["hey_jarvis"]
        assert AudioStart.is_type(events[1].type)
        assert any(AudioChunk.is_type(event.type) for event in events)
        assert AudioStop.is_type(events[-1].type)

    async def test_one_stream_per_model(self, wake_endpoint, mic_config, patch_tcp_client):
        ctor, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Detection(name="alexa").event())
        listener = _listener(wake_endpoint, mic_config, wake_models=["hey_jarvis", "alexa"])

        await listener.run_session()

        assert ctor.call_count == 2
        ctor.assert_called_with("localhost", 10400)

    async def test_not_detected_ends_session(self, wake_endpoint, mic_config, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=NotDetected().event())
        listener = _listener(wake_endpoint, mic_config)

        assert await listener.run_session() is None

    async def test_closed_connection_raises(self, wake_endpoint, mic_config, patch_tcp_client):
        _, client = patch_tcp_client
        listener = _listener(wake_endpoint, mic_config)

        with pytest.raises(ListenerError, match="closed the connection"):
            await listener.run_session()
        client.disconnect.assert_awaited_once()

    async def test_connection_refused_raises(self, wake_endpoint, mic_config, patch_tcp_client):
        _, client = patch_tcp_client
        client.connect = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        listener = _listener(wake_endpoint, mic_config)

        with pytest.raises(ListenerError) as info:
            await listener.run_session()
        assert isinstance(info.value.__cause__, ConnectionRefusedError)
        client.disconnect.assert_not_awaited()

    async def test_microphone_failure_raises(self, wake_endpoint, mic_config, patch_tcp_client):
        _, client = patch_tcp_client
        mic = ScriptedMic()
        mic.read_chunk = AsyncMock(side_effect=RuntimeError("Microphone stream ended unexpectedly"))
        listener = _listener(wake_endpoint, mic_config, mic=mic)

        with pytest.raises(ListenerError, match="Microphone"):
            await listener.run_session()
        client.disconnect.assert_awaited_once()


class TestListen:
    async def test_invokes_callback_per_detection(self, wake_endpoint, mic_config):
        mic = ScriptedMic()
        listener = _listener(wake_endpoint, mic_config, mic=mic)
        detected: list[str] = []

        async def on_detect(wake_word):
            detected.append(wake_word)

        sessions = AsyncMock(side_effect=["hey_jarvis", None, "hey_jarvis", ListenerError("gone")])
        with patch.object(listener, "run_session", sessions):
            with pytest.raises(ListenerError):
                await listener.listen(on_detect)

        assert detected == ["hey_jarvis", "hey_jarvis"]
        assert mic.started == 1
        assert mic.stopped == 1

    async def test_microphone_released_on_every_failure(self, wake_endpoint, mic_config):
        mic = ScriptedMic()
        listener = _listener(wake_endpoint, mic_config, mic=mic)

        with patch.object(listener, "run_session", AsyncMock(side_effect=ListenerError("gone"))):
            for _ in range(5):
                with pytest.raises(ListenerError):
                    await listener.listen(AsyncMock())

        assert mic.started == 5
        assert mic.stopped == 5

    async def test_microphone_start_failure(self, wake_endpoint, mic_config):
        mic = ScriptedMic()
        mic.start = AsyncMock(side_effect=FileNotFoundError("arecord"))
        listener = _listener(wake_endpoint, mic_config, mic=mic)

        with pytest.raises(ListenerError, match="microphone"):
            await listener.listen(AsyncMock())
        assert mic.stopped == 0

    async def test_no_wake_models(self, wake_endpoint, mic_config):
        listener = WakeWordListener(endpoint=wake_endpoint, wake_models=[], mic=ScriptedMic(), mic_config=mic_config)
        with pytest.raises(ListenerError):
            await listener.listen(AsyncMock())
