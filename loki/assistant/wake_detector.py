"""Wake word listening against a Wyoming openWakeWord service."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.wake import Detect, Detection, NotDetected

if TYPE_CHECKING:
    from loki.assistant.audio import MicrophoneStream
    from loki.assistant.config import MicConfig, WyomingEndpoint

LOGGER = logging.getLogger("loki-assistant.wake")

DetectionCallback = Callable[[str], Awaitable[None]]


class ListenerError(RuntimeError):
    """The listening session cannot continue and must be restarted."""


@dataclass
class WakeStream:
    """One detection stream for a single wake model."""

    endpoint: WyomingEndpoint
    model: str

    @property
    def display_label(self) -> str:
        return f"{self.model} ({self.endpoint.address})"


class WakeWordListener:
    """Stream microphone audio to openWakeWord and report detections.

    ``listen`` never returns normally: it runs sessions back to back and only
    exits by raising :class:`ListenerError`. The microphone and every service
    connection are released before the error leaves ``listen``.
    """

    def __init__(
        self,
        *,
        endpoint: WyomingEndpoint,
        wake_models: list[str],
        mic: MicrophoneStream,
        mic_config: MicConfig,
    ) -> None:
        self.endpoint = endpoint
        self.wake_models = list(wake_models)
        self.mic = mic
        self.mic_config = mic_config
        self.sessions = 0

    def _wake_streams(self) -> list[WakeStream]:
        # openWakeWord only loads the first model named in a Detect message
        return [WakeStream(endpoint=self.endpoint, model=model) for model in self.wake_models]

    async def listen(self, on_detect: DetectionCallback) -> None:
        if not self.wake_models:
            raise ListenerError("No wake models configured")
        try:
            await self.mic.start()
        except OSError as exc:
            raise ListenerError(f"Unable to start microphone: {exc}") from exc
        try:
            while True:
                wake_word = await self.run_session()
                if wake_word is None:
                    LOGGER.debug("Wake session ended without detection; starting a new one")
                    continue
                LOGGER.info("Wake word detected: %s", wake_word)
                await on_detect(wake_word)
        finally:
            await self.mic.stop()

    async def run_session(self) -> str | None:
        """Run one detection session; ``None`` means the service gave up cleanly."""
        self.sessions += 1
        streams = self._wake_streams()
        timestamp = 0
        clients: list[AsyncTcpClient] = []
        reader_tasks: dict[asyncio.Task[str | None], WakeStream] = {}
        try:
            for stream in streams:
                client = AsyncTcpClient(stream.endpoint.host, stream.endpoint.port)
                await client.connect()
                clients.append(client)
                await client.write_event(Detect(names=[stream.model]).event())
                await client.write_event(
                    AudioStart(
                        rate=self.mic_config.rate,
                        width=self.mic_config.width,
                        channels=self.mic_config.channels,
                        timestamp=0,
                    ).event()
                )
                task = asyncio.create_task(self._read_wake_events(client, stream))
                reader_tasks[task] = stream
                LOGGER.debug("Started wake detection stream for %s", stream.display_label)
            while reader_tasks:
                chunk = await self.mic.read_chunk()
                chunk_event = AudioChunk(
                    rate=self.mic_config.rate,
                    width=self.mic_config.width,
                    channels=self.mic_config.channels,
                    audio=chunk,
                    timestamp=timestamp,
                ).event()
                for client in clients:
                    await client.write_event(chunk_event)
                timestamp += self.mic_config.chunk_ms
                for task in [task for task in reader_tasks if task.done()]:
                    reader_tasks.pop(task)
                    detection = task.result()
                    if detection:
                        return detection
            return None
        except (OSError, RuntimeError, asyncio.IncompleteReadError) as exc:
            if isinstance(exc, ListenerError):
                raise
            raise ListenerError(f"Wake detection failed: {exc}") from exc
        finally:
            for client in clients:
                with contextlib.suppress(Exception):
                    await client.write_event(AudioStop(timestamp=timestamp).event())
            for task in reader_tasks:
                task.cancel()
            for task in reader_tasks:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
            for client in clients:
                with contextlib.suppress(Exception):
                    await client.disconnect()

    async def _read_wake_events(self, client: AsyncTcpClient, stream: WakeStream) -> str | None:
        while True:
            event = await client.read_event()
            if event is None:
                raise ListenerError(f"Wake service {stream.display_label} closed the connection")
            if Detection.is_type(event.type):
                detection = Detection.from_event(event)
                return detection.name or stream.model
            if NotDetected.is_type(event.type):
                LOGGER.debug("openWakeWord (%s) reported NotDetected", stream.display_label)
                return None
