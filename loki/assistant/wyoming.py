"""Speech-to-text and text-to-speech over the Wyoming protocol."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

from wyoming.asr import Transcribe, Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.event import Event
from wyoming.tts import Synthesize, SynthesizeVoice

from loki.utils import chunk_bytes, pcm_duration_ms, with_timeout

if TYPE_CHECKING:
    from loki.assistant.audio import PlaybackSink
    from loki.assistant.capture import PhraseRecorder
    from loki.assistant.config import MicConfig, WyomingEndpoint

LOGGER = logging.getLogger("loki-assistant.stt")
TTS_LOGGER = logging.getLogger("loki-assistant.tts")


class TranscriptionError(RuntimeError):
    """Raised when a spoken command could not be turned into text."""


class SpeechError(RuntimeError):
    """Raised when a reply could not be synthesized or played."""


def _transcribe_events(
    audio: bytes, *, mic: MicConfig, model: str | None, language: str | None
) -> Iterator[Event]:
    yield Transcribe(name=model, language=language).event()
    yield AudioStart(rate=mic.rate, width=mic.width, channels=mic.channels, timestamp=0).event()
    sent = 0
    for chunk in chunk_bytes(audio, mic.bytes_per_chunk):
        yield AudioChunk(
            rate=mic.rate,
            width=mic.width,
            channels=mic.channels,
            audio=chunk,
            timestamp=pcm_duration_ms(sent, rate=mic.rate, width=mic.width, channels=mic.channels),
        ).event()
        sent += len(chunk)
    yield AudioStop(timestamp=pcm_duration_ms(sent, rate=mic.rate, width=mic.width, channels=mic.channels)).event()


async def transcribe_audio(
    audio: bytes,
    *,
    endpoint: WyomingEndpoint,
    mic: MicConfig,
    language: str | None = None,
    timeout: float | None = None,
) -> str:
    """Run one Wyoming ASR request and return the transcript text as sent.

    Every failure surfaces as :class:`TranscriptionError`: an unreachable or
    slow service, and a service that hangs up before sending a ``Transcript``.
    ``timeout`` applies to each read and write separately.
    """
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    connected = False
    try:
        await with_timeout(client.connect(), timeout)
        connected = True
        for event in _transcribe_events(audio, mic=mic, model=endpoint.model, language=language):
            await with_timeout(client.write_event(event), timeout)
        while True:
            event = await with_timeout(client.read_event(), timeout)
            if event is None:
                raise TranscriptionError(
                    f"STT service {endpoint.address} closed the connection without a transcript"
                )
            if Transcript.is_type(event.type):
                return Transcript.from_event(event).text
    except TimeoutError as exc:
        raise TranscriptionError(f"STT service {endpoint.address} timed out") from exc
    except OSError as exc:
        raise TranscriptionError(f"STT service {endpoint.address} unavailable: {exc}") from exc
    finally:
        if connected:
            await client.disconnect()


class Transcriber:
    """Record the command that follows a wake word and transcribe it."""

    def __init__(
        self,
        recorder: PhraseRecorder,
        *,
        endpoint: WyomingEndpoint,
        mic: MicConfig,
        language: str | None = None,
        timeout: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.recorder = recorder
        self.endpoint = endpoint
        self.mic = mic
        self.language = language
        self.timeout = timeout
        self._logger = logger or LOGGER

    async def transcribe(self) -> str:
        try:
            audio = await self.recorder.record_phrase()
        except RuntimeError as exc:
            raise TranscriptionError(f"Audio capture failed: {exc}") from exc
        if not audio:
            raise TranscriptionError("No speech captured")
        self._logger.debug("Sending %d bytes to %s", len(audio), self.endpoint.address)
        text = await transcribe_audio(
            audio,
            endpoint=self.endpoint,
            mic=self.mic,
            language=self.language,
            timeout=self.timeout,
        )
        text = text.strip()
        if not text:
            raise TranscriptionError("Transcript was empty")
        return text


async def synthesize_to_sink(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    sink: PlaybackSink,
    voice: str | None = None,
    timeout: float | None = None,
) -> int:
    """Stream Wyoming TTS audio for ``text`` into ``sink`` and return the chunk count.

    Playback starts on ``AudioStart`` and ends on ``AudioStop``. A service that
    hangs up before sending any audio raises :class:`SpeechError`.
    """
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await with_timeout(client.connect(), timeout)
    playing = False
    chunks = 0
    try:
        synthesize_voice = SynthesizeVoice(name=voice) if voice else None
        await with_timeout(client.write_event(Synthesize(text=text, voice=synthesize_voice).event()), timeout)
        while True:
            event = await with_timeout(client.read_event(), timeout)
            if event is None:
                if not playing:
                    raise SpeechError(f"TTS service {endpoint.address} closed the connection without audio")
                break
            if AudioStart.is_type(event.type):
                start = AudioStart.from_event(event)
                await sink.start(start.rate, start.width, start.channels)
                playing = True
            elif AudioChunk.is_type(event.type):
                chunk = AudioChunk.from_event(event)
                if not playing:
                    await sink.start(chunk.rate, chunk.width, chunk.channels)
                    playing = True
                await sink.write(chunk.audio)
                chunks += 1
            elif AudioStop.is_type(event.type):
                break
        return chunks
    finally:
        if playing:
            await sink.stop()
        await client.disconnect()


class Speaker:
    """Speak replies through a Wyoming TTS service (Piper) and a local player."""

    def __init__(
        self,
        sink: PlaybackSink,
        *,
        endpoint: WyomingEndpoint,
        voice: str | None = None,
        timeout: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.sink = sink
        self.endpoint = endpoint
        self.voice = voice
        self.timeout = timeout
        self._logger = logger or TTS_LOGGER

    async def speak(self, text: str) -> None:
        if not text.strip():
            return
        try:
            chunks = await synthesize_to_sink(
                text,
                endpoint=self.endpoint,
                sink=self.sink,
                voice=self.voice,
                timeout=self.timeout,
            )
        except SpeechError:
            raise
        except TimeoutError as exc:
            raise SpeechError(f"TTS service {self.endpoint.address} timed out") from exc
        except OSError as exc:
            raise SpeechError(f"TTS service {self.endpoint.address} unavailable: {exc}") from exc
        except RuntimeError as exc:
            raise SpeechError(f"Playback failed: {exc}") from exc
        self._logger.debug("Played %d TTS chunk(s)", chunks)
