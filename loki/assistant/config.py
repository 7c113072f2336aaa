"""Configuration helpers for the LOKI voice assistant."""

from __future__ import annotations

import os
import shlex
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TypeVar

N = TypeVar("N", int, float)

DEFAULT_WAKE_MODEL = "hey_jarvis"
DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "dolphin-phi"
DEFAULT_LLM_TIMEOUT = 5.0
DEFAULT_MIC_COMMAND = "arecord -q -t raw -f S16_LE -c 1 -r 16000 -"
DEFAULT_AUDIO_PLAYER = "aplay"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


class EnvReader:
    """Typed lookups over an environment mapping.

    Blank values count as unset, and values that fail to parse fall back to
    the default instead of raising.
    """

    def __init__(self, source: Mapping[str, str]) -> None:
        self._source = source

    def text(self, name: str, default: str | None = None) -> str | None:
        value = self._source.get(name)
        if value is None or not value.strip():
            return default
        return value.strip()

    def number(self, name: str, default: N, cast: Callable[[str], N]) -> N:
        raw = self.text(name)
        if raw is None:
            return default
        try:
            return cast(raw)
        except ValueError:
            return default

    def integer(self, name: str, default: int) -> int:
        return self.number(name, default, int)

    def seconds(self, name: str, default: float) -> float:
        return self.number(name, default, float)

    def flag(self, name: str, default: bool = False) -> bool:
        raw = self.text(name)
        if raw is None:
            return default
        return raw.lower() in _TRUTHY

    def words(self, name: str) -> list[str]:
        raw = self.text(name) or ""
        return [word.strip() for word in raw.split(",") if word.strip()]


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class MicConfig:
    command: list[str]
    rate: int
    width: int
    channels: int
    chunk_ms: int

    @property
    def bytes_per_chunk(self) -> int:
        samples = int(self.rate * (self.chunk_ms / 1000))
        return samples * self.width * self.channels


@dataclass(frozen=True)
class PhraseConfig:
    """Energy gate for command capture.

    ``min_seconds`` rejects phrases that are too short to be a command,
    ``silence_ms`` ends a phrase once speech has been heard, and
    ``no_speech_ms`` gives up when nothing above ``rms_floor`` arrives at all.
    """

    min_seconds: float
    max_seconds: float
    silence_ms: int
    rms_floor: int
    no_speech_ms: int = 3200


@dataclass(frozen=True)
class LLMConfig:
    base_url: str
    model: str
    timeout: float


@dataclass(frozen=True)
class SpeechConfig:
    endpoint: WyomingEndpoint
    voice: str | None
    timeout: float
    player: str


@dataclass(frozen=True)
class AssistantConfig:
    language: str | None
    wake_models: list[str]
    wake_endpoint: WyomingEndpoint
    stt_endpoint: WyomingEndpoint
    stt_timeout: float
    mic: MicConfig
    phrase: PhraseConfig
    llm: LLMConfig
    speech: SpeechConfig | None
    restart_delay: float
    log_transcripts: bool

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> AssistantConfig:
        reader = EnvReader(env if env is not None else os.environ)

        mic = MicConfig(
            command=shlex.split(reader.text("LOKI_MIC_CMD", DEFAULT_MIC_COMMAND) or DEFAULT_MIC_COMMAND),
            rate=reader.integer("LOKI_MIC_RATE", 16000),
            width=reader.integer("LOKI_MIC_WIDTH", 2),
            channels=reader.integer("LOKI_MIC_CHANNELS", 1),
            chunk_ms=max(1, reader.integer("LOKI_MIC_CHUNK_MS", 30)),
        )

        phrase = PhraseConfig(
            min_seconds=max(0, reader.integer("LOKI_MIN_COMMAND_MS", 300)) / 1000,
            max_seconds=reader.seconds("LOKI_MAX_PHRASE_SECONDS", 8.0),
            silence_ms=reader.integer("LOKI_SILENCE_MS", 1200),
            rms_floor=reader.integer("LOKI_RMS_THRESHOLD", 120),
            no_speech_ms=reader.integer("LOKI_NO_SPEECH_MS", 3200),
        )

        timeout = reader.seconds("LOKI_LLM_TIMEOUT_SECONDS", DEFAULT_LLM_TIMEOUT)
        llm = LLMConfig(
            base_url=(reader.text("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST).rstrip("/"),
            model=reader.text("OLLAMA_MODEL") or DEFAULT_OLLAMA_MODEL,
            timeout=timeout if timeout > 0 else DEFAULT_LLM_TIMEOUT,
        )

        return AssistantConfig(
            language=reader.text("LOKI_LANGUAGE"),
            wake_models=reader.words("LOKI_WAKE_WORDS") or [DEFAULT_WAKE_MODEL],
            wake_endpoint=WyomingEndpoint(
                host=reader.text("WYOMING_OPENWAKEWORD_HOST") or "127.0.0.1",
                port=reader.integer("WYOMING_OPENWAKEWORD_PORT", 10400),
            ),
            stt_endpoint=WyomingEndpoint(
                host=reader.text("WYOMING_WHISPER_HOST") or "127.0.0.1",
                port=reader.integer("WYOMING_WHISPER_PORT", 10300),
                model=reader.text("LOKI_STT_MODEL"),
            ),
            stt_timeout=reader.seconds("LOKI_STT_TIMEOUT_SECONDS", 30.0),
            mic=mic,
            phrase=phrase,
            llm=llm,
            speech=_speech_config(reader),
            restart_delay=max(0.0, reader.seconds("LOKI_RESTART_DELAY_SECONDS", 1.0)),
            log_transcripts=reader.flag("LOKI_LOG_TRANSCRIPTS"),
        )


def _speech_config(reader: EnvReader) -> SpeechConfig | None:
    # spoken replies stay off until a TTS host is configured
    host = reader.text("LOKI_TTS_HOST")
    if host is None:
        return None
    return SpeechConfig(
        endpoint=WyomingEndpoint(host=host, port=reader.integer("LOKI_TTS_PORT", 10200)),
        voice=reader.text("LOKI_TTS_VOICE"),
        timeout=reader.seconds("LOKI_TTS_TIMEOUT_SECONDS", 30.0),
        player=reader.text("LOKI_AUDIO_PLAYER") or DEFAULT_AUDIO_PLAYER,
    )
