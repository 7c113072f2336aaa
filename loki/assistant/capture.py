"""Spoken command capture with an RMS energy gate."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loki.assistant.audio import compute_rms
from loki.utils import pcm_duration_ms

if TYPE_CHECKING:
    from loki.assistant.audio import MicrophoneStream
    from loki.assistant.config import MicConfig, PhraseConfig

LOGGER = logging.getLogger("loki-assistant.capture")


@dataclass(frozen=True)
class ChunkBudget:
    """Phrase limits converted from milliseconds into microphone chunks."""

    max_chunks: int
    trailing_silence: int
    no_speech: int

    @classmethod
    def from_config(cls, phrase: PhraseConfig, chunk_ms: int) -> ChunkBudget:
        def chunks(duration_ms: float) -> int:
            return max(1, round(duration_ms / chunk_ms))

        return cls(
            max_chunks=chunks(phrase.max_seconds * 1000),
            trailing_silence=chunks(phrase.silence_ms),
            no_speech=chunks(phrase.no_speech_ms),
        )


class PhraseRecorder:
    """Record the command spoken right after a wake word."""

    def __init__(self, mic: MicrophoneStream, mic_config: MicConfig, phrase: PhraseConfig) -> None:
        self.mic = mic
        self.mic_config = mic_config
        self.phrase = phrase
        self.budget = ChunkBudget.from_config(phrase, mic_config.chunk_ms)

    async def record_phrase(self) -> bytes | None:
        """Return the captured PCM, or ``None`` when no usable command was spoken.

        Before any speech, the phrase is abandoned after ``no_speech_ms`` of quiet.
        Once speech is heard, ``silence_ms`` of quiet ends it. Either way the
        recording stops at ``max_seconds``, and anything shorter than
        ``min_seconds`` is discarded.
        """
        buffer = bytearray()
        heard_speech = False
        quiet_chunks = 0
        for _ in range(self.budget.max_chunks):
            chunk = await self.mic.read_chunk()
            buffer.extend(chunk)
            if compute_rms(chunk, self.mic_config.width) >= self.phrase.rms_floor:
                heard_speech = True
                quiet_chunks = 0
                continue
            quiet_chunks += 1
            if heard_speech and quiet_chunks >= self.budget.trailing_silence:
                break
            if not heard_speech and quiet_chunks >= self.budget.no_speech:
                LOGGER.debug("No speech after %d quiet chunk(s)", quiet_chunks)
                return None

        duration_ms = pcm_duration_ms(
            len(buffer),
            rate=self.mic_config.rate,
            width=self.mic_config.width,
            channels=self.mic_config.channels,
        )
        if not heard_speech:
            LOGGER.debug("Reached the phrase limit (%d ms) without speech", duration_ms)
            return None
        if duration_ms < round(self.phrase.min_seconds * 1000):
            LOGGER.debug("Discarding %d ms phrase; shorter than the command minimum", duration_ms)
            return None
        LOGGER.debug("Captured %d ms of audio", duration_ms)
        return bytes(buffer)
