#!/usr/bin/env python3
"""LOKI voice assistant daemon."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from dotenv import load_dotenv

from loki.assistant.audio import MicrophoneStream, PlaybackSink
from loki.assistant.capture import PhraseRecorder
from loki.assistant.config import AssistantConfig
from loki.assistant.llm import LLMClient
from loki.assistant.pipeline_orchestrator import Orchestrator
from loki.assistant.wake_detector import WakeWordListener
from loki.assistant.wyoming import Speaker, Transcriber

LOGGER = logging.getLogger("loki-assistant")


def build_orchestrator(config: AssistantConfig) -> Orchestrator:
    mic = MicrophoneStream(config.mic.command, config.mic.bytes_per_chunk, LOGGER)
    listener = WakeWordListener(
        endpoint=config.wake_endpoint,
        wake_models=config.wake_models,
        mic=mic,
        mic_config=config.mic,
    )
    transcriber = Transcriber(
        PhraseRecorder(mic, config.mic, config.phrase),
        endpoint=config.stt_endpoint,
        mic=config.mic,
        language=config.language,
        timeout=config.stt_timeout,
    )
    llm = LLMClient.from_config(config.llm)
    speaker = None
    if config.speech is not None:
        speaker = Speaker(
            PlaybackSink(config.speech.player, LOGGER),
            endpoint=config.speech.endpoint,
            voice=config.speech.voice,
            timeout=config.speech.timeout,
        )
    return Orchestrator(
        listener=listener,
        transcriber=transcriber,
        llm=llm,
        speaker=speaker,
        restart_delay=config.restart_delay,
        log_transcripts=config.log_transcripts,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--env-file", default=".env", help="dotenv file to load before reading the environment")
    return parser.parse_args(argv)


async def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    load_dotenv(args.env_file, override=False)

    config = AssistantConfig.from_env()
    LOGGER.info(
        "Using model %s at %s (wake words: %s)",
        config.llm.model,
        config.llm.base_url,
        ", ".join(config.wake_models),
    )
    orchestrator = build_orchestrator(config)
    await orchestrator.run()
    return 0


def run(argv: Sequence[str] | None = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        # Ctrl-C before the shutdown handlers are installed
        return 0


if __name__ == "__main__":
    sys.exit(run())
