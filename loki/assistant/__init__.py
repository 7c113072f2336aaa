"""
Voice assistant pipeline for LOKI

- Wake word detection: openWakeWord over the Wyoming protocol
- Speech recognition: faster-whisper over the Wyoming protocol
- LLM processing: single-turn prompts to an Ollama-compatible backend
- Spoken replies: optional Piper TTS over the Wyoming protocol
- Orchestration: restart-on-failure detection loop with signal-driven shutdown

Key modules:
- config: Configuration management from environment variables
- audio: Microphone capture, playback and RMS helpers
- capture: Phrase recording after a wake word
- wake_detector: Wake word listener
- wyoming: Speech-to-text, the transcriber and the speaker
- llm: LLM client
- pipeline_orchestrator: Detection loop and per-wake pipeline
"""

from __future__ import annotations

__all__ = [
    "config",
    "audio",
    "capture",
    "wake_detector",
    "wyoming",
    "llm",
    "pipeline_orchestrator",
]
