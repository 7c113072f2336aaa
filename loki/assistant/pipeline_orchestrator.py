"""Detection loop and per-wake pipeline for the LOKI assistant."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import time
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from loki.assistant.llm import LLMError
from loki.assistant.wyoming import SpeechError, TranscriptionError

if TYPE_CHECKING:
    from loki.assistant.llm import LLMClient
    from loki.assistant.wake_detector import WakeWordListener
    from loki.assistant.wyoming import Speaker, Transcriber

LOGGER = logging.getLogger("loki-assistant")

AssistantState = Literal["starting", "listening", "processing", "restarting", "shutting_down"]

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class DetectionCycle:
    """Timings and outcome of one wake-to-reply pass."""

    wake_word: str
    status: str = "error"
    started: float = field(default_factory=time.monotonic)
    timings: dict[str, int] = field(default_factory=dict)

    @contextlib.contextmanager
    def stage(self, name: str) -> Iterator[None]:
        begin = time.monotonic()
        try:
            yield
        finally:
            self.timings[name] = _elapsed_ms(begin)

    def summary(self) -> dict[str, object]:
        return {
            "wake_word": self.wake_word,
            "status": self.status,
            "total_ms": _elapsed_ms(self.started),
            "stages": dict(self.timings),
        }


def _elapsed_ms(since: float) -> int:
    return int((time.monotonic() - since) * 1000)


def extract_reply(response: Mapping[str, Any]) -> str:
    """Pick the text to show for a backend reply.

    Ollama puts the generated text under ``response``; anything else is shown
    as compact JSON so unexpected backends still produce visible output.
    """
    reply = response.get("response")
    if isinstance(reply, str):
        return reply.strip()
    return json.dumps(response, separators=(",", ":"), ensure_ascii=False, default=str)


class Orchestrator:
    """Run the wake listener forever and process each detection in turn.

    Every listener, transcriber and LLM failure is logged and swallowed; the
    only way out of :meth:`run` is a shutdown request (SIGINT/SIGTERM or
    :meth:`request_shutdown`).
    """

    def __init__(
        self,
        *,
        listener: WakeWordListener,
        transcriber: Transcriber,
        llm: LLMClient,
        speaker: Speaker | None = None,
        restart_delay: float = 1.0,
        log_transcripts: bool = False,
        output: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.listener = listener
        self.transcriber = transcriber
        self.llm = llm
        self.speaker = speaker
        self.restart_delay = restart_delay
        self.log_transcripts = log_transcripts
        self.logger = logger or LOGGER
        self._output = output or _print_line
        self._state: AssistantState = "starting"
        self._shutdown = asyncio.Event()
        self._detection_task: asyncio.Task[None] | None = None
        self.restart_count = 0
        self.last_cycle: dict[str, object] | None = None

    @property
    def state(self) -> AssistantState:
        return self._state

    @property
    def detection_task(self) -> asyncio.Task[None] | None:
        return self._detection_task

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def run(self, *, install_signal_handlers: bool = True) -> None:
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        if install_signal_handlers:
            for sig in SHUTDOWN_SIGNALS:
                loop.add_signal_handler(sig, self._handle_signal, sig)
                installed.append(sig)
        self._set_state("starting")
        self._output("LOKI is listening... Say the wake word!")
        self._detection_task = asyncio.create_task(self.detection_loop(), name="loki-detection-loop")
        try:
            await self._shutdown.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
        self._set_state("shutting_down")
        # The detection task is left running; an in-flight cycle is not drained.
        self._output("Exiting LOKI. Goodbye!")

    async def detection_loop(self) -> None:
        while not self._shutdown.is_set():
            self._set_state("listening")
            try:
                await self.listener.listen(self.handle_detection)
            except Exception as exc:  # pylint: disable=broad-except
                self.logger.error("Wake word listener error: %s", exc)
            else:
                self.logger.warning("Wake word listener returned unexpectedly")
            if self._shutdown.is_set():
                break
            self._set_state("restarting")
            self.restart_count += 1
            self.logger.debug("Restarting wake word listener in %.1fs", self.restart_delay)
            await asyncio.sleep(self.restart_delay)

    async def handle_detection(self, wake_word: str = "") -> None:
        """Transcribe, query, display and optionally speak one command.

        A failure at any step ends only this cycle.
        """
        self._set_state("processing")
        cycle = DetectionCycle(wake_word)
        try:
            self._output("Wake word detected!")
            try:
                with cycle.stage("transcribing"):
                    transcription = await self.transcriber.transcribe()
            except TranscriptionError as exc:
                self.logger.error("Error in transcription: %s", exc)
                cycle.status = "transcription_error"
                return
            if self.log_transcripts:
                self.logger.info("Transcript [%s]: %s", wake_word, transcription)
            self._output(f"You said: {transcription}")

            try:
                with cycle.stage("thinking"):
                    response = await self.llm.query(transcription)
            except LLMError as exc:
                self.logger.error("LLM error: %s", exc)
                cycle.status = "llm_error"
                return

            with cycle.stage("displaying"):
                reply = self.display_response(response)

            if self.speaker is not None:
                try:
                    with cycle.stage("speaking"):
                        await self.speaker.speak(reply)
                except SpeechError as exc:
                    self.logger.error("Speech output error: %s", exc)
                    cycle.status = "speech_error"
                    return
            cycle.status = "success"
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.exception("Detection cycle failed for wake word %s: %s", wake_word, exc)
        finally:
            self.last_cycle = cycle.summary()
            self.logger.debug("Detection cycle finished: %s", self.last_cycle)
            if not self._shutdown.is_set():
                self._set_state("listening")

    def display_response(self, response: Mapping[str, Any]) -> str:
        error = response.get("error")
        if error:
            self.logger.warning("LLM backend reported an error: %s", error)
        reply = extract_reply(response)
        self._output(f"LOKI: {reply}")
        return reply

    def _handle_signal(self, signum: int) -> None:
        self.logger.info("Received signal %s, shutting down", signum)
        self.request_shutdown()

    def _set_state(self, state: AssistantState) -> None:
        if state != self._state:
            self.logger.debug("Assistant state: %s -> %s", self._state, state)
        self._state = state


def _print_line(text: str) -> None:
    print(text, flush=True)
