"""Microphone capture and speaker playback through ALSA command-line tools."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import struct
from asyncio.subprocess import Process

STOP_TIMEOUT = 2.0
# aplay may still hold a pipe buffer of audio when stdin closes
DRAIN_TIMEOUT = 10.0

_STRUCT_FORMATS = {1: "<b", 2: "<h", 4: "<i"}
_ALSA_FORMATS = {1: "U8", 2: "S16_LE", 3: "S24_LE", 4: "S32_LE"}


def compute_rms(chunk: bytes, sample_width: int) -> int:
    """Root mean square of little-endian signed PCM; 0 for empty or unusable input."""
    if sample_width <= 0:
        return 0
    usable = len(chunk) - len(chunk) % sample_width
    if usable == 0:
        return 0
    fmt = _STRUCT_FORMATS.get(sample_width)
    if fmt:
        samples = [value for (value,) in struct.iter_unpack(fmt, chunk[:usable])]
    else:
        samples = [
            int.from_bytes(chunk[offset : offset + sample_width], "little", signed=True)
            for offset in range(0, usable, sample_width)
        ]
    energy = sum(sample * sample for sample in samples)
    return int(math.sqrt(energy / len(samples)))


def playback_command(binary: str, rate: int, width: int, channels: int) -> list[str]:
    return [
        binary,
        "-q",
        "-t",
        "raw",
        "-f",
        _ALSA_FORMATS.get(width, "S16_LE"),
        "-c",
        str(channels),
        "-r",
        str(rate),
        "-",
    ]


async def _finish_process(proc: Process, timeout: float = STOP_TIMEOUT) -> None:
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


async def _stderr_tail(proc: Process) -> str:
    if proc.stderr is None:
        return ""
    try:
        data = await asyncio.wait_for(proc.stderr.read(), timeout=0.5)
    except TimeoutError:
        return ""
    return data.decode("utf-8", errors="ignore").strip()


class MicrophoneStream:
    """Raw PCM from a capture command's stdout, handed out in fixed-size chunks.

    Wake detection and phrase capture share one stream. ``start`` and ``stop``
    may be called any number of times; a stopped stream can be started again.
    """

    def __init__(
        self,
        command: list[str],
        bytes_per_chunk: int,
        logger: logging.Logger | None = None,
    ) -> None:
        self.command = command
        self.bytes_per_chunk = bytes_per_chunk
        self.chunks_read = 0
        self._proc: Process | None = None
        self._logger = logger or logging.getLogger(__name__)

    @property
    def running(self) -> bool:
        return self._proc is not None

    async def start(self) -> None:
        if self._proc is not None:
            return
        self._logger.debug("Starting microphone capture: %s", " ".join(self.command))
        self._proc = await asyncio.create_subprocess_exec(
            *self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self.chunks_read = 0

    async def read_chunk(self) -> bytes:
        proc = self._proc
        if proc is None or proc.stdout is None:
            raise RuntimeError("Microphone stream is not running")
        try:
            chunk = await proc.stdout.readexactly(self.bytes_per_chunk)
        except asyncio.IncompleteReadError as exc:
            detail = await _stderr_tail(proc)
            message = f"Microphone stream ended unexpectedly after {self.chunks_read} chunk(s)"
            raise RuntimeError(f"{message} ({detail})" if detail else message) from exc
        self.chunks_read += 1
        return chunk

    async def stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        self._logger.debug("Stopping microphone capture after %d chunk(s)", self.chunks_read)
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
        await _finish_process(proc)


class PlaybackSink:
    """Pipe raw PCM into ``aplay``; one player process per utterance."""

    def __init__(self, binary: str = "aplay", logger: logging.Logger | None = None) -> None:
        self.binary = binary
        self._proc: Process | None = None
        self._logger = logger or logging.getLogger(__name__)

    @property
    def active(self) -> bool:
        return self._proc is not None

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        command = playback_command(self.binary, rate, width, channels)
        self._logger.debug("Starting playback: %s", " ".join(command))
        self._proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

    async def write(self, chunk: bytes) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise RuntimeError("Playback is not active")
        try:
            proc.stdin.write(chunk)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            detail = await _stderr_tail(proc)
            await self.stop()
            message = "Playback process exited unexpectedly"
            raise RuntimeError(f"{message} ({detail})" if detail else message) from exc

    async def stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.stdin is not None:
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        await _finish_process(proc, DRAIN_TIMEOUT)
