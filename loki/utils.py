"""Async deadline and raw PCM helpers used across the assistant."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterator
from typing import TypeVar

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], seconds: float | None) -> T:
    """Await ``awaitable`` and raise ``TimeoutError`` after ``seconds``; ``None`` means no limit."""
    if seconds is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, seconds)


def chunk_bytes(data: bytes, size: int) -> Iterator[bytes]:
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    for offset in range(0, len(data), size):
        yield data[offset : offset + size]


def pcm_duration_ms(num_bytes: int, *, rate: int, width: int, channels: int) -> int:
    """Milliseconds of audio held in ``num_bytes`` of interleaved PCM."""
    bytes_per_second = rate * width * channels
    if bytes_per_second <= 0:
        return 0
    return num_bytes * 1000 // bytes_per_second
