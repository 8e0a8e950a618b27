"""Shared pytest fixtures: scripted SSE responses and a recording sleep."""

import asyncio

import httpx
import pytest

from intelligence import BaseEvent, encode_frame


class ScriptedStream(httpx.AsyncByteStream):
    """Response body that yields fixed chunks, then ends, fails or hangs."""

    def __init__(self, chunks: list[bytes], *, fail_with: Exception | None = None, hang: bool = False):
        self.chunks = chunks
        self.fail_with = fail_with
        self.hang = hang

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
            await asyncio.sleep(0)
        if self.hang:
            await asyncio.sleep(3600)
        if self.fail_with is not None:
            raise self.fail_with


@pytest.fixture
def sse_response():
    """Factory for a streaming 200 response carrying the given events.

    raw: extra byte chunks appended after the events (e.g. malformed frames)
    fail_with: exception raised after the last chunk (simulated drop)
    hang: never end after the last chunk (simulated stall)
    """

    def make(
        events: list[BaseEvent] = (),
        *,
        raw: list[bytes] = (),
        fail_with: Exception | None = None,
        hang: bool = False,
        status_code: int = 200,
    ) -> httpx.Response:
        chunks = [encode_frame(e).encode("utf-8") for e in events] + list(raw)
        return httpx.Response(
            status_code,
            headers={"content-type": "text/event-stream"},
            stream=ScriptedStream(chunks, fail_with=fail_with, hang=hang),
        )

    return make


@pytest.fixture
def recorded_sleep():
    """Backoff sleep that returns immediately and records requested delays."""
    delays: list[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    sleep.delays = delays
    return sleep
