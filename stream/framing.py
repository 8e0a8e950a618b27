"""Line-oriented SSE framing

The stream is chunked at arbitrary byte boundaries, so a frame (and even a
multi-byte UTF-8 character) can be split across chunks. SSEFrameDecoder
buffers until a newline and yields the payload of each complete `data:` line.

A decoder instance belongs to exactly one HTTP response; a reconnect creates
a fresh decoder so a partial line from a dropped response never leaks into
the next one.
"""

import codecs
import json

from pydantic import ValidationError

from intelligence import BaseEvent, parse_event

from .errors import FrameDecodeError

DATA_PREFIX = "data:"


class SSEFrameDecoder:
    """Incremental bytes -> `data:` payload decoder."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Consume a chunk and return the payloads of every completed data line."""
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()  # keep the incomplete tail
        return [payload for line in lines if (payload := _data_payload(line)) is not None]

    def flush(self) -> list[str]:
        """Return the trailing unterminated line at a clean end of stream."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        payload = _data_payload(tail)
        return [payload] if payload is not None else []

    @property
    def pending(self) -> str:
        """Undelivered partial line (for diagnostics)."""
        return self._buffer


def _data_payload(line: str) -> str | None:
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None  # blank separators, comments, event:/id: fields
    payload = line[len(DATA_PREFIX):]
    return payload[1:] if payload.startswith(" ") else payload


def decode_frame(payload: str) -> BaseEvent:
    """Parse one data payload into a typed event.

    Raises:
        FrameDecodeError: invalid JSON or an invalid shape for a known event type
    """
    try:
        return parse_event(json.loads(payload))
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Frame is not valid JSON: {e.msg}", payload) from e
    except (ValidationError, ValueError) as e:
        raise FrameDecodeError(f"Frame is not a valid event: {e}", payload) from e
