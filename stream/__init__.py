"""Reconnecting consumer of the intelligence event stream

This package provides:
- StreamConnection: long-lived POST /start reader with backoff and heartbeat
- SSEFrameDecoder / decode_frame: incremental `data:` line framing
- StreamConfig / configure_stream: endpoint, retry and timeout settings
- The stream error taxonomy
"""

from .backoff import JITTER, base_delay, reconnect_delay
from .config import StreamConfig, configure_stream
from .connection import ConnectionState, StreamConnection
from .errors import (
    FatalStreamError,
    FrameDecodeError,
    StreamError,
    StreamInterruptedError,
    StreamStalledError,
)
from .framing import SSEFrameDecoder, decode_frame

__all__ = [
    # Connection
    "ConnectionState",
    "StreamConnection",
    # Config
    "StreamConfig",
    "configure_stream",
    # Framing
    "SSEFrameDecoder",
    "decode_frame",
    # Backoff
    "JITTER",
    "base_delay",
    "reconnect_delay",
    # Errors
    "FatalStreamError",
    "FrameDecodeError",
    "StreamError",
    "StreamInterruptedError",
    "StreamStalledError",
]
