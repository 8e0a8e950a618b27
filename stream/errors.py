"""Stream error taxonomy

- Transport (StreamStalledError, StreamInterruptedError, httpx.HTTPError):
  retried with backoff up to the attempt budget
- Protocol (FrameDecodeError): logged and skipped, the stream continues
- Session-fatal (FatalStreamError): immediate halt regardless of budget
"""


class StreamError(Exception):
    """Base class for stream failures raised by this package."""


class StreamStalledError(StreamError):
    """No event arrived within the heartbeat timeout."""


class StreamInterruptedError(StreamError):
    """The server closed the stream before the run finished."""


class FatalStreamError(StreamError):
    """The server sent a non-recoverable error event."""


class FrameDecodeError(StreamError):
    """A frame could not be decoded into an event."""

    def __init__(self, message: str, line: str):
        super().__init__(message)
        self.line = line
