"""Stream connection configuration

Reconnect, heartbeat, and endpoint settings for the intelligence stream.
"""

from dataclasses import dataclass


@dataclass
class StreamConfig:
    """Configuration for the stream connection manager and side calls.

    Attributes:
        base_url: Endpoint prefix; /start, /cancel/{id}, /deep-dive and
            /feedback are resolved against it
        max_reconnect_attempts: Failures tolerated before the terminal error state
        initial_reconnect_delay: Backoff base in seconds
        max_reconnect_delay: Backoff cap in seconds
        heartbeat_timeout: Longest silence between events before the stream
            is treated as stalled, in seconds
        connect_timeout: TCP connect timeout in seconds
        request_timeout: Timeout for non-streaming side calls in seconds
        debug: Log every event and state transition
    """

    base_url: str = "http://localhost:8000/api/city-intelligence"
    max_reconnect_attempts: int = 5
    initial_reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    heartbeat_timeout: float = 60.0
    connect_timeout: float = 10.0
    request_timeout: float = 30.0
    debug: bool = False

    def url(self, path: str) -> str:
        """Join an endpoint path onto base_url."""
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


def configure_stream(
    base_url: str = "http://localhost:8000/api/city-intelligence",
    max_reconnect_attempts: int = 5,
    initial_reconnect_delay: float = 1.0,
    max_reconnect_delay: float = 30.0,
    heartbeat_timeout: float = 60.0,
    connect_timeout: float = 10.0,
    request_timeout: float = 30.0,
    debug: bool = False,
    **kwargs,
) -> StreamConfig:
    """Build a StreamConfig, validating the numeric settings.

    Args:
        base_url: Endpoint prefix (default: local replay server)
        max_reconnect_attempts: Failures tolerated before giving up (default: 5)
        initial_reconnect_delay: Backoff base in seconds (default: 1.0)
        max_reconnect_delay: Backoff cap in seconds (default: 30.0)
        heartbeat_timeout: Max silence in seconds (default: 60.0)
        connect_timeout: Connect timeout in seconds (default: 10.0)
        request_timeout: Side-call timeout in seconds (default: 30.0)
        debug: Verbose logging (default: False)
        **kwargs: Additional parameters (ignored for forward compatibility)

    Returns:
        StreamConfig: Validated configuration object

    Raises:
        ValueError: a delay, timeout or attempt count is out of range

    Examples:
        # Local replay server
        config = configure_stream()

        # Production backend with a shorter stall window
        config = configure_stream(
            base_url="https://api.example.com/api/city-intelligence",
            heartbeat_timeout=20.0,
        )
    """
    if max_reconnect_attempts < 0:
        raise ValueError("max_reconnect_attempts must be >= 0")
    if initial_reconnect_delay < 0 or max_reconnect_delay < 0:
        raise ValueError("reconnect delays must be >= 0")
    if max_reconnect_delay < initial_reconnect_delay:
        raise ValueError("max_reconnect_delay must be >= initial_reconnect_delay")
    if heartbeat_timeout <= 0 or connect_timeout <= 0 or request_timeout <= 0:
        raise ValueError("timeouts must be > 0")

    return StreamConfig(
        base_url=base_url,
        max_reconnect_attempts=max_reconnect_attempts,
        initial_reconnect_delay=initial_reconnect_delay,
        max_reconnect_delay=max_reconnect_delay,
        heartbeat_timeout=heartbeat_timeout,
        connect_timeout=connect_timeout,
        request_timeout=request_timeout,
        debug=debug,
    )
