"""Stream connection manager for the intelligence stream

Owns one long-lived POST /start response at a time and turns it into an
ordered sequence of typed events:

    idle -> connecting -> connected <-> reconnecting -> closed | error

- connecting -> connected happens on the first event, not on HTTP 200
- every event re-asserts connected, resets the attempt counter and the
  heartbeat deadline
- transport failures, stalls and premature end-of-stream schedule a
  jittered exponential backoff until max_reconnect_attempts is exceeded
- a non-recoverable `error` event is terminal regardless of the budget
- so is an exception raised by the on_event callback

Reconnects reuse the last request payload with the server-assigned sessionId
filled in, so a resuming server can continue the run where it stopped.

Usage:
    connection = StreamConnection(config, on_event=handle_event)
    connection.start(request)      # returns immediately
    await connection.wait()        # optional: block until closed/error
"""

import asyncio
import inspect
import random
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx
import structlog

from intelligence import (
    AllCompleteEvent,
    BaseEvent,
    ConnectedEvent,
    ConnectionStatus,
    ErrorEvent,
    StartIntelligenceRequest,
    utcnow,
)

from .backoff import reconnect_delay
from .config import StreamConfig
from .errors import FatalStreamError, FrameDecodeError, StreamInterruptedError, StreamStalledError
from .framing import SSEFrameDecoder, decode_frame

logger = structlog.get_logger(__name__)

EventHandler = Callable[[BaseEvent], Awaitable[None] | None]


@dataclass(frozen=True)
class ConnectionState:
    """Observable state of a StreamConnection."""

    status: ConnectionStatus = ConnectionStatus.IDLE
    error: str | None = None
    reconnect_attempts: int = 0
    last_event_time: datetime | None = None


# Failures that are retried with backoff
RETRYABLE_ERRORS = (httpx.HTTPError, StreamStalledError, StreamInterruptedError)


class StreamConnection:
    """Reconnecting consumer of the POST /start event stream.

    Args:
        config: Endpoint, backoff and heartbeat settings
        on_event: Called once per decoded event, in arrival order; may be async
        on_status: Called with the new ConnectionState after every change
        on_failure: Called once with the final message when the retry budget
            is exhausted or on_event raises
        http_client: Shared httpx.AsyncClient; one is created (and owned)
            when omitted
        sleep: Backoff sleep, injectable for tests
        rng: Jitter source returning floats in [0, 1)
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        on_event: EventHandler | None = None,
        *,
        on_status: Callable[[ConnectionState], None] | None = None,
        on_failure: Callable[[str], None] | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config or StreamConfig()
        self._on_event = on_event
        self._on_status = on_status
        self._on_failure = on_failure
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep
        self._rng = rng

        self._state = ConnectionState()
        self._task: asyncio.Task | None = None
        self._payload: dict[str, Any] | None = None
        self._session_id: str | None = None
        self._cancelled = False
        self._heartbeat_deadline = 0.0
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, request: StartIntelligenceRequest | dict[str, Any]) -> asyncio.Task:
        """Open the stream in a background task and return that task.

        Any previous stream is aborted first. Must be called from a running
        event loop.
        """
        payload = request.to_payload() if isinstance(request, StartIntelligenceRequest) else dict(request)

        self._abort_task()
        self._payload = payload
        self._session_id = payload.get("sessionId")
        self._cancelled = False
        self._set_state(
            status=ConnectionStatus.CONNECTING,
            error=None,
            reconnect_attempts=0,
        )

        logger.info("stream.starting", url=self.config.url("start"), cities=len(payload.get("cities", [])))
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def cancel(self) -> None:
        """Abort the stream and tell the server, without waiting for it.

        The POST /cancel/{sessionId} notification runs in the background and
        its failures are only logged.
        """
        session_id = self._session_id
        logger.info("stream.cancelling", session_id=session_id)
        self._teardown()

        if session_id:
            try:
                task = asyncio.get_running_loop().create_task(self._notify_cancel(session_id))
            except RuntimeError:
                logger.warning("stream.cancel_notify_skipped", session_id=session_id, reason="no running event loop")
                return
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    def close(self) -> None:
        """Abort the stream without notifying the server."""
        logger.info("stream.closing")
        self._teardown()

    def reconnect(self) -> asyncio.Task | None:
        """Restart the stream with the retained request and a fresh attempt budget."""
        if self._payload is None:
            logger.warning("stream.reconnect_skipped", reason="no retained request")
            return None

        logger.info("stream.manual_reconnect", session_id=self._session_id)
        self._abort_task()
        self._cancelled = False
        self._set_state(status=ConnectionStatus.CONNECTING, error=None, reconnect_attempts=0)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def wait(self) -> None:
        """Block until the current read loop finishes (closed, error or cancelled)."""
        while self._task is not None and not self._task.done():
            task = self._task
            await asyncio.wait({task})
            if task is self._task:
                break

        task = self._task
        if task is not None and task.done() and not task.cancelled() and task.exception() is not None:
            raise task.exception()

    async def aclose(self) -> None:
        """Close the stream, flush background notifications and release the client."""
        self.close()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Read loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while not self._cancelled:
            try:
                finished = await self._stream_once()
            except FatalStreamError as e:
                self._set_state(status=ConnectionStatus.ERROR, error=str(e))
                logger.error("stream.fatal_error", error=str(e), session_id=self._session_id)
                return
            except RETRYABLE_ERRORS as e:
                if self._cancelled:
                    return
                delay = self._register_failure(e)
                if delay is None:
                    return
                # Cancellation is re-checked before committing to the backoff sleep
                if self._cancelled:
                    return
                await self._sleep(delay)
                continue
            except Exception as e:
                # on_event raised: terminal, like a fatal error event
                message = f"Event handler failed: {_describe(e)}"
                self._set_state(status=ConnectionStatus.ERROR, error=message)
                logger.exception("stream.handler_failed", session_id=self._session_id)
                if self._on_failure is not None:
                    self._on_failure(message)
                return

            if finished and not self._cancelled:
                self._set_state(status=ConnectionStatus.CLOSED)
                logger.info("stream.completed", session_id=self._session_id)
            return

    async def _stream_once(self) -> bool:
        """Consume one HTTP response.

        Returns True when all_complete was received, False when cancelled.

        Raises:
            StreamStalledError: heartbeat timeout elapsed between events
            StreamInterruptedError: response ended before all_complete
            FatalStreamError: non-recoverable error event
            httpx.HTTPError: connect/read failure or non-2xx status
        """
        payload = dict(self._payload or {})
        if self._session_id:
            payload["sessionId"] = self._session_id

        client = self._ensure_client()
        decoder = SSEFrameDecoder()  # fresh per response, no partial-frame carry-over

        timeout = httpx.Timeout(
            connect=self.config.connect_timeout,
            read=None,  # staleness is governed by the heartbeat deadline
            write=self.config.connect_timeout,
            pool=self.config.connect_timeout,
        )

        async with client.stream("POST", self.config.url("start"), json=payload, timeout=timeout) as response:
            response.raise_for_status()
            self._reset_heartbeat()
            chunks = response.aiter_bytes().__aiter__()

            while not self._cancelled:
                try:
                    chunk = await asyncio.wait_for(chunks.__anext__(), timeout=self._heartbeat_remaining())
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    raise StreamStalledError(
                        f"No events received for {self.config.heartbeat_timeout}s"
                    ) from None

                for data in decoder.feed(chunk):
                    if await self._dispatch(data):
                        return True

            if self._cancelled:
                return False

            for data in decoder.flush():
                if await self._dispatch(data):
                    return True

        if self._cancelled:
            return False
        raise StreamInterruptedError("Stream ended before all_complete")

    async def _dispatch(self, data: str) -> bool:
        """Decode and forward one frame. Returns True on all_complete."""
        try:
            event = decode_frame(data)
        except FrameDecodeError as e:
            logger.warning("stream.frame_skipped", error=str(e), line=e.line[:200])
            return False

        if self.config.debug:
            logger.debug("stream.event", type=event.type)

        self._reset_heartbeat()
        self._set_state(
            status=ConnectionStatus.CONNECTED,
            error=None,
            reconnect_attempts=0,
            last_event_time=utcnow(),
        )

        if isinstance(event, ConnectedEvent):
            self._session_id = event.session_id

        if self._on_event is not None:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result

        if isinstance(event, AllCompleteEvent):
            return True
        if isinstance(event, ErrorEvent) and not event.recoverable:
            raise FatalStreamError(event.error)
        return False

    def _register_failure(self, exc: Exception) -> float | None:
        """Count a failure; return the backoff delay, or None when the budget is spent."""
        attempts = self._state.reconnect_attempts + 1
        message = _describe(exc)

        if attempts <= self.config.max_reconnect_attempts:
            delay = reconnect_delay(
                attempts,
                self.config.initial_reconnect_delay,
                self.config.max_reconnect_delay,
                rng=self._rng,
            )
            self._set_state(
                status=ConnectionStatus.RECONNECTING,
                error=message,
                reconnect_attempts=attempts,
            )
            logger.warning("stream.reconnect_scheduled", attempt=attempts, delay=round(delay, 3), error=message)
            return delay

        final = f"Connection failed after {attempts} attempts: {message}"
        self._set_state(status=ConnectionStatus.ERROR, error=final, reconnect_attempts=attempts)
        logger.error("stream.gave_up", attempts=attempts, error=message)
        if self._on_failure is not None:
            self._on_failure(final)
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _notify_cancel(self, session_id: str) -> None:
        try:
            client = self._ensure_client()
            response = await client.post(
                self.config.url(f"cancel/{session_id}"),
                timeout=self.config.request_timeout,
            )
            response.raise_for_status()
            logger.info("stream.cancel_notified", session_id=session_id)
        except httpx.HTTPError as e:
            logger.warning("stream.cancel_notify_failed", session_id=session_id, error=str(e))

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
            self._owns_client = True
        return self._client

    def _abort_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _teardown(self) -> None:
        self._cancelled = True
        self._abort_task()
        self._payload = None
        self._state = ConnectionState(status=ConnectionStatus.CLOSED)
        self._emit_status()

    def _reset_heartbeat(self) -> None:
        self._heartbeat_deadline = asyncio.get_running_loop().time() + self.config.heartbeat_timeout

    def _heartbeat_remaining(self) -> float:
        return max(0.0, self._heartbeat_deadline - asyncio.get_running_loop().time())

    def _set_state(self, **changes: Any) -> None:
        previous = self._state.status
        self._state = replace(self._state, **changes)
        if self._state.status != previous:
            logger.info(
                "stream.status",
                previous=ConnectionStatus(previous).value,
                status=ConnectionStatus(self._state.status).value,
                attempts=self._state.reconnect_attempts,
            )
        self._emit_status()

    def _emit_status(self) -> None:
        if self._on_status is not None:
            self._on_status(self._state)


def _describe(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP error: {exc.response.status_code}"
    return str(exc) or type(exc).__name__
