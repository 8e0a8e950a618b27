"""Session client for city intelligence

One IntelligenceClient per session composes the stream connection, the
reducer, the optimistic ledger, the completed-city cache and the
non-streaming side calls. There is no module-level store: callers create
a client, subscribe to state changes, and drop it when done.

Every state change (stream events, optimistic edits, side-call results)
goes through _commit(), on the event loop thread, so listeners always see
a strictly ordered sequence of immutable states.

Usage:
    client = IntelligenceClient(configure_stream(), cache=SQLiteCacheStore())
    await client.hydrate()
    client.start(request)
    await client.wait()
    print(client.progress().overall)
    await client.aclose()
"""

import asyncio
import random
from typing import Any, Awaitable, Callable

import aiosqlite
import httpx
import structlog

from intelligence import (
    AgentExecutionState,
    BaseEvent,
    CityCompleteEvent,
    CityIntelligence,
    DeepDiveRequest,
    DeepDiveResponse,
    DeepDiveTopic,
    FeedbackRating,
    FeedbackRequest,
    IntelligenceError,
    IntelligenceFeedback,
    OrchestratorPhase,
    StartIntelligenceRequest,
)
from stream import ConnectionState, StreamConfig, StreamConnection

from .optimistic import OptimisticLedger
from .persistence import CacheStore, MemoryCacheStore
from .progress import ProgressSummary, city_progress, summarize
from .reducer import reduce
from .state import IntelligenceState, initial_state_for

logger = structlog.get_logger(__name__)

StateListener = Callable[[IntelligenceState], None]


class IntelligenceClient:
    """Owner of one session's aggregate state.

    Args:
        config: Stream and side-call settings
        cache: Completed-city cache (in-memory when omitted)
        http_client: Shared httpx.AsyncClient; one is created (and owned)
            when omitted
        sleep: Backoff sleep passed to the stream connection
        rng: Jitter source passed to the stream connection
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        *,
        cache: CacheStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config or StreamConfig()
        self.cache = cache if cache is not None else MemoryCacheStore()
        self.ledger = OptimisticLedger()

        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._state = IntelligenceState()
        self._listeners: list[StateListener] = []
        self._deep_dives_in_flight = 0

        self.connection = StreamConnection(
            self.config,
            on_event=self._handle_event,
            on_failure=self._handle_failure,
            http_client=self._http,
            sleep=sleep,
            rng=rng,
        )

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> IntelligenceState:
        return self._state

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call `listener` with every committed state; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_city_intelligence(self, city_id: str) -> CityIntelligence | None:
        return self._state.city_intelligence.get(city_id)

    def get_agent_state(self, city_id: str, agent: str) -> AgentExecutionState | None:
        return self._state.agent_states.get(city_id, {}).get(agent)

    def get_deep_dive_responses(self, city_id: str) -> list[DeepDiveResponse]:
        return list(self._state.deep_dive_responses.get(city_id, []))

    def get_feedback(self, city_id: str) -> IntelligenceFeedback | None:
        return self._state.feedback_submitted.get(city_id)

    def progress(self) -> ProgressSummary:
        return summarize(self._state)

    def city_progress(self, city_id: str) -> int:
        return city_progress(self._state.agent_states.get(city_id, {}))

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def hydrate(self) -> IntelligenceState:
        """Load completed cities from the cache into an idle state."""
        cities = await self.cache.load()
        self._commit(
            self._state.model_copy(
                update={
                    "city_intelligence": {**self._state.city_intelligence, **cities},
                    "is_processing": False,
                    "is_connected": False,
                    "overall_progress": 0,
                    "current_phase": None,
                    "errors": [],
                }
            )
        )
        logger.info("client.hydrated", cities=len(cities))
        return self._state

    def start(self, request: StartIntelligenceRequest | dict[str, Any]) -> asyncio.Task:
        """Reset to a processing state for `request` and open the stream.

        Returns the task running the read loop; does not block.
        """
        if not isinstance(request, StartIntelligenceRequest):
            request = StartIntelligenceRequest.model_validate(request)

        self.ledger.clear()
        self._commit(initial_state_for(request))
        logger.info("client.started", cities=[c.id for c in request.cities])
        return self.connection.start(request)

    async def run(self, request: StartIntelligenceRequest | dict[str, Any]) -> IntelligenceState:
        """start() and wait() in one call; returns the final state."""
        self.start(request)
        await self.wait()
        return self._state

    async def wait(self) -> None:
        await self.connection.wait()

    def cancel(self) -> None:
        """Stop the run, notify the server, and reset the session fields.

        City records and agent states already received are kept.
        """
        self.connection.cancel()
        self._commit(
            self._state.model_copy(
                update={
                    "session_id": None,
                    "is_connected": False,
                    "is_processing": False,
                    "current_phase": None,
                }
            )
        )
        logger.info("client.cancelled")

    def reconnect(self) -> asyncio.Task | None:
        """Manually retry the last request with a fresh attempt budget."""
        task = self.connection.reconnect()
        if task is not None and self._state.current_phase != OrchestratorPhase.COMPLETE:
            self._commit(self._state.model_copy(update={"is_processing": True}))
        return task

    def close(self) -> None:
        """Stop the stream without notifying the server."""
        self.connection.close()
        self._commit(self._state.model_copy(update={"is_connected": False, "is_processing": False}))

    def reset(self) -> None:
        """Drop the stream and all session state (the cache is untouched)."""
        self.connection.close()
        self.ledger.clear()
        self._commit(IntelligenceState())

    async def aclose(self) -> None:
        await self.connection.aclose()
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Side calls
    # ------------------------------------------------------------------

    async def request_deep_dive(
        self,
        city_id: str,
        topic: DeepDiveTopic | str,
        custom_query: str | None = None,
    ) -> DeepDiveResponse | None:
        """Ask a follow-up question about a city.

        The answer is appended to the city's deep-dive log. Failures are
        recorded in the error log and return None instead of raising.
        """
        body = DeepDiveRequest(
            city_id=city_id,
            topic=topic,
            custom_query=custom_query,
            session_id=self._state.session_id,
        )
        self._deep_dives_in_flight += 1
        self._commit(self._state.model_copy(update={"is_deep_dive_loading": True}))
        logger.info("client.deep_dive_requested", city_id=city_id, topic=body.topic)

        try:
            response = await self._http.post(
                self.config.url("deep-dive"),
                json=body.to_payload(),
                timeout=self.config.request_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            message = f"Deep dive failed: {_describe(e)}"
            logger.warning("client.deep_dive_failed", city_id=city_id, error=message)
            error = IntelligenceError(city_id=city_id, message=message)
            self._finish_deep_dive(errors=[*self._state.errors, error])
            return None
        except BaseException:
            self._finish_deep_dive()
            raise

        answer = DeepDiveResponse(
            topic=body.topic,
            custom_query=custom_query,
            response=str(data.get("response", "")) if isinstance(data, dict) else "",
        )
        responses = {
            **self._state.deep_dive_responses,
            city_id: [*self._state.deep_dive_responses.get(city_id, []), answer],
        }
        self._finish_deep_dive(deep_dive_responses=responses)
        return answer

    def _finish_deep_dive(self, **changes: Any) -> None:
        # Loading stays set while another deep dive is still in flight
        self._deep_dives_in_flight -= 1
        self._commit(
            self._state.model_copy(update={"is_deep_dive_loading": self._deep_dives_in_flight > 0, **changes})
        )

    async def submit_feedback(
        self,
        city_id: str,
        rating: FeedbackRating | str,
        categories: list[str] | None = None,
        comment: str | None = None,
    ) -> bool:
        """Send feedback for a city; best-effort, never raises.

        Returns True when the server accepted it and it was stored locally.
        """
        body = FeedbackRequest(
            city_id=city_id,
            rating=rating,
            categories=categories,
            comment=comment,
            session_id=self._state.session_id,
        )
        try:
            response = await self._http.post(
                self.config.url("feedback"),
                json=body.to_payload(),
                timeout=self.config.request_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("client.feedback_failed", city_id=city_id, error=_describe(e))
            return False

        feedback = IntelligenceFeedback(city_id=city_id, rating=body.rating, categories=categories, comment=comment)
        self._commit(
            self._state.model_copy(
                update={"feedback_submitted": {**self._state.feedback_submitted, city_id: feedback}}
            )
        )
        logger.info("client.feedback_submitted", city_id=city_id, rating=body.rating)
        return True

    # ------------------------------------------------------------------
    # Optimistic updates
    # ------------------------------------------------------------------

    def apply_optimistic_update(self, city_id: str, partial: dict[str, Any]) -> str:
        state, snapshot_id = self.ledger.apply(self._state, city_id, partial)
        if state is not self._state:
            self._commit(state)
        return snapshot_id

    def rollback_optimistic_update(self, snapshot_id: str) -> None:
        state = self.ledger.rollback(self._state, snapshot_id)
        if state is not self._state:
            self._commit(state)

    def confirm_optimistic_update(self, snapshot_id: str) -> None:
        self.ledger.confirm(snapshot_id)

    # ------------------------------------------------------------------
    # Stream callbacks
    # ------------------------------------------------------------------

    async def _handle_event(self, event: BaseEvent) -> None:
        self._commit(reduce(self._state, event))
        if isinstance(event, CityCompleteEvent):
            await self._save_cache()

    def _handle_failure(self, message: str) -> None:
        error = IntelligenceError(message=message)
        self._commit(
            self._state.model_copy(
                update={
                    "errors": [*self._state.errors, error],
                    "is_processing": False,
                    "is_connected": False,
                }
            )
        )

    async def _save_cache(self) -> None:
        try:
            await self.cache.save(self._state.city_intelligence)
        except (aiosqlite.Error, OSError) as e:
            logger.warning("client.cache_save_failed", error=str(e))

    def _commit(self, state: IntelligenceState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)


def _describe(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP error: {exc.response.status_code}"
    return str(exc) or type(exc).__name__
