"""Session client tests

These tests run IntelligenceClient against an httpx.MockTransport backend:
- a full two-city run ends at 100% with the cache written
- a dropped stream that resumes yields the same final state as an
  uninterrupted one
- exhausted retries land in the error log
- cancel, reset, hydrate, side calls and optimistic edits
"""

import asyncio
import json

import httpx
import pytest

from intelligence import (
    AgentCompleteEvent,
    AgentErrorEvent,
    AgentOutput,
    AgentProgressEvent,
    AgentStartedEvent,
    AllCompleteEvent,
    CityCompleteEvent,
    CityIntelligence,
    CityIntelligenceSnapshot,
    ConnectedEvent,
    Goal,
    OrchestratorGoalEvent,
    OrchestratorPlanEvent,
    Reflection,
    ReflectionEvent,
    StartIntelligenceRequest,
)
from orchestration import CACHE_VERSION, IntelligenceClient, MemoryCacheStore, pack_snapshot
from stream import StreamConfig

BASE_URL = "http://test/api/city-intelligence"

REQUEST = StartIntelligenceRequest(
    cities=[
        {"id": "paris", "name": "Paris", "country": "France"},
        {"id": "lyon", "name": "Lyon", "country": "France"},
    ],
    nights={"paris": 2, "lyon": 1},
)


def run_events() -> list:
    events = [
        ConnectedEvent(session_id="s-1"),
        OrchestratorGoalEvent(goal=Goal(description="Two cities", cities=["paris", "lyon"])),
    ]
    for city_id in ("paris", "lyon"):
        events += [
            OrchestratorPlanEvent(city_id=city_id),
            AgentStartedEvent(city_id=city_id, agent="StoryAgent"),
            AgentProgressEvent(city_id=city_id, agent="StoryAgent", progress=40),
            AgentCompleteEvent(
                city_id=city_id,
                agent="StoryAgent",
                output=AgentOutput(success=True, data={"hook": f"Visit {city_id}"}),
            ),
            ReflectionEvent(city_id=city_id, reflection=Reflection(quality_score=82)),
            CityCompleteEvent(city_id=city_id, intelligence=CityIntelligenceSnapshot(quality=82, iterations=1)),
        ]
    events.append(AllCompleteEvent())
    return events


class Backend:
    """MockTransport handler for /start, /cancel, /deep-dive and /feedback."""

    def __init__(self, start_responses=(), deep_dive=None, feedback_status=200):
        self.start_responses = list(start_responses)
        self.deep_dive = deep_dive if deep_dive is not None else httpx.Response(200, json={"response": "Try the bouchons."})
        self.feedback_status = feedback_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/start"):
            return self.start_responses.pop(0)
        if "/cancel/" in path:
            return httpx.Response(200, json={"cancelled": True})
        if path.endswith("/deep-dive"):
            if isinstance(self.deep_dive, Exception):
                raise self.deep_dive
            return self.deep_dive
        if path.endswith("/feedback"):
            return httpx.Response(self.feedback_status, json={"success": self.feedback_status == 200})
        return httpx.Response(404)

    def bodies(self, suffix: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith(suffix)]


async def wait_for_progress(client: IntelligenceClient, value: int) -> None:
    while client.state.overall_progress < value:
        await asyncio.sleep(0.01)


def make_client(backend: Backend, sleep, cache=None, **config) -> IntelligenceClient:
    values = {"base_url": BASE_URL, "max_reconnect_attempts": 2, "heartbeat_timeout": 5.0}
    values.update(config)
    return IntelligenceClient(
        StreamConfig(**values),
        cache=cache,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(backend)),
        sleep=sleep,
        rng=lambda: 0.5,
    )


class TestRun:
    """Test full sessions."""

    @pytest.mark.asyncio
    async def test_two_city_run(self, sse_response, recorded_sleep):
        cache = MemoryCacheStore()
        client = make_client(Backend([sse_response(run_events())]), recorded_sleep, cache=cache)

        progress_seen = []
        client.subscribe(lambda s: progress_seen.append(s.overall_progress))
        state = await client.run(REQUEST)

        assert state.session_id == "s-1"
        assert state.overall_progress == 100
        assert state.is_processing is False
        assert state.current_phase == "complete"
        assert {c.status for c in state.city_intelligence.values()} == {"complete"}
        assert state.city_intelligence["paris"].story == {"hook": "Visit paris"}
        assert state.city_intelligence["paris"].quality == 82
        assert state.city_intelligence["paris"].city.name == "Paris"
        assert 50 in progress_seen
        assert progress_seen == sorted(progress_seen)
        assert set(cache.raw["cityIntelligence"]) == {"paris", "lyon"}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_resumed_run_matches_uninterrupted_run(self, sse_response, recorded_sleep):
        """A drop after 3 events, a failed retry, then a successful one converges to the same state."""
        events = run_events()

        steady = make_client(Backend([sse_response(events)]), recorded_sleep)
        await steady.run(REQUEST)

        flaky_backend = Backend(
            [
                sse_response(events[:3], fail_with=httpx.ReadError("connection reset")),
                sse_response([], status_code=503),
                sse_response(events[3:]),
            ]
        )
        flaky = make_client(flaky_backend, recorded_sleep)
        await flaky.run(REQUEST)

        assert flaky.state == steady.state
        assert recorded_sleep.delays == [pytest.approx(2.0), pytest.approx(4.0)]
        assert flaky.connection_state.reconnect_attempts == 0
        assert [body.get("sessionId") for body in flaky_backend.bodies("/start")[1:]] == ["s-1", "s-1"]
        await steady.aclose()
        await flaky.aclose()

    @pytest.mark.asyncio
    async def test_agent_error_does_not_block_city(self, sse_response, recorded_sleep):
        events = [
            ConnectedEvent(session_id="s-1"),
            AgentErrorEvent(city_id="paris", agent="WeatherAgent", error="API down"),
            CityCompleteEvent(city_id="paris"),
            CityCompleteEvent(city_id="lyon"),
            AllCompleteEvent(),
        ]
        client = make_client(Backend([sse_response(events)]), recorded_sleep)
        state = await client.run(REQUEST)
        assert state.city_intelligence["paris"].status == "complete"
        assert state.errors[0].agent == "WeatherAgent"
        assert client.get_agent_state("paris", "WeatherAgent").status == "failed"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, sse_response, recorded_sleep):
        client = make_client(Backend([sse_response([]) for _ in range(3)]), recorded_sleep)
        state = await client.run(REQUEST)

        assert state.is_processing is False
        assert state.errors[-1].message.startswith("Connection failed after 3 attempts")
        assert client.connection_state.status == "error"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_failing_listener_ends_session(self, sse_response, recorded_sleep):
        """A listener that raises mid-stream stops processing instead of leaving it live."""
        client = make_client(Backend([sse_response(run_events())]), recorded_sleep)
        raised = []

        def listener(state):
            if state.overall_progress >= 50 and not raised:
                raised.append(True)
                raise RuntimeError("render failed")

        client.subscribe(listener)
        state = await client.run(REQUEST)

        assert client.connection_state.status == "error"
        assert state.is_processing is False
        assert state.is_connected is False
        assert state.errors[-1].message == "Event handler failed: render failed"
        assert state.city_intelligence["lyon"].status != "complete"
        assert recorded_sleep.delays == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_manual_reconnect_resumes_processing(self, sse_response, recorded_sleep):
        backend = Backend([sse_response([]) for _ in range(3)] + [sse_response(run_events())])
        client = make_client(backend, recorded_sleep)
        await client.run(REQUEST)
        assert client.state.is_processing is False

        client.reconnect()
        assert client.state.is_processing is True
        await client.wait()
        assert client.state.overall_progress == 100
        await client.aclose()


class TestLifecycle:
    """Test cancel, reset and hydrate."""

    @pytest.mark.asyncio
    async def test_cancel_resets_session_keeps_cities(self, sse_response, recorded_sleep):
        events = run_events()[:8]  # paris complete, then the stream hangs
        backend = Backend([sse_response(events, hang=True)])
        client = make_client(backend, recorded_sleep)

        client.start(REQUEST)
        await asyncio.wait_for(wait_for_progress(client, 50), timeout=5)
        client.cancel()
        await client.aclose()

        state = client.state
        assert state.session_id is None
        assert state.is_connected is False
        assert state.is_processing is False
        assert state.current_phase is None
        assert state.city_intelligence["paris"].status == "complete"
        assert any("/cancel/s-1" in r.url.path for r in backend.requests)

    @pytest.mark.asyncio
    async def test_reset(self, sse_response, recorded_sleep):
        client = make_client(Backend([sse_response(run_events())]), recorded_sleep)
        await client.run(REQUEST)
        client.reset()
        assert client.state.city_intelligence == {}
        assert client.state.overall_progress == 0
        await client.aclose()

    @pytest.mark.asyncio
    async def test_hydrate_from_cache(self, recorded_sleep):
        cached = {"paris": CityIntelligence(city_id="paris", status="complete", quality=90)}
        cache = MemoryCacheStore(raw=pack_snapshot(cached))
        client = make_client(Backend(), recorded_sleep, cache=cache)

        state = await client.hydrate()
        assert state.city_intelligence["paris"].quality == 90
        assert state.is_processing is False
        assert state.overall_progress == 0
        assert state.errors == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_hydrate_wipes_old_version(self, recorded_sleep):
        cached = {"paris": CityIntelligence(city_id="paris", status="complete")}
        cache = MemoryCacheStore(raw=pack_snapshot(cached, version=CACHE_VERSION - 1))
        client = make_client(Backend(), recorded_sleep, cache=cache)

        state = await client.hydrate()
        assert state.city_intelligence == {}
        assert cache.raw is None
        await client.aclose()


class TestSideCalls:
    """Test deep-dive and feedback."""

    @pytest.mark.asyncio
    async def test_deep_dive_appended(self, recorded_sleep):
        backend = Backend()
        client = make_client(backend, recorded_sleep)
        answer = await client.request_deep_dive("lyon", "restaurants")

        assert answer.response == "Try the bouchons."
        assert client.get_deep_dive_responses("lyon") == [answer]
        assert client.state.is_deep_dive_loading is False
        body = backend.bodies("/deep-dive")[0]
        assert body["cityId"] == "lyon"
        assert body["topic"] == "restaurants"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_deep_dive_failure_recorded(self, recorded_sleep):
        client = make_client(Backend(deep_dive=httpx.Response(500)), recorded_sleep)
        answer = await client.request_deep_dive("lyon", "nightlife")

        assert answer is None
        assert client.state.is_deep_dive_loading is False
        assert client.state.errors[-1].message == "Deep dive failed: HTTP error: 500"
        assert client.state.errors[-1].city_id == "lyon"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_deep_dive_transport_failure_recorded(self, recorded_sleep):
        client = make_client(Backend(deep_dive=httpx.ConnectError("refused")), recorded_sleep)
        assert await client.request_deep_dive("lyon", "custom", "Where to run?") is None
        assert client.state.errors[-1].message.startswith("Deep dive failed")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_overlapping_deep_dives_keep_loading(self, recorded_sleep):
        """Loading stays set until the last of two concurrent deep dives returns."""
        paris_started = asyncio.Event()
        release_paris = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["cityId"] == "paris":
                paris_started.set()
                await release_paris.wait()
            return httpx.Response(200, json={"response": "ok"})

        client = IntelligenceClient(
            StreamConfig(base_url=BASE_URL),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            sleep=recorded_sleep,
        )
        paris = asyncio.create_task(client.request_deep_dive("paris", "walking"))
        await asyncio.wait_for(paris_started.wait(), timeout=5)

        assert (await client.request_deep_dive("lyon", "restaurants")).response == "ok"
        assert client.state.is_deep_dive_loading is True

        release_paris.set()
        assert (await paris).response == "ok"
        assert client.state.is_deep_dive_loading is False
        assert len(client.get_deep_dive_responses("paris")) == 1
        assert len(client.get_deep_dive_responses("lyon")) == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_feedback_stored(self, recorded_sleep):
        backend = Backend()
        client = make_client(backend, recorded_sleep)
        assert await client.submit_feedback("paris", "love", categories=["food"]) is True
        assert client.get_feedback("paris").rating == "love"
        assert backend.bodies("/feedback")[0]["categories"] == ["food"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_feedback_failure_swallowed(self, recorded_sleep):
        client = make_client(Backend(feedback_status=503), recorded_sleep)
        assert await client.submit_feedback("paris", "poor") is False
        assert client.get_feedback("paris") is None
        assert client.state.errors == []
        await client.aclose()


class TestOptimistic:
    """Test optimistic edits through the client."""

    @pytest.mark.asyncio
    async def test_apply_rollback_notifies(self, sse_response, recorded_sleep):
        client = make_client(Backend([sse_response(run_events())]), recorded_sleep)
        await client.run(REQUEST)

        seen = []
        unsubscribe = client.subscribe(lambda s: seen.append(s.city_intelligence["paris"].quality))
        snapshot_id = client.apply_optimistic_update("paris", {"quality": 99})
        assert client.get_city_intelligence("paris").quality == 99

        client.rollback_optimistic_update(snapshot_id)
        assert client.get_city_intelligence("paris").quality == 82
        assert seen == [99, 82]

        unsubscribe()
        client.apply_optimistic_update("paris", {"quality": 10})
        assert seen == [99, 82]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_confirm_keeps_edit(self, sse_response, recorded_sleep):
        client = make_client(Backend([sse_response(run_events())]), recorded_sleep)
        await client.run(REQUEST)
        snapshot_id = client.apply_optimistic_update("lyon", {"quality": 99})
        client.confirm_optimistic_update(snapshot_id)
        client.rollback_optimistic_update(snapshot_id)
        assert client.get_city_intelligence("lyon").quality == 99
        await client.aclose()
