"""FastAPI replay server for the city intelligence stream

Speaks the same protocol as the real backend but computes nothing; it
replays a canned (or recorded) event script per session:
- POST /api/city-intelligence/start: chunked `data: {...}\\n\\n` stream,
  resumed from the last delivered event when the body carries a known
  sessionId
- POST /api/city-intelligence/cancel/{session_id}
- POST /api/city-intelligence/deep-dive
- POST /api/city-intelligence/feedback

drop_after simulates a flaky network: the first response of each session
ends after that many events, so the client has to reconnect and resume.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncGenerator

import structlog
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from intelligence import (
    BaseEvent,
    DeepDiveRequest,
    FeedbackRequest,
    StartIntelligenceRequest,
    encode_frame,
)

from .payloads import CancelResponse, DeepDiveAnswer, FeedbackAck
from .script import build_session_script, load_recorded_script

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/city-intelligence"


@dataclass
class ReplaySession:
    """Server-side cursor over one session's script."""

    session_id: str
    events: list[BaseEvent]
    delivered: int = 0
    cancelled: bool = False
    drop_after: int | None = None
    responses: int = 0  # /start responses opened for this session

    @property
    def finished(self) -> bool:
        return self.delivered >= len(self.events)


@dataclass
class ReplayRegistry:
    sessions: dict[str, ReplaySession] = field(default_factory=dict)


def create_app(
    script_path: str | Path | None = None,
    *,
    event_delay: float = 0.0,
    drop_after: int | None = None,
) -> FastAPI:
    """Build the replay app.

    Args:
        script_path: JSON Lines recording to replay for every session
            (default: canned script built from the request)
        event_delay: Pause between events in seconds
        drop_after: End the first response of each session after this many
            events (default: never)
    """
    registry = ReplayRegistry()
    router = APIRouter(prefix=API_PREFIX)

    def open_session(request: StartIntelligenceRequest) -> ReplaySession:
        session_id = request.session_id or str(uuid.uuid4())
        session = registry.sessions.get(session_id)
        if session is not None:
            logger.info("replay.resume", session_id=session_id, offset=session.delivered)
            return session

        if script_path is not None:
            events = load_recorded_script(script_path, session_id=session_id)
        else:
            events = build_session_script(request, session_id)
        session = ReplaySession(session_id=session_id, events=events, drop_after=drop_after)
        registry.sessions[session_id] = session
        logger.info("replay.session_created", session_id=session_id, events=len(events))
        return session

    @router.post("/start")
    async def start(request: StartIntelligenceRequest) -> StreamingResponse:
        """Stream the session's remaining events."""
        session = open_session(request)
        session.responses += 1
        limit = session.drop_after if session.responses == 1 else None

        async def event_generator() -> AsyncGenerator[str, None]:
            sent = 0
            while not session.finished and not session.cancelled:
                if limit is not None and sent >= limit:
                    logger.info("replay.dropped", session_id=session.session_id, offset=session.delivered)
                    return
                yield encode_frame(session.events[session.delivered])
                session.delivered += 1
                sent += 1
                if event_delay:
                    await asyncio.sleep(event_delay)
            logger.info(
                "replay.stream_closed",
                session_id=session.session_id,
                delivered=session.delivered,
                cancelled=session.cancelled,
            )

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @router.post("/cancel/{session_id}", response_model=CancelResponse)
    async def cancel(session_id: str) -> CancelResponse:
        session = registry.sessions.get(session_id)
        if session is None or session.finished or session.cancelled:
            return CancelResponse(session_id=session_id, cancelled=False)
        session.cancelled = True
        logger.info("replay.cancelled", session_id=session_id, offset=session.delivered)
        return CancelResponse(session_id=session_id, cancelled=True)

    @router.post("/deep-dive", response_model=DeepDiveAnswer)
    async def deep_dive(request: DeepDiveRequest) -> DeepDiveAnswer:
        subject = request.custom_query or str(request.topic).replace("_", " ")
        return DeepDiveAnswer(response=f"Local tips about {subject} in {request.city_id}.")

    @router.post("/feedback", response_model=FeedbackAck)
    async def feedback(request: FeedbackRequest) -> FeedbackAck:
        logger.info("replay.feedback", city_id=request.city_id, rating=request.rating)
        return FeedbackAck()

    app = FastAPI(
        title="City Intelligence Replay Server",
        description="Replays scripted city intelligence event streams",
        version="0.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    app.state.replay = registry
    return app


app = create_app()
