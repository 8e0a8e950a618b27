"""Stream event types for the city intelligence protocol

Every frame on the stream is `data: <json>\\n\\n` where the JSON object has a
`type` discriminator and a `timestamp`. This module provides:
- One pydantic model per event type (ConnectedEvent ... HeartbeatEvent)
- IntelligenceEvent: discriminated union over `type`
- UnknownEvent: carrier for types this client does not know about
- parse_event(): dict -> typed event
- encode_frame(): typed event -> SSE frame (used by the replay server and tests)
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from .enums import EventType
from .types import (
    AgentOutput,
    CityIntelligenceSnapshot,
    CompletionSummary,
    ExecutionPlan,
    Goal,
    Reflection,
    RefinementPlan,
    WireModel,
    utcnow,
)


class BaseEvent(WireModel):
    """Envelope shared by every event."""

    type: str
    timestamp: datetime = Field(default_factory=utcnow)


class ConnectedEvent(BaseEvent):
    type: Literal["connected"] = "connected"
    session_id: str


class OrchestratorGoalEvent(BaseEvent):
    type: Literal["orchestrator_goal"] = "orchestrator_goal"
    goal: Goal


class OrchestratorPlanEvent(BaseEvent):
    type: Literal["orchestrator_plan"] = "orchestrator_plan"
    city_id: str
    plan: ExecutionPlan | None = None


class AgentStartedEvent(BaseEvent):
    type: Literal["agent_started"] = "agent_started"
    city_id: str
    agent: str


class AgentProgressEvent(BaseEvent):
    type: Literal["agent_progress"] = "agent_progress"
    city_id: str
    agent: str
    progress: float


class AgentCompleteEvent(BaseEvent):
    type: Literal["agent_complete"] = "agent_complete"
    city_id: str
    agent: str
    output: AgentOutput


class AgentErrorEvent(BaseEvent):
    type: Literal["agent_error"] = "agent_error"
    city_id: str
    agent: str
    error: str


class ReflectionEvent(BaseEvent):
    type: Literal["reflection"] = "reflection"
    city_id: str
    reflection: Reflection | None = None


class RefinementStartedEvent(BaseEvent):
    type: Literal["refinement_started"] = "refinement_started"
    city_id: str
    plan: RefinementPlan | None = None


class CityCompleteEvent(BaseEvent):
    type: Literal["city_complete"] = "city_complete"
    city_id: str
    intelligence: CityIntelligenceSnapshot = Field(default_factory=CityIntelligenceSnapshot)


class AllCompleteEvent(BaseEvent):
    type: Literal["all_complete"] = "all_complete"
    summary: CompletionSummary | None = None


class ErrorEvent(BaseEvent):
    """Session-level error.

    Only an explicit `recoverable: false` is fatal; a missing flag is treated
    as recoverable.
    """

    type: Literal["error"] = "error"
    error: str
    recoverable: bool = True
    city_id: str | None = None


class HeartbeatEvent(BaseEvent):
    type: Literal["heartbeat"] = "heartbeat"


IntelligenceEvent = Annotated[
    Union[
        ConnectedEvent,
        OrchestratorGoalEvent,
        OrchestratorPlanEvent,
        AgentStartedEvent,
        AgentProgressEvent,
        AgentCompleteEvent,
        AgentErrorEvent,
        ReflectionEvent,
        RefinementStartedEvent,
        CityCompleteEvent,
        AllCompleteEvent,
        ErrorEvent,
        HeartbeatEvent,
    ],
    Field(discriminator="type"),
]


class UnknownEvent(BaseEvent):
    """Event whose type is not part of the protocol; kept for logging only."""

    payload: dict[str, Any] = Field(default_factory=dict)


KNOWN_EVENT_TYPES: frozenset[str] = frozenset(e.value for e in EventType)

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(IntelligenceEvent)


def parse_event(payload: Any) -> BaseEvent:
    """Validate a decoded frame into a typed event.

    Unknown `type` values come back as UnknownEvent instead of failing, so a
    newer backend never breaks an older client.

    Raises:
        pydantic.ValidationError: known type with an invalid shape
        ValueError: payload is not a JSON object
    """
    if not isinstance(payload, dict):
        raise ValueError(f"Event payload must be an object, got {type(payload).__name__}")

    event_type = payload.get("type")
    if event_type not in KNOWN_EVENT_TYPES:
        return UnknownEvent(
            type=str(event_type),
            timestamp=payload.get("timestamp") or utcnow(),
            payload=payload,
        )
    return _EVENT_ADAPTER.validate_python(payload)


def encode_frame(event: BaseEvent) -> str:
    """Encode an event as an SSE frame: 'data: {...}\\n\\n' with camelCase keys."""
    return f"data: {event.model_dump_json(by_alias=True, exclude_none=True)}\n\n"
