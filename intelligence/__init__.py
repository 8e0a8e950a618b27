"""City intelligence domain model

This package provides:
- Enums (OrchestratorPhase, CityStatus, AgentStatus, AgentName, EventType, ...)
- Wire/state types (CityIntelligence, AgentExecutionState, StartIntelligenceRequest, ...)
- Stream event models with a discriminated union and frame encoding
- The validated agent -> result field table

This package is shared between the client and the replay server.
"""

from .enums import (
    CITY_STATUS_RANK,
    AgentName,
    AgentStatus,
    CityStatus,
    ConnectionStatus,
    DeepDiveTopic,
    EventType,
    FeedbackRating,
    OrchestratorPhase,
)
from .events import (
    KNOWN_EVENT_TYPES,
    AgentCompleteEvent,
    AgentErrorEvent,
    AgentProgressEvent,
    AgentStartedEvent,
    AllCompleteEvent,
    BaseEvent,
    CityCompleteEvent,
    ConnectedEvent,
    ErrorEvent,
    HeartbeatEvent,
    IntelligenceEvent,
    OrchestratorGoalEvent,
    OrchestratorPlanEvent,
    RefinementStartedEvent,
    ReflectionEvent,
    UnknownEvent,
    encode_frame,
    parse_event,
)
from .field_map import AGENT_FIELD_MAP, NO_FIELD, FieldMapError, field_for_agent, validate_field_map
from .types import (
    RESULT_FIELDS,
    AgentExecutionState,
    AgentOutput,
    CityData,
    CityIntelligence,
    CityIntelligenceSnapshot,
    CompletionSummary,
    Coordinates,
    DeepDiveRequest,
    DeepDiveResponse,
    ExecutionPlan,
    FeedbackRequest,
    Goal,
    IntelligenceError,
    IntelligenceFeedback,
    PlanPhase,
    Reflection,
    RefinementPlan,
    StartIntelligenceRequest,
    TripContext,
    UserPreferences,
    WireModel,
    utcnow,
)

__all__ = [
    # Enums
    "CITY_STATUS_RANK",
    "AgentName",
    "AgentStatus",
    "CityStatus",
    "ConnectionStatus",
    "DeepDiveTopic",
    "EventType",
    "FeedbackRating",
    "OrchestratorPhase",
    # Events
    "KNOWN_EVENT_TYPES",
    "AgentCompleteEvent",
    "AgentErrorEvent",
    "AgentProgressEvent",
    "AgentStartedEvent",
    "AllCompleteEvent",
    "BaseEvent",
    "CityCompleteEvent",
    "ConnectedEvent",
    "ErrorEvent",
    "HeartbeatEvent",
    "IntelligenceEvent",
    "OrchestratorGoalEvent",
    "OrchestratorPlanEvent",
    "RefinementStartedEvent",
    "ReflectionEvent",
    "UnknownEvent",
    "encode_frame",
    "parse_event",
    # Field table
    "AGENT_FIELD_MAP",
    "NO_FIELD",
    "FieldMapError",
    "field_for_agent",
    "validate_field_map",
    # Types
    "RESULT_FIELDS",
    "AgentExecutionState",
    "AgentOutput",
    "CityData",
    "CityIntelligence",
    "CityIntelligenceSnapshot",
    "CompletionSummary",
    "Coordinates",
    "DeepDiveRequest",
    "DeepDiveResponse",
    "ExecutionPlan",
    "FeedbackRequest",
    "Goal",
    "IntelligenceError",
    "IntelligenceFeedback",
    "PlanPhase",
    "Reflection",
    "RefinementPlan",
    "StartIntelligenceRequest",
    "TripContext",
    "UserPreferences",
    "WireModel",
    "utcnow",
]
