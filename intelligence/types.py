"""Wire and state types for city intelligence

These types are the single source of truth for everything that crosses the
wire or lives in the aggregate state:
- Request types (StartIntelligenceRequest, DeepDiveRequest, FeedbackRequest)
- Per-city records (CityIntelligence, CityIntelligenceSnapshot)
- Per-agent records (AgentOutput, AgentExecutionState)
- Orchestrator payloads (Goal, ExecutionPlan, Reflection, RefinementPlan)
- User-visible logs (IntelligenceError, DeepDiveResponse, IntelligenceFeedback)

Key feature: WireModel uses snake_case attributes with camelCase aliases, so
payloads from the backend ({"cityId": ...}) validate directly and
model_dump(by_alias=True) produces the same shape back.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import (
    AgentStatus,
    CityStatus,
    DeepDiveTopic,
    FeedbackRating,
)


def utcnow() -> datetime:
    """Timezone-aware current time, used as the default for event timestamps."""
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for every model that is sent or received as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys and no null fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Request Types
# ============================================================================


class Coordinates(WireModel):
    lat: float
    lng: float


class CityData(WireModel):
    """A city selected by the user for the trip."""

    id: str
    name: str
    country: str = ""
    coordinates: Coordinates | None = None
    image_url: str | None = None
    description: str | None = None


class UserPreferences(WireModel):
    """Explicit preferences from forms/settings."""

    traveller_type: str | None = None
    interests: list[str] = Field(default_factory=list)
    dining_style: str | None = None
    dietary: list[str] = Field(default_factory=list)
    pace: str | None = None  # "relaxed" | "moderate" | "packed"
    budget: str | None = None  # "budget" | "moderate" | "luxury"
    avoid_crowds: bool | None = None
    prefer_outdoor: bool | None = None
    accessibility: list[str] = Field(default_factory=list)


class TripContext(WireModel):
    origin: CityData
    destination: CityData
    total_nights: int
    traveller_type: str
    transport_mode: str = "car"  # "car" | "train" | "mixed"
    start_date: str | None = None
    end_date: str | None = None


class StartIntelligenceRequest(WireModel):
    """Body of POST /start.

    sessionId is optional on the first request; the connection manager fills
    it in on automatic reconnects so the server can resume the run.
    """

    cities: list[CityData]
    nights: dict[str, int] = Field(default_factory=dict)  # cityId -> nights
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    trip: TripContext | None = None
    session_id: str | None = None


class DeepDiveRequest(WireModel):
    """Body of POST /deep-dive."""

    city_id: str
    topic: DeepDiveTopic
    custom_query: str | None = None
    session_id: str | None = None


class FeedbackRequest(WireModel):
    """Body of POST /feedback."""

    city_id: str
    rating: FeedbackRating
    categories: list[str] | None = None
    comment: str | None = None
    session_id: str | None = None


# ============================================================================
# Orchestrator Payloads
# ============================================================================


class Goal(WireModel):
    """Immutable scope of an orchestration run."""

    description: str = ""
    cities: list[str] = Field(default_factory=list)
    quality_threshold: float = 0
    max_iterations: int = 0


class PlanPhase(WireModel):
    phase_number: int = 0
    agents: list[str] = Field(default_factory=list)
    parallel: bool = False
    description: str = ""


class ExecutionPlan(WireModel):
    city_id: str | None = None
    phases: list[PlanPhase] = Field(default_factory=list)
    max_iterations: int | None = None
    quality_threshold: float | None = None


class Reflection(WireModel):
    """Backend quality assessment of a city's current intelligence."""

    quality_score: float | None = None  # 0-100
    strengths: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    verdict: str | None = None  # "complete" | "needs_refinement" | "critical_gaps"
    suggestions: list[str] = Field(default_factory=list)


class RefinementPlan(WireModel):
    iteration: int = 0
    agents_to_rerun: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list)
    instructions: dict[str, str] = Field(default_factory=dict)


class CompletionSummary(WireModel):
    total_cities: int = 0
    average_quality: float = 0
    total_iterations: int = 0
    processing_time_ms: float = 0


# ============================================================================
# Agent Records
# ============================================================================


class AgentOutput(WireModel):
    """Result envelope produced by every agent."""

    success: bool
    data: Any = None
    confidence: float = 0  # 0-100
    gaps: list[str] | None = None
    suggestions: list[str] | None = None
    execution_time_ms: float | None = None


class AgentExecutionState(WireModel):
    """Client-side view of one (city, agent) execution."""

    agent_name: str
    status: AgentStatus = AgentStatus.PENDING
    progress: float = 0  # 0-100, non-decreasing while running
    start_time: datetime | None = None
    end_time: datetime | None = None
    output: AgentOutput | None = None
    error: str | None = None


# ============================================================================
# City Intelligence
# ============================================================================

# Result fields, each populated independently by one agent
RESULT_FIELDS: tuple[str, ...] = (
    "story",
    "time_blocks",
    "clusters",
    "match_score",
    "hidden_gems",
    "logistics",
    "weather",
    "photo_spots",
)


class CityIntelligence(WireModel):
    """Aggregated intelligence for one city.

    Result fields hold whatever the producing agent returned; the shapes are
    owned by the backend and are not validated here.
    """

    city_id: str
    city: CityData | None = None
    quality: float = 0  # 0-100
    iterations: int = 0
    status: CityStatus = CityStatus.PENDING

    # Agent outputs
    story: Any = None
    time_blocks: Any = None
    clusters: Any = None
    match_score: Any = None
    hidden_gems: Any = None
    logistics: Any = None
    weather: Any = None
    photo_spots: Any = None

    # Metadata
    generated_at: datetime | None = None
    last_updated_at: datetime | None = None


class CityIntelligenceSnapshot(WireModel):
    """Final server snapshot carried by city_complete.

    Every field is optional: fields the server omits (or sends as null) keep
    the values that already arrived through agent_complete events.
    """

    city_id: str | None = None
    city: CityData | None = None
    quality: float | None = None
    iterations: int | None = None
    status: CityStatus | None = None

    story: Any = None
    time_blocks: Any = None
    clusters: Any = None
    match_score: Any = None
    hidden_gems: Any = None
    logistics: Any = None
    weather: Any = None
    photo_spots: Any = None

    generated_at: datetime | None = None
    last_updated_at: datetime | None = None


# ============================================================================
# User-visible Logs
# ============================================================================


class IntelligenceError(WireModel):
    """Entry in the append-only error log."""

    city_id: str | None = None
    agent: str | None = None
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class DeepDiveResponse(WireModel):
    topic: DeepDiveTopic
    custom_query: str | None = None
    response: str
    timestamp: datetime = Field(default_factory=utcnow)


class IntelligenceFeedback(WireModel):
    city_id: str
    rating: FeedbackRating
    categories: list[str] | None = None
    comment: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
