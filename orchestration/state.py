"""Aggregate session state for city intelligence

These types define everything the client knows about one orchestration run:
- IntelligenceState: session fields, per-city records, per-agent executions,
  the append-only error log, and side-call results
- initial_state_for(): seeded state for a start request

IntelligenceState is treated as immutable: the reducer and the optimistic
ledger return new instances via model_copy() with fresh containers, so a
state handed to a listener never changes underneath it.
"""

from pydantic import BaseModel, ConfigDict, Field

from intelligence import (
    AgentExecutionState,
    CityIntelligence,
    CompletionSummary,
    DeepDiveResponse,
    Goal,
    IntelligenceError,
    IntelligenceFeedback,
    OrchestratorPhase,
    StartIntelligenceRequest,
)


class IntelligenceState(BaseModel):
    """Complete client state for one session."""

    model_config = ConfigDict(use_enum_values=True)

    # Session
    session_id: str | None = None
    is_connected: bool = False
    is_processing: bool = False
    overall_progress: int = 0  # 0-100, non-decreasing until reset
    current_phase: OrchestratorPhase | None = None
    current_city_id: str | None = None

    # Orchestration
    goal: Goal | None = None
    city_intelligence: dict[str, CityIntelligence] = Field(default_factory=dict)
    agent_states: dict[str, dict[str, AgentExecutionState]] = Field(default_factory=dict)  # city -> agent -> state
    errors: list[IntelligenceError] = Field(default_factory=list)
    completion_summary: CompletionSummary | None = None

    # Side calls
    deep_dive_responses: dict[str, list[DeepDiveResponse]] = Field(default_factory=dict)
    is_deep_dive_loading: bool = False
    feedback_submitted: dict[str, IntelligenceFeedback] = Field(default_factory=dict)


def initial_state_for(request: StartIntelligenceRequest) -> IntelligenceState:
    """Fresh processing state with one empty pending record per requested city."""
    return IntelligenceState(
        is_processing=True,
        current_phase=OrchestratorPhase.PLANNING,
        city_intelligence={city.id: CityIntelligence(city_id=city.id, city=city) for city in request.cities},
        agent_states={city.id: {} for city in request.cities},
    )
