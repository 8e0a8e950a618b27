"""Derived progress values

Pure functions over the aggregate state; nothing here mutates or stores.
Rounding is half-up (50.5 -> 51) to match what users see in percentages,
not Python's banker's rounding.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from intelligence import AgentExecutionState, AgentStatus, CityIntelligence, CityStatus

from .state import IntelligenceState


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def overall_progress(cities: Iterable[CityIntelligence]) -> int:
    """Percentage of cities whose status is complete; 0 when there are none."""
    cities = list(cities)
    if not cities:
        return 0
    complete = sum(1 for c in cities if c.status == CityStatus.COMPLETE)
    return round_half_up(100 * complete / len(cities))


def city_progress(agent_states: Mapping[str, AgentExecutionState]) -> int:
    """Mean agent progress for one city.

    Completed agents count as 100, running agents as their reported
    progress, pending and failed agents as 0. Only agents the city has
    seen are counted.
    """
    if not agent_states:
        return 0
    total = 0.0
    for agent in agent_states.values():
        if agent.status == AgentStatus.COMPLETED:
            total += 100
        elif agent.status == AgentStatus.RUNNING:
            total += agent.progress
    return round_half_up(total / len(agent_states))


# ============================================================================
# Selectors
# ============================================================================


def completed_cities(state: IntelligenceState) -> list[CityIntelligence]:
    return [c for c in state.city_intelligence.values() if c.status == CityStatus.COMPLETE]


def agent_counts(state: IntelligenceState, city_id: str) -> dict[str, int]:
    """Count of a city's agents per AgentStatus value, plus 'total'."""
    agents = state.agent_states.get(city_id, {})
    counts = {status.value: 0 for status in AgentStatus}
    for agent in agents.values():
        counts[AgentStatus(agent.status).value] += 1
    counts["total"] = len(agents)
    return counts


def is_city_processing(state: IntelligenceState, city_id: str) -> bool:
    """True while the session runs and the city is processing or has a running agent."""
    if not state.is_processing:
        return False
    city = state.city_intelligence.get(city_id)
    if city is not None and city.status == CityStatus.PROCESSING:
        return True
    return any(a.status == AgentStatus.RUNNING for a in state.agent_states.get(city_id, {}).values())


@dataclass
class ProgressSummary:
    """Snapshot of every derived progress value for display."""

    overall: int
    phase: str | None
    completed_cities: int
    total_cities: int
    running_agents: int
    cities: dict[str, int] = field(default_factory=dict)  # city_id -> progress


def summarize(state: IntelligenceState) -> ProgressSummary:
    running = sum(
        1
        for agents in state.agent_states.values()
        for agent in agents.values()
        if agent.status == AgentStatus.RUNNING
    )
    return ProgressSummary(
        overall=state.overall_progress,
        phase=state.current_phase,
        completed_cities=len(completed_cities(state)),
        total_cities=len(state.city_intelligence),
        running_agents=running,
        cities={
            city_id: city_progress(state.agent_states.get(city_id, {}))
            for city_id in state.city_intelligence
        },
    )
