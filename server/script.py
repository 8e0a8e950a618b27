"""Event scripts for the replay server

A script is the full ordered list of events one session delivers. Two
sources:
- build_session_script(): canned run for the requested cities, one pass of
  every agent plus a reflection and a city_complete per city
- load_recorded_script(): JSON Lines file of event payloads captured from
  a real backend, one event object per line
"""

import json
from pathlib import Path

from intelligence import (
    AgentCompleteEvent,
    AgentName,
    AgentOutput,
    AgentProgressEvent,
    AgentStartedEvent,
    AllCompleteEvent,
    BaseEvent,
    CityCompleteEvent,
    CityIntelligenceSnapshot,
    CompletionSummary,
    ConnectedEvent,
    ExecutionPlan,
    Goal,
    OrchestratorGoalEvent,
    OrchestratorPlanEvent,
    PlanPhase,
    Reflection,
    ReflectionEvent,
    StartIntelligenceRequest,
    parse_event,
)

# Agents in the order the canned run executes them
DEFAULT_AGENTS: tuple[str, ...] = (
    AgentName.TIME.value,
    AgentName.STORY.value,
    AgentName.PREFERENCE.value,
    AgentName.WEATHER.value,
    AgentName.CLUSTER.value,
    AgentName.GEMS.value,
    AgentName.LOGISTICS.value,
    AgentName.PHOTO.value,
    AgentName.SYNTHESIS.value,
)

CANNED_QUALITY = 85.0


def _canned_output(agent: str, city_name: str) -> dict | None:
    """Placeholder agent data shaped like the real backend's output."""
    outputs = {
        AgentName.TIME.value: [{"period": "morning", "title": f"Morning in {city_name}", "activities": []}],
        AgentName.STORY.value: {"hook": f"Discover {city_name}", "narrative": "", "differentiators": []},
        AgentName.PREFERENCE.value: {"score": 80, "breakdown": []},
        AgentName.WEATHER.value: {"summary": "Mild and mostly sunny"},
        AgentName.CLUSTER.value: [{"id": "center", "name": "Old Town", "places": []}],
        AgentName.GEMS.value: [{"name": f"{city_name} hidden courtyard", "whySpecial": "Quiet and local"}],
        AgentName.LOGISTICS.value: {"parking": [], "transit": []},
        AgentName.PHOTO.value: [{"name": f"{city_name} viewpoint", "bestTime": "sunset"}],
    }
    return outputs.get(agent)


def build_session_script(
    request: StartIntelligenceRequest,
    session_id: str,
    agents: tuple[str, ...] = DEFAULT_AGENTS,
) -> list[BaseEvent]:
    """Canned event sequence for one session over the requested cities."""
    city_ids = [city.id for city in request.cities]
    events: list[BaseEvent] = [
        ConnectedEvent(session_id=session_id),
        OrchestratorGoalEvent(
            goal=Goal(
                description=f"Gather intelligence for {len(city_ids)} cities",
                cities=city_ids,
                quality_threshold=75,
                max_iterations=2,
            )
        ),
    ]

    for city in request.cities:
        events.append(
            OrchestratorPlanEvent(
                city_id=city.id,
                plan=ExecutionPlan(
                    city_id=city.id,
                    phases=[PlanPhase(phase_number=1, agents=list(agents), parallel=True)],
                ),
            )
        )
        for agent in agents:
            events.append(AgentStartedEvent(city_id=city.id, agent=agent))
            events.append(AgentProgressEvent(city_id=city.id, agent=agent, progress=50))
            events.append(
                AgentCompleteEvent(
                    city_id=city.id,
                    agent=agent,
                    output=AgentOutput(success=True, data=_canned_output(agent, city.name), confidence=80),
                )
            )
        events.append(
            ReflectionEvent(
                city_id=city.id,
                reflection=Reflection(quality_score=CANNED_QUALITY, verdict="complete"),
            )
        )
        events.append(
            CityCompleteEvent(
                city_id=city.id,
                intelligence=CityIntelligenceSnapshot(
                    city_id=city.id,
                    city=city,
                    quality=CANNED_QUALITY,
                    iterations=1,
                ),
            )
        )

    events.append(
        AllCompleteEvent(
            summary=CompletionSummary(
                total_cities=len(city_ids),
                average_quality=CANNED_QUALITY if city_ids else 0,
                total_iterations=len(city_ids),
            )
        )
    )
    return events


def load_recorded_script(path: str | Path, session_id: str | None = None) -> list[BaseEvent]:
    """Read a JSON Lines recording into events.

    Blank lines are skipped. When session_id is given, connected events are
    rewritten to carry it so a recording can be replayed for many sessions.

    Raises:
        ValueError: a line is not valid JSON or not a valid event
    """
    events: list[BaseEvent] = []
    with open(path, "r") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                event = parse_event(json.loads(line))
            except ValueError as e:
                # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
                raise ValueError(f"{path}:{lineno}: {e}") from e
            if session_id is not None and isinstance(event, ConnectedEvent):
                event = event.model_copy(update={"session_id": session_id})
            events.append(event)
    return events
