"""Event reducer: (state, event) -> state

reduce() is pure and total over well-formed events. It never mutates its
input; every handler returns a model_copy() with fresh containers for the
parts it touches. Timestamps come from the event, so replaying the same
events always yields the same state.

Ordering guarantees the reducer enforces on its own, independent of the
backend:
- a city's status never moves to a lower rank (pending < processing <
  failed < complete)
- an agent's progress never decreases while it runs and is frozen once the
  agent has completed or failed
- overall_progress never decreases
- the complete phase is sticky
"""

from typing import Callable

import structlog

from intelligence import (
    CITY_STATUS_RANK,
    AgentCompleteEvent,
    AgentErrorEvent,
    AgentExecutionState,
    AgentProgressEvent,
    AgentStartedEvent,
    AgentStatus,
    AllCompleteEvent,
    BaseEvent,
    CityCompleteEvent,
    CityIntelligence,
    CityIntelligenceSnapshot,
    CityStatus,
    ConnectedEvent,
    ErrorEvent,
    HeartbeatEvent,
    IntelligenceError,
    OrchestratorGoalEvent,
    OrchestratorPhase,
    OrchestratorPlanEvent,
    RefinementStartedEvent,
    ReflectionEvent,
    field_for_agent,
)

from .progress import overall_progress
from .state import IntelligenceState

logger = structlog.get_logger(__name__)

# Snapshot fields that never overwrite the arrived record directly
_SNAPSHOT_SKIP = frozenset({"city_id", "status"})

_FINISHED_AGENT = frozenset({AgentStatus.COMPLETED.value, AgentStatus.FAILED.value})


# ============================================================================
# Helpers
# ============================================================================


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def _advance_status(current: str, target: str) -> str:
    """Return target unless it would lower the city's status rank."""
    return target if CITY_STATUS_RANK[target] >= CITY_STATUS_RANK[current] else current


def _phase(state: IntelligenceState, phase: OrchestratorPhase) -> str | None:
    if state.current_phase == OrchestratorPhase.COMPLETE:
        return state.current_phase
    return phase.value


def _city(state: IntelligenceState, city_id: str) -> CityIntelligence:
    """Existing record, or a bare one for a city first seen on the wire."""
    city = state.city_intelligence.get(city_id)
    if city is None:
        logger.debug("reducer.city_created", city_id=city_id)
        city = CityIntelligence(city_id=city_id)
    return city


def _put_city(state: IntelligenceState, city: CityIntelligence, **changes) -> IntelligenceState:
    return state.model_copy(
        update={"city_intelligence": {**state.city_intelligence, city.city_id: city}, **changes}
    )


def _agent(state: IntelligenceState, city_id: str, agent: str) -> AgentExecutionState:
    existing = state.agent_states.get(city_id, {}).get(agent)
    return existing if existing is not None else AgentExecutionState(agent_name=agent)


def _put_agent(
    state: IntelligenceState,
    city_id: str,
    agent: AgentExecutionState,
    **changes,
) -> IntelligenceState:
    """Store an agent record, creating the city record if this is its first event."""
    city_agents = {**state.agent_states.get(city_id, {}), agent.agent_name: agent}
    update = {"agent_states": {**state.agent_states, city_id: city_agents}, **changes}
    if city_id not in state.city_intelligence and "city_intelligence" not in changes:
        update["city_intelligence"] = {**state.city_intelligence, city_id: _city(state, city_id)}
    return state.model_copy(update=update)


def _merge_snapshot(snapshot: CityIntelligenceSnapshot) -> dict:
    """Present, non-null snapshot fields win; everything else keeps its arrived value."""
    updates = {}
    for name in CityIntelligenceSnapshot.model_fields:
        if name in _SNAPSHOT_SKIP:
            continue
        value = getattr(snapshot, name)
        if value is not None:
            updates[name] = value
    return updates


# ============================================================================
# Handlers
# ============================================================================


def _on_connected(state: IntelligenceState, event: ConnectedEvent) -> IntelligenceState:
    return state.model_copy(update={"session_id": event.session_id, "is_connected": True})


def _on_goal(state: IntelligenceState, event: OrchestratorGoalEvent) -> IntelligenceState:
    update = {"current_phase": _phase(state, OrchestratorPhase.PLANNING)}
    if state.goal is None:
        update["goal"] = event.goal
    else:
        logger.debug("reducer.goal_ignored", reason="goal already set")
    return state.model_copy(update=update)


def _on_plan(state: IntelligenceState, event: OrchestratorPlanEvent) -> IntelligenceState:
    city = _city(state, event.city_id)
    city = city.model_copy(update={"status": _advance_status(city.status, CityStatus.PROCESSING.value)})
    return _put_city(
        state,
        city,
        current_phase=_phase(state, OrchestratorPhase.EXECUTING),
        current_city_id=event.city_id,
    )


def _on_agent_started(state: IntelligenceState, event: AgentStartedEvent) -> IntelligenceState:
    agent = _agent(state, event.city_id, event.agent).model_copy(
        update={
            "status": AgentStatus.RUNNING.value,
            "progress": 0,
            "start_time": event.timestamp,
            "end_time": None,
            "error": None,
        }
    )
    return _put_agent(state, event.city_id, agent)


def _on_agent_progress(state: IntelligenceState, event: AgentProgressEvent) -> IntelligenceState:
    agent = _agent(state, event.city_id, event.agent)
    if agent.status in _FINISHED_AGENT:
        logger.debug("reducer.progress_ignored", city_id=event.city_id, agent=event.agent, status=agent.status)
        return state

    update = {"progress": _clamp(max(agent.progress, event.progress))}
    if agent.status == AgentStatus.PENDING:
        # Progress without a preceding agent_started still means it runs
        update["status"] = AgentStatus.RUNNING.value
        update["start_time"] = agent.start_time or event.timestamp
    return _put_agent(state, event.city_id, agent.model_copy(update=update))


def _on_agent_complete(state: IntelligenceState, event: AgentCompleteEvent) -> IntelligenceState:
    agent = _agent(state, event.city_id, event.agent).model_copy(
        update={
            "status": AgentStatus.COMPLETED.value,
            "progress": 100,
            "end_time": event.timestamp,
            "output": event.output,
            "error": None,
        }
    )

    city = _city(state, event.city_id)
    field = field_for_agent(event.agent)
    if event.output.success and field is not None and event.output.data is not None:
        city = city.model_copy(update={field: event.output.data, "last_updated_at": event.timestamp})
    elif field is None:
        logger.debug("reducer.agent_without_field", agent=event.agent)

    return _put_agent(
        state,
        event.city_id,
        agent,
        city_intelligence={**state.city_intelligence, city.city_id: city},
    )


def _on_agent_error(state: IntelligenceState, event: AgentErrorEvent) -> IntelligenceState:
    agent = _agent(state, event.city_id, event.agent).model_copy(
        update={
            "status": AgentStatus.FAILED.value,
            "error": event.error,
            "end_time": event.timestamp,
        }
    )
    error = IntelligenceError(
        city_id=event.city_id,
        agent=event.agent,
        message=event.error,
        timestamp=event.timestamp,
    )
    return _put_agent(state, event.city_id, agent, errors=[*state.errors, error])


def _on_reflection(state: IntelligenceState, event: ReflectionEvent) -> IntelligenceState:
    city = _city(state, event.city_id)
    if event.reflection is not None and event.reflection.quality_score is not None:
        city = city.model_copy(update={"quality": _clamp(event.reflection.quality_score)})
    return _put_city(state, city, current_phase=_phase(state, OrchestratorPhase.REFLECTING))


def _on_refinement(state: IntelligenceState, event: RefinementStartedEvent) -> IntelligenceState:
    city = _city(state, event.city_id)
    if event.plan is not None:
        city = city.model_copy(update={"iterations": max(city.iterations, event.plan.iteration)})
    return _put_city(state, city, current_phase=_phase(state, OrchestratorPhase.REFINING))


def _on_city_complete(state: IntelligenceState, event: CityCompleteEvent) -> IntelligenceState:
    city = _city(state, event.city_id)
    updates = _merge_snapshot(event.intelligence)
    updates["status"] = _advance_status(city.status, CityStatus.COMPLETE.value)
    updates.setdefault("last_updated_at", event.timestamp)
    city = city.model_copy(update=updates)

    cities = {**state.city_intelligence, city.city_id: city}
    progress = max(state.overall_progress, overall_progress(cities.values()))
    return state.model_copy(update={"city_intelligence": cities, "overall_progress": progress})


def _on_all_complete(state: IntelligenceState, event: AllCompleteEvent) -> IntelligenceState:
    update = {
        "is_processing": False,
        "is_connected": False,
        "current_phase": OrchestratorPhase.COMPLETE.value,
        "overall_progress": 100,
    }
    if event.summary is not None:
        update["completion_summary"] = event.summary
    return state.model_copy(update=update)


def _on_error(state: IntelligenceState, event: ErrorEvent) -> IntelligenceState:
    error = IntelligenceError(city_id=event.city_id, message=event.error, timestamp=event.timestamp)
    update = {"errors": [*state.errors, error]}
    if not event.recoverable:
        update["is_processing"] = False
        update["is_connected"] = False
    return state.model_copy(update=update)


def _on_heartbeat(state: IntelligenceState, event: HeartbeatEvent) -> IntelligenceState:
    return state


_HANDLERS: dict[type, Callable[[IntelligenceState, BaseEvent], IntelligenceState]] = {
    ConnectedEvent: _on_connected,
    OrchestratorGoalEvent: _on_goal,
    OrchestratorPlanEvent: _on_plan,
    AgentStartedEvent: _on_agent_started,
    AgentProgressEvent: _on_agent_progress,
    AgentCompleteEvent: _on_agent_complete,
    AgentErrorEvent: _on_agent_error,
    ReflectionEvent: _on_reflection,
    RefinementStartedEvent: _on_refinement,
    CityCompleteEvent: _on_city_complete,
    AllCompleteEvent: _on_all_complete,
    ErrorEvent: _on_error,
    HeartbeatEvent: _on_heartbeat,
}


def reduce(state: IntelligenceState, event: BaseEvent) -> IntelligenceState:
    """Apply one event and return the new state.

    Events of a type this client does not handle (UnknownEvent included)
    are logged and leave the state unchanged.
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        logger.warning("reducer.unknown_event", type=event.type)
        return state
    return handler(state, event)


def reduce_all(state: IntelligenceState, events) -> IntelligenceState:
    """Fold a sequence of events into state, in order."""
    for event in events:
        state = reduce(state, event)
    return state
