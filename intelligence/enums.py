"""Enums for the city intelligence system

Provides enums used by the wire protocol, the aggregate state, and the
stream connection. These are shared between the client and the replay server.
"""

from enum import Enum


class OrchestratorPhase(str, Enum):
    """Phase reported by the backend orchestrator."""

    PLANNING = "planning"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    REFINING = "refining"
    COMPLETE = "complete"


class CityStatus(str, Enum):
    """Lifecycle of one city's intelligence record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


# A city may only move to an equal or higher rank
CITY_STATUS_RANK: dict[str, int] = {
    CityStatus.PENDING.value: 0,
    CityStatus.PROCESSING.value: 1,
    CityStatus.FAILED.value: 2,
    CityStatus.COMPLETE.value: 3,
}


class AgentStatus(str, Enum):
    """Execution status of a single (city, agent) pair."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentName(str, Enum):
    """Backend agents, one per facet of a city's intelligence."""

    TIME = "TimeAgent"
    STORY = "StoryAgent"
    PREFERENCE = "PreferenceAgent"
    CLUSTER = "ClusterAgent"
    GEMS = "GemsAgent"
    LOGISTICS = "LogisticsAgent"
    WEATHER = "WeatherAgent"
    PHOTO = "PhotoAgent"
    SYNTHESIS = "SynthesisAgent"


class EventType(str, Enum):
    """Event types emitted on the intelligence stream.

    Orchestrator lifecycle:
    - CONNECTED: first event, carries the server-assigned sessionId
    - ORCHESTRATOR_GOAL: immutable goal for the run
    - ORCHESTRATOR_PLAN: execution plan for one city
    - ALL_COMPLETE: every city finished

    Agent lifecycle:
    - AGENT_STARTED / AGENT_PROGRESS / AGENT_COMPLETE / AGENT_ERROR

    Quality loop:
    - REFLECTION: quality assessment of a city
    - REFINEMENT_STARTED: agents re-run with refinement instructions
    - CITY_COMPLETE: final snapshot for one city

    Other:
    - ERROR: session-level error, optionally non-recoverable
    - HEARTBEAT: keep-alive with no payload
    """

    CONNECTED = "connected"
    ORCHESTRATOR_GOAL = "orchestrator_goal"
    ORCHESTRATOR_PLAN = "orchestrator_plan"
    AGENT_STARTED = "agent_started"
    AGENT_PROGRESS = "agent_progress"
    AGENT_COMPLETE = "agent_complete"
    AGENT_ERROR = "agent_error"
    REFLECTION = "reflection"
    REFINEMENT_STARTED = "refinement_started"
    CITY_COMPLETE = "city_complete"
    ALL_COMPLETE = "all_complete"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


class ConnectionStatus(str, Enum):
    """State machine of the stream connection manager."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    ERROR = "error"


class DeepDiveTopic(str, Enum):
    """Topics a user can ask a follow-up question about."""

    RESTAURANTS = "restaurants"
    NIGHTLIFE = "nightlife"
    PHOTOGRAPHY = "photography"
    WALKING = "walking"
    SHOPPING = "shopping"
    NATURE = "nature"
    TIMING = "timing"
    PARKING = "parking"
    HIDDEN_GEMS = "hidden_gems"
    WEATHER = "weather"
    CUSTOM = "custom"


class FeedbackRating(str, Enum):
    """Ratings accepted by the feedback endpoint."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    LOVE = "love"
    GOOD = "good"
    OKAY = "okay"
    POOR = "poor"
