"""Agent -> CityIntelligence field table

Each agent's successful output is merged into exactly one result field of
the city record. Agents that produce nothing user-visible on their own
(SynthesisAgent) map to the explicit NO_FIELD marker.

The table is data, not reducer logic, and is validated when this module is
imported so a missing or duplicated mapping fails at startup.
"""

from typing import Final, Mapping

from .enums import AgentName
from .types import RESULT_FIELDS

NO_FIELD: Final = None


class FieldMapError(ValueError):
    """The agent -> field table is incomplete or inconsistent."""


AGENT_FIELD_MAP: dict[str, str | None] = {
    AgentName.STORY.value: "story",
    AgentName.TIME.value: "time_blocks",
    AgentName.CLUSTER.value: "clusters",
    AgentName.PREFERENCE.value: "match_score",
    AgentName.GEMS.value: "hidden_gems",
    AgentName.LOGISTICS.value: "logistics",
    AgentName.WEATHER.value: "weather",
    AgentName.PHOTO.value: "photo_spots",
    AgentName.SYNTHESIS.value: NO_FIELD,
}


def validate_field_map(table: Mapping[str, str | None]) -> None:
    """Check that every AgentName maps to one result field or NO_FIELD.

    Raises:
        FieldMapError: an agent is missing, an entry names an unknown agent
            or field, or two agents claim the same field
    """
    agent_names = {a.value for a in AgentName}

    missing = agent_names - set(table)
    if missing:
        raise FieldMapError(f"Agents without a field mapping: {', '.join(sorted(missing))}")

    unknown = set(table) - agent_names
    if unknown:
        raise FieldMapError(f"Field mapping for unknown agents: {', '.join(sorted(unknown))}")

    claimed: dict[str, str] = {}
    for agent, field in table.items():
        if field is NO_FIELD:
            continue
        if field not in RESULT_FIELDS:
            raise FieldMapError(f"{agent} maps to unknown field '{field}'")
        if field in claimed:
            raise FieldMapError(f"Field '{field}' claimed by both {claimed[field]} and {agent}")
        claimed[field] = agent


def field_for_agent(agent: str) -> str | None:
    """Result field for an agent, or None for NO_FIELD and unknown agents."""
    return AGENT_FIELD_MAP.get(agent, NO_FIELD)


validate_field_map(AGENT_FIELD_MAP)
