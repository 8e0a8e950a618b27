"""Wire model and event parsing tests

These tests verify the event envelope the stream carries:
- camelCase on the wire, snake_case attributes
- discriminated parsing by `type`
- unknown types tolerated, invalid shapes rejected
- `recoverable` defaults to True on error events
- the agent -> field table covers every agent exactly once
"""

import json

import pytest
from pydantic import ValidationError

from intelligence import (
    AGENT_FIELD_MAP,
    NO_FIELD,
    RESULT_FIELDS,
    AgentCompleteEvent,
    AgentName,
    AgentOutput,
    CityCompleteEvent,
    ConnectedEvent,
    ErrorEvent,
    FieldMapError,
    StartIntelligenceRequest,
    UnknownEvent,
    encode_frame,
    field_for_agent,
    parse_event,
    validate_field_map,
)


class TestParseEvent:
    """Test dict -> typed event validation."""

    def test_connected_event_reads_camel_case(self):
        """sessionId on the wire populates session_id."""
        event = parse_event({"type": "connected", "sessionId": "s-1", "timestamp": "2024-05-01T10:00:00Z"})
        assert isinstance(event, ConnectedEvent)
        assert event.session_id == "s-1"

    def test_agent_complete_carries_output(self):
        """agent_complete validates its nested AgentOutput."""
        event = parse_event({
            "type": "agent_complete",
            "cityId": "paris",
            "agent": "StoryAgent",
            "output": {"success": True, "data": {"hook": "x"}, "confidence": 90},
        })
        assert isinstance(event, AgentCompleteEvent)
        assert event.output.success is True
        assert event.output.data == {"hook": "x"}

    def test_timestamp_defaults_when_missing(self):
        """Events without a timestamp still parse."""
        event = parse_event({"type": "heartbeat"})
        assert event.timestamp is not None

    def test_unknown_type_becomes_unknown_event(self):
        """A newer backend's event type does not raise."""
        event = parse_event({"type": "agent_thinking", "cityId": "paris"})
        assert isinstance(event, UnknownEvent)
        assert event.type == "agent_thinking"
        assert event.payload["cityId"] == "paris"

    def test_known_type_with_bad_shape_raises(self):
        """agent_progress without a progress value is invalid."""
        with pytest.raises(ValidationError):
            parse_event({"type": "agent_progress", "cityId": "paris", "agent": "TimeAgent"})

    def test_non_object_payload_raises(self):
        """A JSON array is not an event."""
        with pytest.raises(ValueError):
            parse_event(["connected"])

    def test_error_recoverable_defaults_true(self):
        """Only an explicit recoverable: false is fatal."""
        event = parse_event({"type": "error", "error": "slow backend"})
        assert isinstance(event, ErrorEvent)
        assert event.recoverable is True

        fatal = parse_event({"type": "error", "error": "quota", "recoverable": False})
        assert fatal.recoverable is False

    def test_city_complete_snapshot_fields_optional(self):
        """city_complete may carry a partial snapshot."""
        event = parse_event({"type": "city_complete", "cityId": "rome", "intelligence": {"quality": 88}})
        assert isinstance(event, CityCompleteEvent)
        assert event.intelligence.quality == 88
        assert event.intelligence.story is None


class TestEncodeFrame:
    """Test typed event -> SSE frame encoding."""

    def test_frame_format(self):
        """Frames are 'data: {...}' followed by a blank line."""
        frame = encode_frame(ConnectedEvent(session_id="s-1"))
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")

    def test_frame_uses_camel_case_and_drops_nulls(self):
        """Encoded JSON uses camelCase keys and omits None fields."""
        frame = encode_frame(ErrorEvent(error="boom"))
        data = json.loads(frame.removeprefix("data: ").rstrip())
        assert data["type"] == "error"
        assert data["recoverable"] is True
        assert "cityId" not in data
        assert "city_id" not in data

    def test_frame_parses_back_to_same_event(self):
        """An encoded frame decodes to an equal event."""
        event = AgentCompleteEvent(
            city_id="paris",
            agent="GemsAgent",
            output=AgentOutput(success=True, data=[{"name": "courtyard"}], execution_time_ms=12.5),
        )
        data = json.loads(encode_frame(event).removeprefix("data: ").rstrip())
        assert parse_event(data) == event


class TestStartRequest:
    """Test the /start request body."""

    def test_payload_is_camel_case(self):
        request = StartIntelligenceRequest(
            cities=[{"id": "paris", "name": "Paris", "country": "France"}],
            nights={"paris": 2},
            session_id="s-1",
        )
        payload = request.to_payload()
        assert payload["sessionId"] == "s-1"
        assert payload["cities"][0]["id"] == "paris"
        assert payload["nights"] == {"paris": 2}

    def test_session_id_omitted_when_absent(self):
        request = StartIntelligenceRequest(cities=[])
        assert "sessionId" not in request.to_payload()


class TestFieldMap:
    """Test the agent -> result field table."""

    def test_every_agent_is_mapped(self):
        assert set(AGENT_FIELD_MAP) == {a.value for a in AgentName}

    def test_fields_claimed_once(self):
        claimed = [f for f in AGENT_FIELD_MAP.values() if f is not NO_FIELD]
        assert len(claimed) == len(set(claimed))
        assert set(claimed) <= set(RESULT_FIELDS)

    def test_synthesis_agent_has_no_field(self):
        assert field_for_agent("SynthesisAgent") is NO_FIELD

    def test_unknown_agent_has_no_field(self):
        assert field_for_agent("TranslatorAgent") is None

    def test_known_mappings(self):
        assert field_for_agent("TimeAgent") == "time_blocks"
        assert field_for_agent("PreferenceAgent") == "match_score"
        assert field_for_agent("PhotoAgent") == "photo_spots"

    def test_missing_agent_rejected(self):
        table = dict(AGENT_FIELD_MAP)
        del table["WeatherAgent"]
        with pytest.raises(FieldMapError, match="WeatherAgent"):
            validate_field_map(table)

    def test_duplicate_field_rejected(self):
        table = dict(AGENT_FIELD_MAP)
        table["WeatherAgent"] = "story"
        with pytest.raises(FieldMapError, match="claimed by both"):
            validate_field_map(table)

    def test_unknown_field_rejected(self):
        table = dict(AGENT_FIELD_MAP)
        table["WeatherAgent"] = "forecast"
        with pytest.raises(FieldMapError, match="unknown field"):
            validate_field_map(table)

    def test_unknown_agent_rejected(self):
        table = {**AGENT_FIELD_MAP, "TranslatorAgent": NO_FIELD}
        with pytest.raises(FieldMapError, match="TranslatorAgent"):
            validate_field_map(table)
