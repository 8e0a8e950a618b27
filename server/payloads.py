"""REST API response payload types for the replay server

Request bodies reuse the wire types from intelligence.types:
- /start: StartIntelligenceRequest (streaming, uses intelligence.events)
- /deep-dive: DeepDiveRequest -> DeepDiveAnswer
- /feedback: FeedbackRequest -> FeedbackAck
- /cancel/{session_id}: -> CancelResponse
"""

from intelligence import WireModel


class DeepDiveAnswer(WireModel):
    """Response for the /deep-dive endpoint."""

    response: str


class FeedbackAck(WireModel):
    """Response for the /feedback endpoint."""

    success: bool = True


class CancelResponse(WireModel):
    """Response for the /cancel/{session_id} endpoint.

    cancelled is False for unknown or already finished sessions.
    """

    session_id: str
    cancelled: bool
