"""Replay server for city intelligence

This package contains a FastAPI server that replays scripted or recorded
event streams over the city intelligence wire protocol, plus its REST
response payloads. It is a development and test double for the real
backend and is not needed by the client.
"""

from .app import ReplaySession, app, create_app
from .payloads import CancelResponse, DeepDiveAnswer, FeedbackAck
from .script import DEFAULT_AGENTS, build_session_script, load_recorded_script

__all__ = [
    "app",
    "create_app",
    "ReplaySession",
    # Scripts
    "DEFAULT_AGENTS",
    "build_session_script",
    "load_recorded_script",
    # Payloads
    "CancelResponse",
    "DeepDiveAnswer",
    "FeedbackAck",
]
