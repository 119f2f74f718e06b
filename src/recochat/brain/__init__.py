"""
brain/ — Service protocol and reply interpretation

Component overview:
    types               Pydantic models shared across the package
    classifier          Transient vs. terminal error classification
    payload             Tolerant agent-payload parser (JSON, fenced JSON, prose)
    transport           HTTP client for the recommendation agent endpoint
"""

from recochat.brain.classifier import Classification, classify, is_transient
from recochat.brain.payload import extract_json, parse_payload
from recochat.brain.transport import AgentTransport, HttpAgentTransport
from recochat.brain.types import (
    AgentReply,
    ChatMessage,
    ParsedPayload,
    Recommendation,
    Role,
    Session,
    SessionStatus,
    TransportResult,
)

__all__ = [
    "AgentReply",
    "AgentTransport",
    "ChatMessage",
    "Classification",
    "HttpAgentTransport",
    "ParsedPayload",
    "Recommendation",
    "Role",
    "Session",
    "SessionStatus",
    "TransportResult",
    "classify",
    "extract_json",
    "is_transient",
    "parse_payload",
]
