"""
agent/ — RecoChat Turn Core

Public API:
    from recochat.agent import TurnOrchestrator, TurnOutcome, Conversation

Component overview:
    Conversation        Active conversation state (messages, in-flight flag, last error)
    TurnOrchestrator    One turn: send → classify → back off → parse → persist
"""

from recochat.agent.orchestrator import (
    RetryPolicy,
    Turn,
    TurnOrchestrator,
    TurnOutcome,
    TurnState,
    TurnStatus,
)
from recochat.agent.session import Conversation

__all__ = [
    "Conversation",
    "RetryPolicy",
    "Turn",
    "TurnOrchestrator",
    "TurnOutcome",
    "TurnState",
    "TurnStatus",
]
