"""
tests/unit/test_session.py — Conversation State Tests
"""

from __future__ import annotations

from recochat.agent.session import Conversation
from recochat.brain.types import ChatMessage, Recommendation
from recochat.memory.session_store import summarize_session


def test_create_uses_id_factory():
    conv = Conversation.create(lambda: "fixed")
    assert conv.id == "fixed"
    assert conv.is_empty
    assert conv.in_flight is False
    assert conv.last_timestamp is None


def test_append_is_copy_on_write():
    conv = Conversation("s")
    snapshot = conv.snapshot()
    conv.append(ChatMessage.user("hi", id="m1", timestamp=5))
    assert snapshot == []
    assert conv.turn_count == 1
    assert conv.last_timestamp == 5


def test_from_session():
    msgs = [
        ChatMessage.user("Need a CRM", id="m1", timestamp=1),
        ChatMessage.assistant("Here", id="m2", timestamp=2,
                              recommendations=[Recommendation(product_name="X")]),
    ]
    conv = Conversation.from_session(summarize_session("s1", msgs))
    assert conv.id == "s1"
    assert conv.turn_count == 1
    assert conv.recommendation_count == 1
    assert conv.last_error is None
