"""
agent/session.py — Active conversation state

One Conversation exists for the session the user is currently talking in.
It holds the ordered message list, the single-flight flag, and the last
failed turn (error text plus the user text to replay on retry).

The persisted form of a conversation is a brain.types.Session, produced by
the SessionStore from this object's messages.
"""

from __future__ import annotations

from typing import Callable, Optional

from recochat.brain.types import ChatMessage, Session, generate_id
from recochat.observability.logger import get_logger

log = get_logger(__name__)


class Conversation:
    """Per-session runtime state owned by the orchestrator."""

    def __init__(self, session_id: str, messages: Optional[list[ChatMessage]] = None):
        self.id = session_id
        self.messages: list[ChatMessage] = list(messages or [])
        self.in_flight: bool = False
        self.last_error: Optional[str] = None
        self.last_user_text: Optional[str] = None
        self.turn_count: int = sum(1 for m in self.messages if m.role == "user")

        log.debug("conversation.created", session_id=session_id, messages=len(self.messages))

    # ── Factories ─────────────────────────────────────────────────────────────

    @classmethod
    def create(cls, id_factory: Callable[[], str] = generate_id) -> "Conversation":
        return cls(session_id=id_factory())

    @classmethod
    def from_session(cls, session: Session) -> "Conversation":
        return cls(session_id=session.id, messages=session.messages)

    # ── Message helpers ───────────────────────────────────────────────────────

    def append(self, message: ChatMessage) -> None:
        self.messages = [*self.messages, message]
        if message.role == "user":
            self.turn_count += 1

    @property
    def last_timestamp(self) -> Optional[int]:
        return self.messages[-1].timestamp if self.messages else None

    @property
    def is_empty(self) -> bool:
        return not self.messages

    @property
    def recommendation_count(self) -> int:
        return sum(m.recommendation_count for m in self.messages)

    def snapshot(self) -> list[ChatMessage]:
        return list(self.messages)

    def __repr__(self) -> str:
        return f"<Conversation id={self.id} messages={len(self.messages)} in_flight={self.in_flight}>"
