"""
brain/types.py — RecoChat Data Models

Shared types used by the transport, the payload parser, the orchestrator and
the session store. Persisted JSON keeps the camelCase field names the stored
collection has always used; Python code uses the snake_case attributes.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id() -> str:
    return str(uuid.uuid4())


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


# ─────────────────────────────────────────────────────────────────────────────
# Recommendation
# ─────────────────────────────────────────────────────────────────────────────


def _as_text(v: Any) -> Optional[str]:
    if v is None:
        return None
    if isinstance(v, str):
        return v
    if isinstance(v, (int, float, bool)):
        return str(v)
    return None


def _as_text_list(v: Any) -> Optional[list[str]]:
    if v is None:
        return None
    if not isinstance(v, list):
        return []
    return [str(item) for item in v if item is not None and str(item).strip()]


class Recommendation(BaseModel):
    """
    One product suggested by the service. Every field is optional; the
    service is free to leave any of them out. Unknown keys are kept so a
    newer service can add fields without the client dropping them.
    """
    model_config = ConfigDict(extra="allow")

    product_name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    match_reason: Optional[str] = None
    promotion: Optional[str] = None
    industry_tags: Optional[list[str]] = None
    use_case_tags: Optional[list[str]] = None

    @field_validator(
        "product_name", "description", "price", "match_reason", "promotion",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, v: Any) -> Optional[str]:
        return _as_text(v)

    @field_validator("industry_tags", "use_case_tags", mode="before")
    @classmethod
    def _coerce_tags(cls, v: Any) -> Optional[list[str]]:
        return _as_text_list(v)

    @property
    def tags(self) -> list[str]:
        return list(self.industry_tags or []) + list(self.use_case_tags or [])


# ─────────────────────────────────────────────────────────────────────────────
# Messages and sessions
# ─────────────────────────────────────────────────────────────────────────────


class ChatMessage(BaseModel):
    """A single message in a conversation."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    role: Role
    content: str = ""
    recommendations: Optional[list[Recommendation]] = None
    follow_up_suggestions: Optional[list[str]] = Field(
        default=None, alias="followUpSuggestions"
    )
    timestamp: int

    @classmethod
    def user(cls, content: str, *, id: str, timestamp: int) -> "ChatMessage":
        return cls(id=id, role=Role.USER, content=content, timestamp=timestamp)

    @classmethod
    def assistant(
        cls,
        content: str,
        *,
        id: str,
        timestamp: int,
        recommendations: Optional[list[Recommendation]] = None,
        follow_up_suggestions: Optional[list[str]] = None,
    ) -> "ChatMessage":
        return cls(
            id=id,
            role=Role.ASSISTANT,
            content=content,
            recommendations=list(recommendations or []),
            follow_up_suggestions=list(follow_up_suggestions or []),
            timestamp=timestamp,
        )

    @property
    def recommendation_count(self) -> int:
        return len(self.recommendations or [])


class Session(BaseModel):
    """A persisted conversation plus the fields derived from its messages."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: int = Field(alias="createdAt")
    updated_at: int = Field(alias="updatedAt")
    first_message_preview: str = Field(default="", alias="firstMessagePreview")
    recommendation_count: int = Field(default=0, alias="recommendationCount")
    status: SessionStatus = SessionStatus.ACTIVE

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ─────────────────────────────────────────────────────────────────────────────
# Wire types
# ─────────────────────────────────────────────────────────────────────────────


class AgentReply(BaseModel):
    """The `response` object of a turn reply. `result` may be text or an object."""
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    message: Optional[str] = None
    result: Any = None

    @field_validator("status", "message", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> Optional[str]:
        return _as_text(v)


class TransportResult(BaseModel):
    """
    Uniform outcome of one call to the recommendation service.

    takeover_document is set when the server answered with a full HTML page
    meant to replace the client UI; such a result is never retried.
    """
    success: bool
    response: Optional[AgentReply] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    takeover_document: Optional[str] = None

    @classmethod
    def failure(
        cls,
        error: str,
        *,
        status_code: Optional[int] = None,
        message: Optional[str] = None,
    ) -> "TransportResult":
        return cls(
            success=False,
            response=AgentReply(status="error", result={}, message=message or error),
            error=error,
            status_code=status_code,
        )

    @property
    def is_takeover(self) -> bool:
        return self.takeover_document is not None


class ParsedPayload(BaseModel):
    """Normalized agent payload — the only shape downstream code consumes."""
    message: str
    recommendations: list[Recommendation] = Field(default_factory=list)
    follow_up_suggestions: list[str] = Field(default_factory=list)
