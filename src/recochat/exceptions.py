"""
exceptions.py — RecoChat Unified Error Hierarchy

All RecoChat-specific exceptions live here. Every layer raises typed
subclasses of RecoChatError — never bare Exception.

Import from here, not from individual modules:
    from recochat.exceptions import StorageError, SessionNotFoundError

Hierarchy:
    RecoChatError
    ├── StorageError
    └── SessionNotFoundError

The transport does not raise for HTTP or network failures; it folds them
into a TransportResult (recochat.brain.types). ConfigError is defined next
to the settings it validates (recochat.config.settings).
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class RecoChatError(Exception):
    """Base class for all RecoChat exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Persistence layer
# ─────────────────────────────────────────────────────────────────────────────

class StorageError(RecoChatError):
    """A durable storage write failed (disk full, permissions, ...)."""


class SessionNotFoundError(RecoChatError):
    """No persisted session exists with the requested id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"No saved session with id '{session_id}'")


__all__ = [
    "RecoChatError",
    "StorageError",
    "SessionNotFoundError",
]
