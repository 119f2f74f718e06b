"""
memory/ — Conversation persistence

Public API:
    from recochat.memory import SessionStore, JsonFileStorage, MemoryStorage
"""

from recochat.memory.session_store import SessionStore, summarize_session
from recochat.memory.storage import JsonFileStorage, KeyValueStorage, MemoryStorage

__all__ = [
    "JsonFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "SessionStore",
    "summarize_session",
]
