"""
memory/session_store.py — Persisted session collection

Owns the list of saved sessions (most recent first) and is its only writer.
The collection is read once at startup with load_all() and written back as
one serialized blob after every mutation. Each mutation runs under an
asyncio.Lock so concurrent turns on different sessions never interleave a
read-modify-write.

Bad persisted state never takes the app down: a corrupt or non-list blob
loads as an empty collection, and failed writes are logged while the
in-memory collection keeps serving the current process.
"""

from __future__ import annotations

import asyncio
import json
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from recochat.brain.types import ChatMessage, Role, Session, SessionStatus, now_ms
from recochat.exceptions import StorageError
from recochat.memory.storage import KeyValueStorage
from recochat.observability.logger import get_logger

log = get_logger(__name__)

SESSIONS_KEY = "product-rec-sessions"
PREVIEW_CHARS = 80


def summarize_session(
    session_id: str,
    messages: Iterable[ChatMessage],
    status: SessionStatus = SessionStatus.ACTIVE,
    now: Optional[int] = None,
) -> Session:
    """Build a Session, deriving its aggregate fields from the messages."""
    msgs = list(messages)
    ts = now if now is not None else now_ms()
    first_user = next((m for m in msgs if m.role == Role.USER), None)
    return Session(
        id=session_id,
        messages=msgs,
        created_at=msgs[0].timestamp if msgs else ts,
        updated_at=msgs[-1].timestamp if msgs else ts,
        first_message_preview=(first_user.content or "")[:PREVIEW_CHARS] if first_user else "",
        recommendation_count=sum(m.recommendation_count for m in msgs),
        status=status,
    )


class SessionStore:
    """
    Persisted, most-recent-first session collection.

    Args:
        storage: Durable key/value backend.
        key:     Storage key holding the serialized collection.
        clock:   Epoch-ms clock used for sessions with no messages.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = SESSIONS_KEY,
        clock: Callable[[], int] = now_ms,
    ):
        self._storage = storage
        self._key = key
        self._clock = clock
        self._sessions: list[Session] = []
        self._lock = asyncio.Lock()
        self._loaded = False

    # ── Load ──────────────────────────────────────────────────────────────────

    def load_all(self) -> list[Session]:
        """Read the persisted collection. Never raises."""
        self._sessions = self._read()
        self._loaded = True
        log.info("session_store.loaded", count=len(self._sessions))
        return list(self._sessions)

    def _read(self) -> list[Session]:
        try:
            blob = self._storage.get_item(self._key)
        except (StorageError, OSError) as e:
            log.warning("session_store.read_failed", error=str(e))
            return []
        if not blob:
            return []
        try:
            data = json.loads(blob)
        except (ValueError, TypeError, RecursionError):
            log.warning("session_store.corrupt_blob", key=self._key)
            return []
        if not isinstance(data, list):
            log.warning("session_store.not_a_list", key=self._key, type=type(data).__name__)
            return []

        sessions: list[Session] = []
        for entry in data:
            try:
                sessions.append(Session.model_validate(entry))
            except ValidationError as e:
                log.warning("session_store.entry_skipped", error_count=e.error_count())
        return sessions

    # ── Queries ───────────────────────────────────────────────────────────────

    @property
    def loaded(self) -> bool:
        return self._loaded

    def list_sessions(self) -> list[Session]:
        return list(self._sessions)

    def get(self, session_id: str) -> Optional[Session]:
        return next((s for s in self._sessions if s.id == session_id), None)

    def search(self, query: str) -> list[Session]:
        """Sessions whose preview or any message contains `query`, case-insensitive."""
        q = (query or "").strip().lower()
        if not q:
            return self.list_sessions()
        return [
            s for s in self._sessions
            if q in s.first_message_preview.lower()
            or any(q in (m.content or "").lower() for m in s.messages)
        ]

    def __len__(self) -> int:
        return len(self._sessions)

    # ── Mutations ─────────────────────────────────────────────────────────────

    async def upsert(
        self,
        session_id: str,
        messages: Iterable[ChatMessage],
        status: SessionStatus = SessionStatus.ACTIVE,
    ) -> Session:
        """Replace the session in place if present, otherwise prepend it."""
        session = summarize_session(session_id, messages, status=status, now=self._clock())
        async with self._lock:
            self._ensure_loaded()
            updated = list(self._sessions)
            idx = next((i for i, s in enumerate(updated) if s.id == session_id), None)
            if idx is None:
                updated.insert(0, session)
            else:
                updated[idx] = session
            self._sessions = updated
            self._save()
        log.debug(
            "session_store.upserted",
            session_id=session_id,
            messages=len(session.messages),
            recommendations=session.recommendation_count,
            inserted=idx is None,
        )
        return session

    async def delete(self, session_id: str) -> bool:
        """Remove exactly one session. Returns True if it existed."""
        async with self._lock:
            self._ensure_loaded()
            remaining = [s for s in self._sessions if s.id != session_id]
            removed = len(remaining) != len(self._sessions)
            if removed:
                self._sessions = remaining
                self._save()
        log.info("session_store.deleted", session_id=session_id, removed=removed)
        return removed

    async def set_status(self, session_id: str, status: SessionStatus) -> Optional[Session]:
        """Change a saved session's status; returns None for unknown ids."""
        async with self._lock:
            self._ensure_loaded()
            for i, s in enumerate(self._sessions):
                if s.id == session_id:
                    changed = s.model_copy(update={"status": status})
                    updated = list(self._sessions)
                    updated[i] = changed
                    self._sessions = updated
                    self._save()
                    return changed
        return None

    def _ensure_loaded(self) -> None:
        # Writing before the first read would replace the persisted blob.
        if not self._loaded:
            self.load_all()

    def _save(self) -> None:
        """Serialize the whole collection under the key. Failures are swallowed."""
        try:
            blob = json.dumps([s.to_storage() for s in self._sessions], ensure_ascii=False)
            self._storage.set_item(self._key, blob)
        except (StorageError, OSError, TypeError, ValueError) as e:
            log.warning(
                "session_store.save_failed",
                error=str(e),
                error_type=type(e).__name__,
                count=len(self._sessions),
            )
            return
        log.debug("session_store.saved", count=len(self._sessions))
