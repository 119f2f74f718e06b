"""
agent/orchestrator.py — Turn Orchestrator

Drives one conversational turn against the recommendation service:

    IDLE → SENDING → COMPLETED
                   ↘ RETRYING → SENDING → ...
                   ↘ FAILED

For each turn the orchestrator:
    1. Rejects blank input and concurrent turns on the same conversation
    2. Appends the user message before any network attempt
    3. Calls the transport; on failure asks the classifier whether to retry
    4. Backs off attempt × base_delay between attempts (2 retries max)
    5. Parses a successful reply into an assistant message
    6. Upserts the conversation into the SessionStore (success or failure)

The retry loop keeps its attempt count and the delays it slept as data on
the Turn record, and sleeping goes through an injected coroutine, so tests
drive every path without real time passing.

Usage:
    orc = TurnOrchestrator(transport, store, agent_id="...")
    outcome = await orc.send("Need a CRM under $300/month")
    if outcome and outcome.failed:
        outcome = await orc.retry()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from recochat.agent.session import Conversation
from recochat.brain.classifier import Classification, classify
from recochat.brain.payload import DEFAULT_MESSAGE, parse_payload
from recochat.brain.transport import AgentTransport
from recochat.brain.types import (
    ChatMessage,
    ParsedPayload,
    TransportResult,
    generate_id,
    now_ms,
)
from recochat.exceptions import SessionNotFoundError
from recochat.memory.session_store import SessionStore
from recochat.observability.logger import bind_session, clear_session, get_logger

log = get_logger(__name__)

DEFAULT_ERROR = "An error occurred while getting recommendations."
THROWN_ERROR = "Network error. Please try again."

MAX_RETRIES = 2
BASE_DELAY_SECONDS = 2.0


# ─────────────────────────────────────────────────────────────────────────────
# Turn data
# ─────────────────────────────────────────────────────────────────────────────


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RetryPolicy:
    """Bounded linear backoff: wait attempt × base_delay after a transient failure."""
    max_retries: int = MAX_RETRIES
    base_delay: float = BASE_DELAY_SECONDS

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, attempt: int, transient: bool) -> bool:
        return transient and attempt <= self.max_retries

    def delay_after(self, attempt: int) -> float:
        return attempt * self.base_delay


@dataclass
class Turn:
    """Live record of one turn's progress through the state machine."""
    session_id: str
    user_text: str
    state: TurnState = TurnState.IDLE
    attempt: int = 0
    delays: list[float] = field(default_factory=list)
    last_error: Optional[str] = None
    transitions: list[TurnState] = field(default_factory=lambda: [TurnState.IDLE])

    def to(self, state: TurnState) -> None:
        self.state = state
        self.transitions.append(state)


@dataclass
class TurnOutcome:
    status: TurnStatus
    session_id: str
    messages: list[ChatMessage]
    attempts: int
    delays: list[float] = field(default_factory=list)
    error: Optional[str] = None
    user_text: Optional[str] = None
    takeover_document: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TurnStatus.COMPLETED

    @property
    def failed(self) -> bool:
        return self.status == TurnStatus.FAILED

    @property
    def assistant_message(self) -> Optional[ChatMessage]:
        if self.succeeded and self.messages:
            return self.messages[-1]
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Orchestrator
# ─────────────────────────────────────────────────────────────────────────────


class TurnOrchestrator:
    """
    Runs turns for the active conversation and persists their results.

    Args:
        transport:        Anything implementing AgentTransport.send().
        store:            The SessionStore that persists finished conversations.
        agent_id:         Agent identifier sent with every request.
        policy:           Retry ceiling and backoff base.
        classifier:       error text → Classification.
        parser:           (raw, fallback_message) → ParsedPayload.
        sleep:            Backoff coroutine, asyncio.sleep by default.
        clock:            Epoch-ms clock for message timestamps.
        id_factory:       Message/session id generator.
        on_state_change:  Called with the Turn after every transition.
    """

    def __init__(
        self,
        transport: AgentTransport,
        store: SessionStore,
        *,
        agent_id: str,
        policy: Optional[RetryPolicy] = None,
        classifier: Callable[[Optional[str]], Classification] = classify,
        parser: Callable[..., ParsedPayload] = parse_payload,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = generate_id,
        on_state_change: Optional[Callable[[Turn], None]] = None,
        conversation: Optional[Conversation] = None,
    ):
        self._transport = transport
        self._store = store
        self._agent_id = agent_id
        self._policy = policy or RetryPolicy()
        self._classify = classifier
        self._parse = parser
        self._sleep = sleep
        self._clock = clock
        self._new_id = id_factory
        self._on_state_change = on_state_change
        self._conversation = conversation or Conversation.create(id_factory)
        # Conversations with a turn in flight, by session id.
        self._live: dict[str, Conversation] = {}

    # ── Accessors ─────────────────────────────────────────────────────────────

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def session_id(self) -> str:
        return self._conversation.id

    @property
    def messages(self) -> list[ChatMessage]:
        return self._conversation.snapshot()

    @property
    def loading(self) -> bool:
        return self._conversation.in_flight

    @property
    def error(self) -> Optional[str]:
        return self._conversation.last_error

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    # ── Public: turns ─────────────────────────────────────────────────────────

    async def send(self, text: str) -> Optional[TurnOutcome]:
        """
        Run one turn on the active conversation.

        Returns None without touching any state when `text` is blank or a turn
        is already in flight on this conversation.
        """
        conv = self._conversation
        if not text or not text.strip():
            log.debug("turn.rejected", reason="empty_input", session_id=conv.id)
            return None
        if conv.in_flight:
            log.debug("turn.rejected", reason="in_flight", session_id=conv.id)
            return None

        conv.in_flight = True
        self._live[conv.id] = conv
        bind_session(conv.id)
        try:
            return await self._run_turn(conv, text)
        finally:
            conv.in_flight = False
            self._live.pop(conv.id, None)
            clear_session()

    async def retry(self) -> Optional[TurnOutcome]:
        """Replay the last failed turn's user text as a brand-new turn."""
        conv = self._conversation
        if not conv.last_error or not conv.last_user_text:
            return None
        return await self.send(conv.last_user_text)

    # ── Public: conversation lifecycle ────────────────────────────────────────

    async def new_session(self) -> Conversation:
        """
        Save the current conversation (if it has messages) and start a fresh one.

        A turn still running on the old conversation is not cancelled; it keeps
        its own reference and persists its result under the old id.
        """
        old = self._conversation
        if not old.is_empty:
            await self._store.upsert(old.id, old.snapshot())
        self._conversation = Conversation.create(self._new_id)
        log.info(
            "conversation.new",
            session_id=self._conversation.id,
            previous=old.id,
            previous_in_flight=old.in_flight,
        )
        return self._conversation

    def resume(self, session_id: str) -> Optional[Conversation]:
        """
        Continue a saved session as the active conversation.

        Returns None while a turn is in flight on the active conversation.
        A session whose turn is still running elsewhere is resumed as that
        same live Conversation, so its single-flight flag still applies.
        Raises SessionNotFoundError for an unknown id.
        """
        if self._conversation.in_flight:
            log.debug("conversation.resume_rejected", reason="in_flight")
            return None
        live = self._live.get(session_id)
        if live is not None:
            self._conversation = live
            log.info("conversation.resumed", session_id=session_id,
                     messages=len(live.messages), in_flight=True)
            return live
        session = self._store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        self._conversation = Conversation.from_session(session)
        log.info("conversation.resumed", session_id=session_id,
                 messages=len(session.messages))
        return self._conversation

    # ─────────────────────────────────────────────────────────────────────────
    # Internal: state machine
    # ─────────────────────────────────────────────────────────────────────────

    async def _run_turn(self, conv: Conversation, text: str) -> TurnOutcome:
        turn = Turn(session_id=conv.id, user_text=text)
        conv.last_error = None
        conv.last_user_text = text
        content = text.strip()

        conv.append(ChatMessage.user(content, id=self._new_id(), timestamp=self._timestamp(conv)))
        log.info("turn.start", session_id=conv.id, chars=len(content))
        self._transition(turn, TurnState.SENDING)

        while True:
            turn.attempt += 1
            result, error = await self._attempt(conv, turn, content)

            if result is not None and result.success:
                return await self._complete(conv, turn, result)

            turn.last_error = error
            if result is not None and result.is_takeover:
                log.warning("turn.page_takeover", session_id=conv.id, attempt=turn.attempt)
                return await self._fail(conv, turn, result.takeover_document)

            verdict = self._classify(error)
            if self._policy.should_retry(turn.attempt, verdict.transient):
                delay = self._policy.delay_after(turn.attempt)
                turn.delays.append(delay)
                self._transition(turn, TurnState.RETRYING)
                log.warning(
                    "turn.retrying",
                    session_id=conv.id,
                    attempt=turn.attempt,
                    max_attempts=self._policy.max_attempts,
                    delay_s=delay,
                    marker=verdict.marker,
                    error=error,
                )
                await self._sleep(delay)
                self._transition(turn, TurnState.SENDING)
                continue

            return await self._fail(conv, turn)

    async def _attempt(
        self, conv: Conversation, turn: Turn, content: str
    ) -> tuple[Optional[TransportResult], Optional[str]]:
        log.debug("turn.attempt.start", session_id=conv.id, attempt=turn.attempt)
        try:
            result = await self._transport.send(
                content, self._agent_id, {"session_id": conv.id}
            )
        except Exception as e:
            error = str(e) or THROWN_ERROR
            log.warning(
                "turn.attempt.raised",
                session_id=conv.id,
                attempt=turn.attempt,
                error=error,
                error_type=type(e).__name__,
            )
            return None, error

        if result.success:
            return result, None
        error = result.error or DEFAULT_ERROR
        log.info(
            "turn.attempt.failed",
            session_id=conv.id,
            attempt=turn.attempt,
            status_code=result.status_code,
            error=error,
        )
        return result, error

    async def _complete(
        self, conv: Conversation, turn: Turn, result: TransportResult
    ) -> TurnOutcome:
        reply = result.response
        payload = self._parse(
            reply.result if reply is not None else None,
            fallback_message=(reply.message if reply is not None else None) or DEFAULT_MESSAGE,
        )
        conv.append(
            ChatMessage.assistant(
                payload.message,
                id=self._new_id(),
                timestamp=self._timestamp(conv),
                recommendations=payload.recommendations,
                follow_up_suggestions=payload.follow_up_suggestions,
            )
        )
        self._transition(turn, TurnState.COMPLETED)
        await self._persist(conv)

        log.info(
            "turn.completed",
            session_id=conv.id,
            attempts=turn.attempt,
            recommendations=len(payload.recommendations),
            suggestions=len(payload.follow_up_suggestions),
        )
        return TurnOutcome(
            status=TurnStatus.COMPLETED,
            session_id=conv.id,
            messages=conv.snapshot(),
            attempts=turn.attempt,
            delays=list(turn.delays),
        )

    async def _fail(
        self, conv: Conversation, turn: Turn, takeover_document: Optional[str] = None
    ) -> TurnOutcome:
        error = turn.last_error or DEFAULT_ERROR
        conv.last_error = error
        self._transition(turn, TurnState.FAILED)
        await self._persist(conv)

        log.error(
            "turn.failed",
            session_id=conv.id,
            attempts=turn.attempt,
            error=error,
            takeover=takeover_document is not None,
        )
        return TurnOutcome(
            status=TurnStatus.FAILED,
            session_id=conv.id,
            messages=conv.snapshot(),
            attempts=turn.attempt,
            delays=list(turn.delays),
            error=error,
            user_text=turn.user_text,
            takeover_document=takeover_document,
        )

    async def _persist(self, conv: Conversation) -> None:
        if conv is not self._conversation:
            # Finished after the user moved to another session: still saved
            # under its own id, just no longer on screen.
            log.info("turn.orphaned_completion", session_id=conv.id)
        await self._store.upsert(conv.id, conv.snapshot())

    def _timestamp(self, conv: Conversation) -> int:
        ts = self._clock()
        last = conv.last_timestamp
        return ts if last is None else max(ts, last)

    def _transition(self, turn: Turn, state: TurnState) -> None:
        turn.to(state)
        log.debug("turn.state", state=state.value, attempt=turn.attempt)
        if self._on_state_change is not None:
            self._on_state_change(turn)
