"""
kernel/bootstrap.py — Chat Stack Factory

Wires storage → SessionStore (loaded) → transport → TurnOrchestrator from
settings, so every interface builds the same pipeline.

Usage:
    from recochat.kernel.bootstrap import build_chat_stack
    stack = build_chat_stack(settings)
    outcome = await stack.orchestrator.send("Need a CRM under $300/month")
    await stack.aclose()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from recochat.agent.orchestrator import RetryPolicy, Turn, TurnOrchestrator
from recochat.brain.transport import HttpAgentTransport
from recochat.config.settings import Settings
from recochat.memory.session_store import SessionStore
from recochat.memory.storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from recochat.observability.diagnostics import (
    CollectingSink,
    DiagnosticsSink,
    FanoutSink,
    LogSink,
)
from recochat.observability.logger import get_logger

log = get_logger(__name__)


@dataclass
class ChatStack:
    """All wired components returned by build_chat_stack()."""
    orchestrator: TurnOrchestrator
    store: SessionStore
    transport: HttpAgentTransport
    storage: KeyValueStorage
    diagnostics: CollectingSink

    async def aclose(self) -> None:
        await self.transport.aclose()


def build_chat_stack(
    settings: Settings,
    *,
    ephemeral: bool = False,
    storage: Optional[KeyValueStorage] = None,
    sink: Optional[DiagnosticsSink] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    on_state_change: Optional[Callable[[Turn], None]] = None,
) -> ChatStack:
    """
    Build the chat pipeline from settings.

    Args:
        settings:         Loaded Settings.
        ephemeral:        Keep sessions in memory only (nothing written to disk).
        storage:          Explicit storage backend; overrides `ephemeral`.
        sink:             Extra diagnostics sink (always combined with logging).
        http_client:      Pre-built httpx client (tests use a MockTransport).
        on_state_change:  Turn state callback for progress display.
    """
    if storage is None:
        storage = MemoryStorage() if ephemeral else JsonFileStorage(settings.storage_path)

    store = SessionStore(storage, key=settings.storage.sessions_key)
    store.load_all()

    collected = CollectingSink()
    sinks: list[DiagnosticsSink] = [LogSink(), collected]
    if sink is not None:
        sinks.append(sink)

    transport = HttpAgentTransport(
        base_url=settings.service.base_url,
        path=settings.service.agent_path,
        api_key=settings.agent_api_key,
        timeout=settings.service.timeout_seconds,
        sink=FanoutSink(*sinks),
        client=http_client,
    )

    orchestrator = TurnOrchestrator(
        transport,
        store,
        agent_id=settings.agent_id,
        policy=RetryPolicy(
            max_retries=settings.retry.max_retries,
            base_delay=settings.retry.base_delay_seconds,
        ),
        on_state_change=on_state_change,
    )

    log.info(
        "bootstrap.stack_ready",
        base_url=settings.service.base_url,
        sessions=len(store),
        ephemeral=isinstance(storage, MemoryStorage),
    )
    return ChatStack(
        orchestrator=orchestrator,
        store=store,
        transport=transport,
        storage=storage,
        diagnostics=collected,
    )
