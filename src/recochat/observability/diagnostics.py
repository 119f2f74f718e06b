"""
observability/diagnostics.py — Fire-and-forget diagnostics side channel

The transport reports server anomalies (startup redirects, 5xx, unreachable
backend, tool authentication prompts, page takeovers) to whatever is hosting
the client. Delivery is best-effort: a sink that raises is logged and
ignored, so diagnostics never change the outcome of a turn.

Sinks:
    NullSink        default, drops everything
    LogSink         writes each diagnostic as a structlog event
    CollectingSink  keeps diagnostics in memory (CLI status line, tests)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

from recochat.observability.logger import get_logger

log = get_logger(__name__)


class DiagnosticKind(str, Enum):
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"
    TOOL_AUTH_REQUIRED = "tool_auth_required"
    PAGE_TAKEOVER = "page_takeover"


@dataclass
class Diagnostic:
    kind: DiagnosticKind
    message: str
    status: Optional[int] = None
    endpoint: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "message": self.message,
            "status": self.status,
            "endpoint": self.endpoint,
            "payload": dict(self.payload),
            "timestamp": self.timestamp,
        }


class DiagnosticsSink(Protocol):
    def notify(self, diagnostic: Diagnostic) -> None: ...


class NullSink:
    def notify(self, diagnostic: Diagnostic) -> None:
        return None


class LogSink:
    """Route diagnostics into the structured log."""

    def __init__(self, name: str = "recochat.diagnostics"):
        self._log = get_logger(name)

    def notify(self, diagnostic: Diagnostic) -> None:
        level = "info" if diagnostic.kind == DiagnosticKind.TOOL_AUTH_REQUIRED else "warning"
        getattr(self._log, level)(
            f"diagnostic.{diagnostic.kind.value}",
            message=diagnostic.message,
            status=diagnostic.status,
            endpoint=diagnostic.endpoint,
            payload=diagnostic.payload or None,
        )


class CollectingSink:
    """Bounded in-memory buffer of the most recent diagnostics."""

    def __init__(self, max_items: int = 50):
        self.max_items = max_items
        self.items: list[Diagnostic] = []

    def notify(self, diagnostic: Diagnostic) -> None:
        self.items.append(diagnostic)
        if len(self.items) > self.max_items:
            del self.items[: len(self.items) - self.max_items]

    def of_kind(self, kind: DiagnosticKind) -> list[Diagnostic]:
        return [d for d in self.items if d.kind == kind]

    def clear(self) -> None:
        self.items.clear()


class FanoutSink:
    """Deliver each diagnostic to several sinks in order."""

    def __init__(self, *sinks: DiagnosticsSink):
        self.sinks = list(sinks)

    def notify(self, diagnostic: Diagnostic) -> None:
        for sink in self.sinks:
            emit(sink, diagnostic)


def emit(sink: Optional[DiagnosticsSink], diagnostic: Diagnostic) -> None:
    """Deliver a diagnostic, swallowing any sink failure."""
    if sink is None:
        return
    try:
        sink.notify(diagnostic)
    except Exception as e:
        log.debug(
            "diagnostics.sink_failed",
            sink=type(sink).__name__,
            kind=diagnostic.kind.value,
            error=str(e),
        )
