"""
observability/ — Logging and diagnostics

    setup_logging / get_logger   structlog configuration and logger factory
    Diagnostic sinks             Out-of-band notifications (network errors,
                                 tool authorization prompts, page takeovers)
"""

from recochat.observability.diagnostics import (
    CollectingSink,
    Diagnostic,
    DiagnosticKind,
    DiagnosticsSink,
    FanoutSink,
    LogSink,
    NullSink,
)
from recochat.observability.logger import get_logger, setup_logging

__all__ = [
    "CollectingSink",
    "Diagnostic",
    "DiagnosticKind",
    "DiagnosticsSink",
    "FanoutSink",
    "LogSink",
    "NullSink",
    "get_logger",
    "setup_logging",
]
