"""
brain/classifier.py — Transient vs terminal failure classification

A failure is transient when its text shows the backend is cold-starting or
unreachable; those are worth another attempt. Everything else is terminal.

TRANSIENT_MARKERS is a compatibility surface: the transport and the service
produce these exact phrases, and matching is case-sensitive.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

TRANSIENT_MARKERS: tuple[str, ...] = (
    "starting up",
    "503",
    "Network error",
    "Cannot connect",
    "No response from server",
)


@dataclass(frozen=True)
class Classification:
    transient: bool
    marker: Optional[str] = None


def classify(error_text: Optional[str]) -> Classification:
    """Classify an error string; None or empty text is terminal."""
    if not error_text:
        return Classification(transient=False)
    for marker in TRANSIENT_MARKERS:
        if marker in error_text:
            return Classification(transient=True, marker=marker)
    return Classification(transient=False)


def is_transient(error_text: Optional[str]) -> bool:
    return classify(error_text).transient
