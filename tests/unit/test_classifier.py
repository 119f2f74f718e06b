"""
tests/unit/test_classifier.py — Error Classifier Tests

Covers:
  - Every transient marker classifies as transient, wherever it appears
  - Matching is case-sensitive
  - Unrelated, empty and None error text is terminal
  - Classification reports the marker that matched
  - Transport-produced error strings are recognised
"""

from __future__ import annotations

import pytest

from recochat.brain.classifier import (
    TRANSIENT_MARKERS,
    Classification,
    classify,
    is_transient,
)
from recochat.brain.transport import NO_RESPONSE_ERROR, STARTING_UP_ERROR


class TestTransientMarkers:
    @pytest.mark.parametrize("marker", TRANSIENT_MARKERS)
    def test_marker_alone_is_transient(self, marker):
        assert classify(marker).transient is True

    @pytest.mark.parametrize("marker", TRANSIENT_MARKERS)
    def test_marker_inside_longer_text(self, marker):
        verdict = classify(f"Request failed: {marker} (attempt 1)")
        assert verdict.transient is True
        assert verdict.marker == marker

    def test_marker_list_is_fixed(self):
        assert TRANSIENT_MARKERS == (
            "starting up",
            "503",
            "Network error",
            "Cannot connect",
            "No response from server",
        )

    def test_status_code_in_message(self):
        assert is_transient("HTTP 503 Service Unavailable")

    def test_transport_errors_are_transient(self):
        assert is_transient(STARTING_UP_ERROR)
        assert is_transient(NO_RESPONSE_ERROR)


class TestCaseSensitivity:
    @pytest.mark.parametrize("text", [
        "network error",
        "NETWORK ERROR",
        "cannot connect to host",
        "Starting Up",
        "no response from server",
    ])
    def test_wrong_case_is_terminal(self, text):
        assert classify(text).transient is False


class TestTerminal:
    @pytest.mark.parametrize("text", [
        "Invalid agent id",
        "Unauthorized",
        "HTTP 500",
        "Request failed with status 404",
    ])
    def test_other_text_is_terminal(self, text):
        verdict = classify(text)
        assert verdict == Classification(transient=False)
        assert verdict.marker is None

    def test_empty_is_terminal(self):
        assert classify("").transient is False

    def test_none_is_terminal(self):
        assert classify(None).transient is False
