"""
brain/payload.py — Tolerant agent payload parser

The recommendation service answers with whatever its model produced: an
already-decoded object, a clean JSON string, JSON wrapped in a markdown
fence, JSON buried in prose, or plain prose. parse_payload() folds all of
these into one ParsedPayload and never raises; anything it cannot decode
becomes a plain-text message with no recommendations.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterator, Mapping, Optional

from pydantic import ValidationError

from recochat.brain.types import ParsedPayload, Recommendation
from recochat.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_MESSAGE = "Here are my recommendations."

_PAYLOAD_KEYS = frozenset(
    {"message", "recommendations", "follow_up_suggestions", "followUpSuggestions"}
)
_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_CLOSERS = {"{": "}", "[": "]"}

# Embedded-JSON scan gives up after this many opening brackets.
_MAX_SCAN_STARTS = 64
_MAX_DEPTH = 512


def parse_payload(raw: Any, fallback_message: Optional[str] = None) -> ParsedPayload:
    """
    Normalize a raw agent result.

    Args:
        raw:              Agent `result`: str, mapping, list or None.
        fallback_message: Used when the payload carries no message of its own.
                          Defaults to DEFAULT_MESSAGE.
    """
    fallback = fallback_message or DEFAULT_MESSAGE

    if isinstance(raw, Mapping):
        return _from_mapping(raw, fallback)
    if isinstance(raw, list):
        return ParsedPayload(message=fallback, recommendations=_recommendations(raw))
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        return ParsedPayload(message=fallback)

    text = raw.strip()
    if not text:
        return ParsedPayload(message=fallback)

    data = extract_json(text)
    if isinstance(data, Mapping):
        return _from_mapping(data, fallback)
    if isinstance(data, list):
        return ParsedPayload(message=fallback, recommendations=_recommendations(data))

    log.debug("payload.plain_text", chars=len(text))
    return ParsedPayload(message=text)


def extract_json(text: str) -> Any:
    """
    Return the first payload-looking JSON value in `text`, or None.

    Whole-text and whole-fence candidates are accepted as any object (or any
    array holding at least one object). Slices cut out of surrounding prose
    must look like a payload, so a stray `{"a": 1}` or `[1]` in a sentence
    does not swallow the sentence.
    """
    text = text.strip()
    fenced = [m.group(1).strip() for m in _FENCE_RE.finditer(text)]

    for candidate in [text, *fenced]:
        value = _loads(candidate)
        if _acceptable(value, embedded=False):
            return value

    for source in [*fenced, text]:
        for chunk in _bracketed_chunks(source):
            value = _loads(chunk)
            if _acceptable(value, embedded=True):
                return value
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _loads(candidate: str) -> Any:
    if not candidate or candidate[0] not in "{[":
        return None
    try:
        return json.loads(candidate)
    except (ValueError, RecursionError):
        pass
    repaired = _TRAILING_COMMA_RE.sub(r"\1", candidate)
    if repaired == candidate:
        return None
    try:
        return json.loads(repaired)
    except (ValueError, RecursionError):
        return None


def _acceptable(value: Any, *, embedded: bool) -> bool:
    if isinstance(value, dict):
        return not embedded or bool(_PAYLOAD_KEYS & value.keys())
    if isinstance(value, list):
        return any(isinstance(item, dict) for item in value)
    return False


def _bracketed_chunks(text: str) -> Iterator[str]:
    """Yield each balanced {...} / [...] span, scanning left to right."""
    starts = 0
    for i, ch in enumerate(text):
        if ch not in _CLOSERS:
            continue
        starts += 1
        if starts > _MAX_SCAN_STARTS:
            return
        end = _match_bracket(text, i)
        if end is not None:
            yield text[i:end + 1]


def _match_bracket(text: str, start: int) -> Optional[int]:
    """Index of the bracket closing text[start], honouring JSON strings."""
    stack = [_CLOSERS[text[start]]]
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
            if len(stack) > _MAX_DEPTH:
                return None
        elif ch in "}]":
            if ch != stack.pop():
                return None
            if not stack:
                return i
    return None


def _from_mapping(data: Mapping[str, Any], fallback: str) -> ParsedPayload:
    message = data.get("message")
    if isinstance(message, (int, float)) and not isinstance(message, bool):
        message = str(message)
    if not isinstance(message, str) or not message.strip():
        message = fallback

    suggestions = data.get("follow_up_suggestions")
    if suggestions is None:
        suggestions = data.get("followUpSuggestions")

    return ParsedPayload(
        message=message,
        recommendations=_recommendations(data.get("recommendations")),
        follow_up_suggestions=_suggestions(suggestions),
    )


def _recommendations(value: Any) -> list[Recommendation]:
    if not isinstance(value, list):
        return []
    out: list[Recommendation] = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        try:
            out.append(Recommendation.model_validate(dict(item)))
        except ValidationError as e:
            log.debug("payload.recommendation_skipped", error=str(e))
    return out


def _suggestions(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        if item is None or isinstance(item, (dict, list)):
            continue
        text = str(item).strip()
        if text:
            out.append(text)
    return out
