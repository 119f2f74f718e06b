"""
brain/transport.py — Recommendation service transport

One call to the agent endpoint per send(). Server-side anomalies are folded
into a TransportResult so the orchestrator never special-cases HTTP:

  - redirect on the agent API   → backend still starting up (synthetic 503)
  - network failure / timeout   → "No response from server" (synthetic 503)
  - 404 returning an HTML page  → takeover_document, never retried
  - 404 / 5xx                   → diagnostic, then normal body handling
  - body mentioning tool_auth   → tool_auth_required diagnostic

send() does not raise for HTTP or network failures.
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping, Optional, Protocol

import httpx
from pydantic import ValidationError

from recochat.brain.types import AgentReply, TransportResult
from recochat.observability.diagnostics import (
    Diagnostic,
    DiagnosticKind,
    DiagnosticsSink,
    NullSink,
    emit,
)
from recochat.observability.logger import get_logger

log = get_logger(__name__)

STARTING_UP_ERROR = "The server is starting up. Please try again in a few seconds."
NO_RESPONSE_ERROR = "No response from server"
NO_RESPONSE_MESSAGE = "Network error. The server may be starting up."

_DEFAULT_TIMEOUT = 120.0


class AgentTransport(Protocol):
    """Contract consumed by the orchestrator."""

    async def send(
        self, text: str, agent_id: str, context: Optional[Mapping[str, Any]] = None
    ) -> TransportResult: ...


class HttpAgentTransport:
    """
    httpx-backed transport for the recommendation service.

    Args:
        base_url:  Service root, e.g. "http://localhost:8000".
        path:      Agent endpoint path, "/api/agent" by default.
        api_key:   Optional key sent as x-api-key.
        timeout:   Per-request timeout in seconds.
        sink:      Diagnostics side channel (no-op by default).
        client:    Pre-built httpx.AsyncClient (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        path: str = "/api/agent",
        api_key: Optional[str] = None,
        timeout: float = _DEFAULT_TIMEOUT,
        sink: Optional[DiagnosticsSink] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.path = path if path.startswith("/") else f"/{path}"
        self._sink = sink or NullSink()
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._headers = headers
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.path}"

    async def send(
        self, text: str, agent_id: str, context: Optional[Mapping[str, Any]] = None
    ) -> TransportResult:
        payload: dict[str, Any] = {"message": text, "agent_id": agent_id}
        payload.update(context or {})
        url = self.url

        log.debug("transport.request", endpoint=url, chars=len(text))
        try:
            response = await self._client.post(
                url, json=payload, headers=self._headers, follow_redirects=True
            )
        except httpx.HTTPError as e:
            log.warning("transport.network_error", endpoint=url, error=str(e),
                        error_type=type(e).__name__)
            self._notify(
                DiagnosticKind.NETWORK_ERROR,
                f"Network error: Cannot connect to backend ({url})",
                endpoint=url,
            )
            return TransportResult.failure(
                NO_RESPONSE_ERROR, status_code=503, message=NO_RESPONSE_MESSAGE
            )

        if response.history:
            log.warning("transport.redirected", endpoint=url, target=str(response.url))
            self._notify(
                DiagnosticKind.API_ERROR,
                "Backend is starting up. Please try again in a moment.",
                status=503,
                endpoint=url,
            )
            return TransportResult.failure(STARTING_UP_ERROR, status_code=503)

        return self._normalize(response, url)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpAgentTransport":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # ── Response normalization ────────────────────────────────────────────────

    def _normalize(self, response: httpx.Response, url: str) -> TransportResult:
        status = response.status_code
        content_type = response.headers.get("content-type", "")

        if status == 404 and "text/html" in content_type:
            log.warning("transport.page_takeover", endpoint=url)
            self._notify(
                DiagnosticKind.PAGE_TAKEOVER,
                f"Backend replaced the page for {url}",
                status=404,
                endpoint=url,
            )
            return TransportResult(
                success=False,
                error=f"Backend returned a page instead of a reply for {url}",
                status_code=404,
                takeover_document=response.text,
            )

        if status == 404:
            self._notify(
                DiagnosticKind.API_ERROR,
                f"Backend returned 404 Not Found for {url}",
                status=404,
                endpoint=url,
            )
        elif status >= 500:
            self._notify(
                DiagnosticKind.API_ERROR,
                f"Backend returned {status} error for {url}",
                status=status,
                endpoint=url,
            )

        body = _decode_json(response)
        if body is not None:
            self._check_tool_auth(body, url)
            return _from_json_body(body, status, url)

        if response.is_success:
            return TransportResult(
                success=True,
                response=AgentReply(result=response.text),
                status_code=status,
            )
        if status == 404:
            error = f"Backend returned 404 Not Found for {url}"
        else:
            error = f"Backend returned {status} error for {url}"
        return TransportResult.failure(error, status_code=status)

    def _check_tool_auth(self, body: Any, url: str) -> None:
        if not isinstance(body, dict) or "tool_auth" not in json.dumps(body, default=str):
            return
        info = extract_tool_auth(body)
        log.info("transport.tool_auth_required", endpoint=url, **info)
        self._notify(
            DiagnosticKind.TOOL_AUTH_REQUIRED,
            "Tool authentication required",
            endpoint=url,
            payload=info,
        )

    def _notify(
        self,
        kind: DiagnosticKind,
        message: str,
        status: Optional[int] = None,
        endpoint: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        emit(
            self._sink,
            Diagnostic(
                kind=kind,
                message=message,
                status=status,
                endpoint=endpoint,
                payload=payload or {},
            ),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Body helpers
# ─────────────────────────────────────────────────────────────────────────────


def _decode_json(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    text = response.text
    if "json" not in content_type and not text.lstrip().startswith(("{", "[")):
        return None
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def _from_json_body(body: Any, status: int, url: str) -> TransportResult:
    ok = 200 <= status < 300
    if isinstance(body, dict) and "success" in body:
        reply = body.get("response")
        if isinstance(reply, dict):
            response = _reply_from(reply)
        elif reply is None:
            response = None
        else:
            response = AgentReply(result=reply)
        success = bool(body.get("success"))
        error = body.get("error")
        if error is not None and not isinstance(error, str):
            error = json.dumps(error, default=str)
        if not success and not error:
            error = _status_error(status, url) if not ok else "An error occurred while getting recommendations."
        return TransportResult(
            success=success,
            response=response,
            error=error,
            status_code=status,
        )

    if ok:
        if isinstance(body, dict) and isinstance(body.get("response"), dict):
            response = _reply_from(body["response"])
        else:
            response = AgentReply(result=body)
        return TransportResult(success=True, response=response, status_code=status)

    error = None
    if isinstance(body, dict):
        detail = body.get("error") or body.get("detail") or body.get("message")
        if isinstance(detail, str) and detail:
            error = detail
    return TransportResult.failure(error or _status_error(status, url), status_code=status)


def _reply_from(data: dict) -> AgentReply:
    try:
        return AgentReply.model_validate(data)
    except ValidationError as e:
        log.warning("transport.reply_unrecognised", error=str(e))
        return AgentReply(result=data)


def _status_error(status: int, url: str) -> str:
    if status == 404:
        return f"Backend returned 404 Not Found for {url}"
    return f"Backend returned {status} error for {url}"


_QUOTED_FIELD = r"""['"]{name}['"]:\s*['"]([^'"]+)['"]"""
_ACTION_NAMES_RE = re.compile(r"""['"]action_names['"]:\s*\[([^\]]+)\]""")
_QUOTED_ITEM_RE = re.compile(r"""['"]([^'"]+)['"]""")


def extract_tool_auth(body: dict[str, Any]) -> dict[str, Any]:
    """
    Pull tool authentication details out of a reply.

    A proxy answers with a structured `detail` object; an async agent task
    reports the same information stringified inside `error` or
    `response.message`, so fall back to scraping that text.
    """
    detail = body.get("detail") if isinstance(body.get("detail"), dict) else {}
    reply = body.get("response") if isinstance(body.get("response"), dict) else {}
    error_text = body.get("error") or reply.get("message") or ""
    if not isinstance(error_text, str):
        error_text = str(error_text)

    def _scrape(name: str) -> Optional[str]:
        m = re.search(_QUOTED_FIELD.format(name=name), error_text)
        return m.group(1) if m else None

    action_names = detail.get("action_names")
    if action_names is None:
        m = _ACTION_NAMES_RE.search(error_text)
        if m:
            action_names = _QUOTED_ITEM_RE.findall(m.group(1))

    return {
        "tool_name": detail.get("tool_name") or _scrape("tool_name"),
        "tool_source": detail.get("tool_source") or _scrape("tool_source"),
        "reason": detail.get("reason") or _scrape("reason"),
        "action_names": action_names,
    }
