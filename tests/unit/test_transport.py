"""
tests/unit/test_transport.py — HTTP Transport Tests

Uses httpx.MockTransport so no network is touched.

Covers:
  - Request shape (message, agent_id, session context, api key header)
  - Success envelope with string and object results
  - Service-reported failures (success: false) keep their error text
  - Redirect on the agent endpoint → "starting up" failure (503)
  - Network errors → "No response from server" failure (503) + diagnostic
  - 404 returning HTML → takeover document + diagnostic
  - 5xx and plain-404 bodies → failures + API error diagnostic
  - Bare JSON bodies without an envelope are treated as the result
  - tool_auth replies raise a tool_auth_required diagnostic
  - A failing sink never changes the result
"""

from __future__ import annotations

import json

import httpx
import pytest

from recochat.brain.transport import (
    NO_RESPONSE_ERROR,
    STARTING_UP_ERROR,
    HttpAgentTransport,
    extract_tool_auth,
)
from recochat.observability.diagnostics import CollectingSink, DiagnosticKind


BASE_URL = "http://reco.test"


# ── Helpers ───────────────────────────────────────────────────────────────────


def make_transport(handler, sink=None, api_key=None) -> HttpAgentTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpAgentTransport(
        base_url=BASE_URL,
        api_key=api_key,
        sink=sink or CollectingSink(),
        client=client,
    )


def json_handler(body, status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=body)
    return handler


class ExplodingSink:
    def notify(self, diagnostic):
        raise RuntimeError("host frame went away")


# ── Request shape ─────────────────────────────────────────────────────────────


class TestRequest:
    @pytest.mark.asyncio
    async def test_posts_message_agent_and_context(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["api_key"] = request.headers.get("x-api-key")
            return httpx.Response(200, json={"success": True, "response": {"result": "hi"}})

        transport = make_transport(handler, api_key="k-123")
        await transport.send("Need a CRM", "agent-1", {"session_id": "s-1"})

        assert seen["method"] == "POST"
        assert seen["url"] == f"{BASE_URL}/api/agent"
        assert seen["body"] == {"message": "Need a CRM", "agent_id": "agent-1", "session_id": "s-1"}
        assert seen["api_key"] == "k-123"

    @pytest.mark.asyncio
    async def test_no_api_key_header_when_unset(self):
        seen = {}

        def handler(request):
            seen["api_key"] = request.headers.get("x-api-key")
            return httpx.Response(200, json={"success": True})

        await make_transport(handler).send("hi", "a")
        assert seen["api_key"] is None

    def test_path_normalized(self):
        t = HttpAgentTransport(base_url=BASE_URL + "/", path="v2/agent",
                               client=httpx.AsyncClient())
        assert t.url == f"{BASE_URL}/v2/agent"


# ── Success / service failure ─────────────────────────────────────────────────


class TestEnvelope:
    @pytest.mark.asyncio
    async def test_success_with_string_result(self):
        body = {"success": True, "response": {"message": "ok", "result": '{"message": "Here"}'}}
        result = await make_transport(json_handler(body)).send("hi", "a")
        assert result.success is True
        assert result.response.message == "ok"
        assert result.response.result == '{"message": "Here"}'
        assert result.error is None

    @pytest.mark.asyncio
    async def test_success_with_object_result(self):
        body = {"success": True, "response": {"result": {"recommendations": [{"product_name": "X"}]}}}
        result = await make_transport(json_handler(body)).send("hi", "a")
        assert result.success is True
        assert result.response.result["recommendations"][0]["product_name"] == "X"

    @pytest.mark.asyncio
    async def test_numeric_status_and_message_coerced(self):
        body = {"success": True, "response": {"status": 200, "message": 7, "result": "hi"}}
        result = await make_transport(json_handler(body)).send("hi", "a")
        assert result.success is True
        assert result.response.status == "200"
        assert result.response.message == "7"
        assert result.response.result == "hi"

    @pytest.mark.asyncio
    async def test_object_status_dropped_not_raised(self):
        body = {"success": True, "response": {"status": {"code": 200}, "result": "hi"}}
        result = await make_transport(json_handler(body)).send("hi", "a")
        assert result.success is True
        assert result.response.status is None
        assert result.response.result == "hi"

    @pytest.mark.asyncio
    async def test_deeply_nested_body_does_not_raise(self):
        def handler(request):
            text = "[" * 100_000 + "]" * 100_000
            return httpx.Response(200, text=text, headers={"content-type": "application/json"})

        result = await make_transport(handler).send("hi", "a")
        assert result.success is True

    @pytest.mark.asyncio
    async def test_service_failure_keeps_error(self):
        body = {"success": False, "error": "Invalid agent id"}
        result = await make_transport(json_handler(body, status=400)).send("hi", "a")
        assert result.success is False
        assert result.error == "Invalid agent id"
        assert result.status_code == 400

    @pytest.mark.asyncio
    async def test_service_failure_without_error_text(self):
        result = await make_transport(json_handler({"success": False})).send("hi", "a")
        assert result.success is False
        assert result.error

    @pytest.mark.asyncio
    async def test_bare_json_body_is_result(self):
        body = {"message": "Direct", "recommendations": []}
        result = await make_transport(json_handler(body)).send("hi", "a")
        assert result.success is True
        assert result.response.result == body

    @pytest.mark.asyncio
    async def test_plain_text_success(self):
        def handler(request):
            return httpx.Response(200, text="Just prose", headers={"content-type": "text/plain"})

        result = await make_transport(handler).send("hi", "a")
        assert result.success is True
        assert result.response.result == "Just prose"


# ── Server anomalies ──────────────────────────────────────────────────────────


class TestAnomalies:
    @pytest.mark.asyncio
    async def test_redirect_means_starting_up(self):
        sink = CollectingSink()

        def handler(request):
            if request.url.path == "/api/agent":
                return httpx.Response(307, headers={"location": f"{BASE_URL}/warming"})
            return httpx.Response(200, text="<html>please wait</html>",
                                  headers={"content-type": "text/html"})

        result = await make_transport(handler, sink=sink).send("hi", "a")
        assert result.success is False
        assert result.error == STARTING_UP_ERROR
        assert result.status_code == 503
        assert len(sink.of_kind(DiagnosticKind.API_ERROR)) == 1

    @pytest.mark.asyncio
    async def test_network_error_is_no_response(self):
        sink = CollectingSink()

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_transport(handler, sink=sink).send("hi", "a")
        assert result.success is False
        assert result.error == NO_RESPONSE_ERROR
        assert result.status_code == 503
        assert result.response.message == "Network error. The server may be starting up."
        [diag] = sink.of_kind(DiagnosticKind.NETWORK_ERROR)
        assert "Cannot connect" in diag.message

    @pytest.mark.asyncio
    async def test_timeout_is_no_response(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await make_transport(handler).send("hi", "a")
        assert result.error == NO_RESPONSE_ERROR

    @pytest.mark.asyncio
    async def test_404_html_is_takeover(self):
        sink = CollectingSink()
        page = "<!doctype html><html><body>Sign in</body></html>"

        def handler(request):
            return httpx.Response(404, text=page, headers={"content-type": "text/html; charset=utf-8"})

        result = await make_transport(handler, sink=sink).send("hi", "a")
        assert result.success is False
        assert result.is_takeover
        assert result.takeover_document == page
        assert len(sink.of_kind(DiagnosticKind.PAGE_TAKEOVER)) == 1

    @pytest.mark.asyncio
    async def test_404_json_is_failure_not_takeover(self):
        sink = CollectingSink()
        result = await make_transport(json_handler({"detail": "Not Found"}, status=404),
                                      sink=sink).send("hi", "a")
        assert result.success is False
        assert not result.is_takeover
        assert result.error == "Not Found"
        assert len(sink.of_kind(DiagnosticKind.API_ERROR)) == 1

    @pytest.mark.asyncio
    async def test_503_text_body(self):
        sink = CollectingSink()

        def handler(request):
            return httpx.Response(503, text="Service Unavailable",
                                  headers={"content-type": "text/plain"})

        result = await make_transport(handler, sink=sink).send("hi", "a")
        assert result.success is False
        assert "503" in result.error
        assert result.status_code == 503
        [diag] = sink.of_kind(DiagnosticKind.API_ERROR)
        assert diag.status == 503

    @pytest.mark.asyncio
    async def test_500_with_envelope_error(self):
        body = {"success": False, "error": "Agent crashed"}
        result = await make_transport(json_handler(body, status=500)).send("hi", "a")
        assert result.error == "Agent crashed"

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_change_result(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await make_transport(handler, sink=ExplodingSink()).send("hi", "a")
        assert result.error == NO_RESPONSE_ERROR


# ── Tool authentication ───────────────────────────────────────────────────────


class TestToolAuth:
    @pytest.mark.asyncio
    async def test_structured_detail(self):
        sink = CollectingSink()
        body = {
            "success": False,
            "error": "tool_auth required",
            "detail": {
                "type": "tool_auth",
                "tool_name": "crm_lookup",
                "tool_source": "hubspot",
                "reason": "token expired",
                "action_names": ["read_contacts"],
            },
        }
        result = await make_transport(json_handler(body, status=401), sink=sink).send("hi", "a")
        assert result.success is False
        [diag] = sink.of_kind(DiagnosticKind.TOOL_AUTH_REQUIRED)
        assert diag.payload == {
            "tool_name": "crm_lookup",
            "tool_source": "hubspot",
            "reason": "token expired",
            "action_names": ["read_contacts"],
        }

    def test_scraped_from_error_text(self):
        body = {
            "success": False,
            "error": "Task failed: {'type': 'tool_auth', 'tool_name': 'crm_lookup', "
                     "'tool_source': 'hubspot', 'action_names': ['read', 'write']}",
        }
        info = extract_tool_auth(body)
        assert info["tool_name"] == "crm_lookup"
        assert info["tool_source"] == "hubspot"
        assert info["reason"] is None
        assert info["action_names"] == ["read", "write"]

    @pytest.mark.asyncio
    async def test_no_diagnostic_without_tool_auth(self):
        sink = CollectingSink()
        await make_transport(json_handler({"success": True}), sink=sink).send("hi", "a")
        assert sink.of_kind(DiagnosticKind.TOOL_AUTH_REQUIRED) == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(json_handler({})))
        async with HttpAgentTransport(base_url=BASE_URL, client=client):
            pass
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        t = HttpAgentTransport(base_url=BASE_URL)
        await t.aclose()
        assert t._client.is_closed
