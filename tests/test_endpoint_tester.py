"""
Unit Tests for the endpoint verifier
HTTP is served by httpx.MockTransport; nothing touches the network
"""
import json

import httpx
import pytest

from vbs.schemas import Endpoint
from vbs.system.endpoint_tester import EndpointVerifier, classify_status


def endpoint(method: str, path: str, body=None) -> Endpoint:
    return Endpoint(method=method, path=path, description=path, requires_auth=False, example_body=body)


def handler(request: httpx.Request) -> httpx.Response:
    routes = {
        "/ok": 200,
        "/private": 401,
        "/missing": 404,
        "/broken": 503,
    }
    if request.url.path == "/slow":
        raise httpx.ReadTimeout("timed out", request=request)
    if request.url.path == "/echo":
        return httpx.Response(201, json=json.loads(request.content))
    return httpx.Response(routes.get(request.url.path, 200), text="body")


class TestClassification:
    """Tests for status notes"""

    @pytest.mark.parametrize("status,note", [
        (200, "OK"), (201, "OK"), (400, "Expected"), (401, "Auth Guard"), (403, "Auth Guard"),
        (404, "Not Found"), (422, "Validation"), (500, "Server Error"), (503, "Server Error"),
    ])
    def test_notes(self, status, note):
        assert classify_status(status) == note


class TestVerifier:
    """Tests for pass/fail verdicts"""

    @pytest.mark.asyncio
    async def test_mixed_results(self):
        verifier = EndpointVerifier(delay=0, transport=httpx.MockTransport(handler))
        results = await verifier.test_all("http://localhost:3000", [
            endpoint("GET", "/ok"),
            endpoint("GET", "/private"),
            endpoint("GET", "/missing"),
            endpoint("GET", "/broken"),
            endpoint("GET", "/slow"),
        ])

        verdicts = [(r.path, r.status, r.passed, r.note) for r in results]
        assert verdicts == [
            ("/ok", 200, True, "OK"),
            ("/private", 401, True, "Auth Guard"),
            ("/missing", 404, True, "Not Found"),
            ("/broken", 503, False, "Server Error"),
            ("/slow", 0, False, "Timeout"),
        ]

    @pytest.mark.asyncio
    async def test_body_sent_for_body_methods(self):
        verifier = EndpointVerifier(delay=0, transport=httpx.MockTransport(handler))
        results = await verifier.test_all("http://localhost:3000", [endpoint("POST", "/echo", {"title": "x"})])
        assert results[0].status == 201
        assert json.loads(results[0].body) == {"title": "x"}

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        verifier = EndpointVerifier(delay=0, transport=httpx.MockTransport(refuse))
        results = await verifier.test_all("http://localhost:3000", [endpoint("GET", "/ok")])
        assert results[0].passed is False
        assert results[0].note == "Connection Error"
        assert results[0].status == 0
