"""
Endpoint Verifier - exercises declared endpoints of a freshly launched service

Any response below 500 counts as a pass: the service is up and handling
requests, even when it answers with a client error. A 5xx or a transport
failure is a fail.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

import httpx

from vbs.logging_config import logger
from vbs.schemas import BODY_METHODS, Endpoint


BODY_SNIPPET_CHARS = 120


@dataclass
class EndpointTestResult:
    method: str
    path: str
    status: int
    elapsed_ms: int
    passed: bool
    note: str
    body: str = ""


def classify_status(status: int) -> str:
    if status in (401, 403):
        return "Auth Guard"
    if status == 400:
        return "Expected"
    if status == 404:
        return "Not Found"
    if status == 422:
        return "Validation"
    if status >= 500:
        return "Server Error"
    return "OK"


class EndpointVerifier:
    """Sequential HTTP checks against ``base_url``"""

    def __init__(
        self,
        timeout: float = 6.0,
        delay: float = 0.25,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.delay = delay
        self.transport = transport

    def _client(self, base_url: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(self.timeout),
            headers={"Content-Type": "application/json"},
            transport=self.transport,
        )

    async def test_endpoint(self, client: httpx.AsyncClient, endpoint: Endpoint) -> EndpointTestResult:
        kwargs = {}
        if endpoint.method in BODY_METHODS and endpoint.example_body is not None:
            kwargs["json"] = endpoint.example_body

        start = time.monotonic()
        try:
            response = await client.request(endpoint.method, endpoint.path, **kwargs)
        except httpx.TimeoutException as e:
            return self._transport_failure(endpoint, start, "Timeout", e)
        except httpx.HTTPError as e:
            return self._transport_failure(endpoint, start, "Connection Error", e)

        elapsed = int((time.monotonic() - start) * 1000)
        return EndpointTestResult(
            method=endpoint.method,
            path=endpoint.path,
            status=response.status_code,
            elapsed_ms=elapsed,
            passed=response.status_code < 500,
            note=classify_status(response.status_code),
            body=response.text[:BODY_SNIPPET_CHARS],
        )

    @staticmethod
    def _transport_failure(endpoint: Endpoint, start: float, note: str, error: Exception) -> EndpointTestResult:
        return EndpointTestResult(
            method=endpoint.method,
            path=endpoint.path,
            status=0,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            passed=False,
            note=note,
            body=str(error)[:60],
        )

    async def test_all(self, base_url: str, endpoints: Iterable[Endpoint]) -> List[EndpointTestResult]:
        results = []
        async with self._client(base_url) as client:
            for endpoint in endpoints:
                result = await self.test_endpoint(client, endpoint)
                logger.debug(f"{result.method} {result.path} -> {result.status} ({result.note})",
                             extra={"event_type": "endpoint_test", "passed": result.passed})
                results.append(result)
                await asyncio.sleep(self.delay)

        passed = sum(1 for r in results if r.passed)
        logger.log_phase_event("verify", "complete", passed=passed, total=len(results))
        return results
