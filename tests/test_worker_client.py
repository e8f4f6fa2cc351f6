from __future__ import annotations

import json

import allure
import httpx

from brain_dispatch.config import WorkerSettings
from brain_dispatch.orchestrator.worker_client import WorkerClient

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Fire-and-Forget Dispatch"),
]


def _client(handler, **overrides: object) -> WorkerClient:
    settings = WorkerSettings(base_url="http://workers.test/agents/", **overrides)
    return WorkerClient(settings, transport=httpx.MockTransport(handler))


def test_invoke_posts_payload_with_bearer_auth() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, json={"accepted": True})

    with _client(handler, auth_token="secret") as client:
        result = client.invoke("research-agent", {"task_id": "t-1", "query": "tides"})

    assert result.is_success
    assert result.status_code == 202
    assert result.body == {"accepted": True}
    assert result.url == "http://workers.test/agents/research-agent"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(seen[0].content) == {"task_id": "t-1", "query": "tides"}


def test_invoke_reports_http_errors_without_raising() -> None:
    with _client(lambda request: httpx.Response(500, text="boom")) as client:
        result = client.invoke("save-agent", {})

    assert not result.is_success
    assert result.error == "HTTP 500"
    assert result.body == "boom"


def test_invoke_reports_timeouts_and_connection_errors() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(timeout) as client:
        timed_out = client.invoke("save-agent", {})
    with _client(refused) as client:
        unreachable = client.invoke("save-agent", {})

    assert (timed_out.is_success, timed_out.status_code, timed_out.error) == (
        False,
        0,
        "timeout",
    )
    assert unreachable.error == "connection refused"


def test_no_authorization_header_without_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    with _client(handler) as client:
        client.invoke("chat", {})

    assert "Authorization" not in seen[0].headers


def test_invoke_on_closed_client_reports_failure() -> None:
    client = _client(lambda request: httpx.Response(202, json={"accepted": True}))
    client.close()

    result = client.invoke("research-agent", {"task_id": "t-1"})

    assert not result.is_success
    assert result.status_code == 0
    assert "closed" in (result.error or "")
