"""HTTP client that delivers one dispatched task to its worker endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from brain_dispatch.config import WorkerSettings

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "brain-dispatch/0.1 (+task-dispatcher)"


@dataclass(slots=True)
class WorkerCallResult:
    """Result of one worker invocation."""

    agent: str
    url: str
    status_code: int
    is_success: bool
    body: Any = None
    error: str | None = None


class WorkerInvoker(Protocol):
    def invoke(self, agent: str, payload: dict[str, Any]) -> WorkerCallResult: ...


class WorkerClient:
    """POST task payloads to ``{base_url}/{agent}`` with bearer auth."""

    def __init__(
        self,
        settings: WorkerSettings,
        *,
        transport: httpx.BaseTransport | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.base_url = settings.base_url.rstrip("/")
        headers = {"User-Agent": user_agent}
        if settings.auth_token:
            headers["Authorization"] = f"Bearer {settings.auth_token}"
        self._client = httpx.Client(
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=settings.max_retries),
        )

    def url_for(self, agent: str) -> str:
        return f"{self.base_url}/{agent}"

    def invoke(self, agent: str, payload: dict[str, Any]) -> WorkerCallResult:
        """Call the worker and return a structured result; never raises on HTTP errors."""

        url = self.url_for(agent)
        try:
            response = self._client.post(url, json=payload)
        except httpx.TimeoutException:
            logger.warning("Timeout invoking worker %s", url)
            return WorkerCallResult(
                agent=agent,
                url=url,
                status_code=0,
                is_success=False,
                error="timeout",
            )
        except (httpx.HTTPError, RuntimeError) as exc:
            # httpx raises RuntimeError once the client has been closed.
            logger.warning("HTTP error invoking worker %s: %s", url, exc)
            return WorkerCallResult(
                agent=agent,
                url=url,
                status_code=0,
                is_success=False,
                error=str(exc),
            )

        body: Any
        try:
            body = response.json()
        except ValueError:
            body = response.text
        return WorkerCallResult(
            agent=agent,
            url=url,
            status_code=response.status_code,
            is_success=response.is_success,
            body=body,
            error=None if response.is_success else f"HTTP {response.status_code}",
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> WorkerClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
