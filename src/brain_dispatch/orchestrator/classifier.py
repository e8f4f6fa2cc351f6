"""Structured intent classification through a forced tool call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from brain_dispatch.config import ClassifierSettings
from brain_dispatch.orchestrator.errors import ClassificationError
from brain_dispatch.orchestrator.models import ProjectView, TaskType

logger = logging.getLogger(__name__)

ROUTE_TOOL_NAME = "route_intents"

_INTENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "kind": {
            "type": "string",
            "enum": [kind.value for kind in TaskType],
            "description": "The type of task to dispatch.",
        },
        "summary": {
            "type": "string",
            "description": "A brief one-sentence summary of this request.",
        },
        "extracted_query": {
            "type": "string",
            "description": (
                "The core query or content stripped of intent words. For search: just the "
                "search terms. For save: just the content to save. For research: the topic."
            ),
        },
        "project": {
            "type": "string",
            "description": "Name of the registered code project, only when the text names one.",
        },
    },
    "required": ["kind", "summary", "extracted_query"],
}

ROUTE_TOOL: dict[str, Any] = {
    "name": ROUTE_TOOL_NAME,
    "description": (
        "Split the user message into independent requests and route each to a worker."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "intents": {
                "type": "array",
                "items": _INTENT_SCHEMA,
                "description": "One entry per independent request. Always an array.",
            },
            "response": {
                "type": "string",
                "description": "A brief, natural acknowledgment for the user (1-2 sentences).",
            },
        },
        "required": ["intents", "response"],
    },
}

_SYSTEM_PROMPT = """You are a personal assistant dispatcher. The user sends a message and you \
decide which workers handle it.

Routing:
- "research": the user wants to learn about something or needs web research
- "save": the user wants to save, remember or note something
- "search": the user wants to find something they saved before
- "report": the user wants a comprehensive report or analysis
- "code": the user wants a change made in one of their code projects
- "general": conversation or a simple question you can answer directly

A message may contain several independent requests; return one intent for each.
Be concise. Be confident. Do not ask questions."""


@dataclass(slots=True)
class ClassificationResult:
    """Raw tool input plus usage reported by the classification service."""

    payload: Any
    model: str
    tokens_in: int | None = None
    tokens_out: int | None = None


class IntentClassifier(Protocol):
    """Black-box structured-completion collaborator."""

    def classify(
        self,
        *,
        message: str,
        context: str,
        projects: list[ProjectView],
    ) -> ClassificationResult: ...


class AnthropicIntentClassifier:
    """Messages API client forcing the ``route_intents`` tool."""

    def __init__(
        self,
        settings: ClassifierSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._client = httpx.Client(
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            headers={
                "x-api-key": settings.api_key,
                "anthropic-version": settings.api_version,
                "content-type": "application/json",
            },
            transport=transport,
        )

    def classify(
        self,
        *,
        message: str,
        context: str,
        projects: list[ProjectView],
    ) -> ClassificationResult:
        if not self.settings.api_key:
            raise ClassificationError("Classifier API key is not configured.")

        body = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "temperature": 0.3,
            "system": _build_system_prompt(context=context, projects=projects),
            "messages": [{"role": "user", "content": message}],
            "tools": [ROUTE_TOOL],
            "tool_choice": {"type": "tool", "name": ROUTE_TOOL_NAME},
        }
        try:
            response = self._client.post(self.settings.api_url, json=body)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout calling intent classifier at %s", self.settings.api_url)
            raise ClassificationError("Intent classifier timed out.") from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling intent classifier: %s", exc)
            raise ClassificationError(f"Intent classifier request failed: {exc}") from exc

        if not response.is_success:
            raise ClassificationError(
                f"Intent classifier returned HTTP {response.status_code}: "
                f"{response.text[:200]}",
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ClassificationError("Intent classifier returned non-JSON body.") from exc

        payload = _extract_tool_input(data)
        usage = data.get("usage") if isinstance(data, dict) else None
        return ClassificationResult(
            payload=payload,
            model=str(data.get("model") or self.settings.model),
            tokens_in=_optional_int(usage, "input_tokens"),
            tokens_out=_optional_int(usage, "output_tokens"),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AnthropicIntentClassifier:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _build_system_prompt(*, context: str, projects: list[ProjectView]) -> str:
    parts = [_SYSTEM_PROMPT]
    if projects:
        names = "\n".join(f"- {project.name} ({project.repo_full_name})" for project in projects)
        parts.append(f"Registered code projects:\n{names}")
    if context.strip():
        parts.append(f"Recent conversation:\n{context.strip()}")
    return "\n\n".join(parts)


def _extract_tool_input(data: Any) -> Any:
    if not isinstance(data, dict):
        raise ClassificationError("Intent classifier returned an unexpected payload.")
    content = data.get("content")
    if not isinstance(content, list):
        raise ClassificationError("Intent classifier reply has no content blocks.")
    for block in content:
        if (
            isinstance(block, dict)
            and block.get("type") == "tool_use"
            and block.get("name") == ROUTE_TOOL_NAME
        ):
            return block.get("input")
    raise ClassificationError("Intent classifier reply has no route_intents tool call.")


def _optional_int(container: Any, key: str) -> int | None:
    if not isinstance(container, dict):
        return None
    value = container.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None
