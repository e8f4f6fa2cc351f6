"""Turn one free-text request into dispatchable intents."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from brain_dispatch.orchestrator.classifier import IntentClassifier
from brain_dispatch.orchestrator.errors import ClassificationError
from brain_dispatch.orchestrator.models import (
    ClassificationUsage,
    IntentDescriptor,
    ProjectView,
    ReplyStatus,
    RouteHints,
    RouteResult,
    TaskType,
)
from brain_dispatch.orchestrator.repository import TaskRepository
from brain_dispatch.orchestrator.routing import RoutingDefaults

logger = logging.getLogger(__name__)

DEFAULT_ACK = "I'm on it."
SUMMARY_FALLBACK_CHARS = 100

# Intent kinds whose worker acts on one registered code project.
PROJECT_SCOPED_KINDS = frozenset({TaskType.CODE})


class IntentRouter:
    """Classify, coerce, resolve project targets and pick a model tier.

    Classification failures never surface to the caller: the router degrades
    to a single ``general`` intent carrying the raw message.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        defaults: RoutingDefaults,
        classifier: IntentClassifier | None = None,
    ) -> None:
        self.repository = repository
        self.defaults = defaults
        self.classifier = classifier

    def route(self, message: str, hints: RouteHints) -> RouteResult:
        projects = self.repository.list_projects(principal_id=hints.principal_id)
        payload: Any = None
        usage: ClassificationUsage | None = None
        degraded = False

        if self.classifier is None:
            degraded = True
        else:
            try:
                result = self.classifier.classify(
                    message=message,
                    context=hints.context,
                    projects=projects,
                )
            except ClassificationError as exc:
                logger.warning("Intent classification degraded to general: %s", exc)
                degraded = True
            except Exception:  # noqa: BLE001
                logger.exception("Intent classifier crashed; degrading to general")
                degraded = True
            else:
                payload = result.payload
                usage = ClassificationUsage(
                    model=result.model,
                    tokens_in=result.tokens_in,
                    tokens_out=result.tokens_out,
                )

        raw_items, ack_message = coerce_classification(payload)
        if not raw_items:
            if payload is not None:
                logger.warning("Classifier reply had no usable intents; using general intent")
            degraded = True
            raw_items = [{"kind": TaskType.GENERAL.value}]

        intents: list[IntentDescriptor] = []
        dropped: list[IntentDescriptor] = []
        for item in raw_items:
            intent = self._build_intent(item, message=message)
            if intent.kind in PROJECT_SCOPED_KINDS:
                project = resolve_project(
                    explicit_project_id=hints.project_id,
                    extracted_query=intent.extracted_query,
                    named_project=_optional_str(item, "project"),
                    projects=projects,
                )
                if project is None:
                    dropped.append(intent)
                    continue
                intent.project_id = project.project_id
                intent.project_name = project.name
            intents.append(intent)

        routing = self.defaults.resolve(
            message=message,
            override=self._tier_override(hints),
        )
        route = RouteResult(
            intents=intents,
            ack_message=ack_message,
            tier=routing.tier,
            model=routing.model,
            tier_source=routing.source,
            dropped=dropped,
            degraded=degraded,
            usage=usage,
        )
        if dropped and not intents:
            self._short_circuit(route, projects=projects)
        elif dropped:
            logger.info(
                "Dropped %d unresolved project intents from a batch of %d",
                len(dropped),
                len(dropped) + len(intents),
            )
        return route

    def _build_intent(self, item: Mapping[str, Any], *, message: str) -> IntentDescriptor:
        kind = _coerce_kind(item.get("kind", item.get("intent")))
        summary = _optional_str(item, "summary") or message[:SUMMARY_FALLBACK_CHARS]
        extracted_query = (
            _optional_str(item, "extracted_query")
            or _optional_str(item, "extractedQuery")
            or message
        )
        return IntentDescriptor(
            kind=kind,
            summary=summary,
            target_agent=self.defaults.agent_for(kind),
            extracted_query=extracted_query,
        )

    def _tier_override(self, hints: RouteHints) -> str | None:
        if hints.tier_override:
            return hints.tier_override
        settings = self.repository.get_principal_settings(principal_id=hints.principal_id)
        if settings is not None and settings.preferred_tier:
            return settings.preferred_tier
        return None

    @staticmethod
    def _short_circuit(route: RouteResult, *, projects: list[ProjectView]) -> None:
        if not projects:
            route.status = ReplyStatus.NO_PROJECT
            route.ack_message = (
                "You don't have any code projects registered yet. Add one and ask again."
            )
            return
        route.status = ReplyStatus.NEEDS_CLARIFICATION
        route.candidates = list(projects)
        names = ", ".join(project.name for project in projects)
        route.ack_message = f"Which project should I work on? Options: {names}."


def coerce_classification(payload: Any) -> tuple[list[Mapping[str, Any]], str]:
    """Normalize whatever the classifier returned into intent items plus an ack.

    A single intent object becomes a one-element list; non-object items are
    skipped; anything unusable yields no items.
    """

    ack_message = DEFAULT_ACK
    items: Any
    if isinstance(payload, Mapping):
        response = payload.get("response")
        if isinstance(response, str) and response.strip():
            ack_message = response.strip()
        if "intents" in payload:
            items = payload.get("intents")
        elif "kind" in payload or "intent" in payload:
            items = [payload]
        else:
            items = []
    elif isinstance(payload, list):
        items = payload
    else:
        items = []

    if isinstance(items, Mapping):
        items = [items]
    if not isinstance(items, list):
        return [], ack_message
    return [item for item in items if isinstance(item, Mapping)], ack_message


def resolve_project(
    *,
    explicit_project_id: str | None,
    extracted_query: str,
    named_project: str | None,
    projects: list[ProjectView],
) -> ProjectView | None:
    """Explicit id, then project name found in the query, then the sole project."""

    if explicit_project_id is not None:
        for project in projects:
            if project.project_id == explicit_project_id:
                return project

    lowered_query = extracted_query.lower()
    matches = [project for project in projects if project.name.lower() in lowered_query]
    if matches:
        return max(matches, key=lambda project: len(project.name))

    if named_project:
        lowered_name = named_project.strip().lower()
        for project in projects:
            if project.name.lower() == lowered_name:
                return project

    if len(projects) == 1:
        return projects[0]
    return None


def _coerce_kind(value: Any) -> TaskType:
    if isinstance(value, str):
        try:
            return TaskType(value.strip().lower())
        except ValueError:
            logger.warning("Unknown intent kind %r; treating as general", value)
    return TaskType.GENERAL


def _optional_str(item: Mapping[str, Any], key: str) -> str | None:
    value = item.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
