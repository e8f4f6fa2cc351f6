"""Routing resolution helpers: task kind to worker agent, message to model tier."""

from __future__ import annotations

from dataclasses import dataclass

from brain_dispatch.config import SUPPORTED_TIERS, RoutingSettings
from brain_dispatch.orchestrator.models import TaskType


@dataclass(slots=True)
class FrozenRouting:
    """Resolved routing hints attached to every dispatched child."""

    tier: str
    model: str
    source: str


@dataclass(slots=True)
class RoutingDefaults:
    """Settings snapshot used at dispatch time."""

    agents: dict[TaskType, str]
    models: dict[str, str]
    quality_min_chars: int
    escalation_keywords: tuple[str, ...]

    @classmethod
    def from_settings(cls, settings: RoutingSettings) -> RoutingDefaults:
        """Build validated defaults from routing settings."""

        agents = {
            TaskType.RESEARCH: settings.research_agent,
            # Reports are produced by the research worker.
            TaskType.REPORT: settings.research_agent,
            TaskType.SAVE: settings.save_agent,
            TaskType.SEARCH: settings.search_agent,
            TaskType.CODE: settings.code_agent,
            TaskType.GENERAL: settings.general_agent,
        }
        for kind, agent in agents.items():
            if not agent.strip():
                raise ValueError(f"Empty worker agent for task_type={kind.value!r}")
        models = {"fast": settings.model_fast, "quality": settings.model_quality}
        for tier, model in models.items():
            if not model.strip():
                raise ValueError(f"Empty model id for tier={tier!r}")
        return cls(
            agents={kind: agent.strip() for kind, agent in agents.items()},
            models={tier: model.strip() for tier, model in models.items()},
            quality_min_chars=settings.quality_min_chars,
            escalation_keywords=tuple(
                keyword.strip().lower()
                for keyword in settings.escalation_keywords
                if keyword.strip()
            ),
        )

    def agent_for(self, kind: TaskType) -> str:
        return self.agents[kind]

    def resolve(self, *, message: str, override: str | None) -> FrozenRouting:
        tier, source = select_tier(
            message=message,
            override=override,
            quality_min_chars=self.quality_min_chars,
            escalation_keywords=self.escalation_keywords,
        )
        return FrozenRouting(tier=tier, model=self.models[tier], source=source)


def select_tier(
    *,
    message: str,
    override: str | None,
    quality_min_chars: int,
    escalation_keywords: tuple[str, ...],
) -> tuple[str, str]:
    """Pick a model tier and report which rule decided it.

    An explicit override always wins. Otherwise long messages and messages
    mentioning architecture-scale work escalate to ``quality``.
    """

    if override is not None and override.strip():
        tier = normalize_tier(override)
        validate_tier(tier)
        return tier, "override"
    if len(message) >= quality_min_chars:
        return "quality", "length"
    lowered = message.lower()
    if any(keyword in lowered for keyword in escalation_keywords):
        return "quality", "keyword"
    return "fast", "default"


def normalize_tier(value: str) -> str:
    return value.strip().lower()


def validate_tier(tier: str) -> None:
    if tier not in SUPPORTED_TIERS:
        raise ValueError(
            f"Unsupported model tier: {tier!r}. Use one of {SUPPORTED_TIERS}.",
        )
