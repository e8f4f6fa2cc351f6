"""Runtime configuration for admission, routing and worker dispatch."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_TIERS = ("fast", "quality")


@dataclass(slots=True)
class GovernorSettings:
    """Per-principal admission ceilings."""

    rate_limit_requests: int = 50
    rate_limit_window_seconds: int = 60
    max_concurrent_tasks: int = 10
    daily_task_limit: int = 200
    stale_after_seconds: int = 600
    loop_window_seconds: int = 60
    loop_task_threshold: int = 20


@dataclass(slots=True)
class ClassifierSettings:
    """Intent-classification service settings."""

    enabled: bool = True
    api_url: str = "https://api.anthropic.com/v1/messages"
    api_key: str = ""
    api_version: str = "2023-06-01"
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 1_024
    request_timeout_seconds: float = 20.0
    history_turns: int = 6


@dataclass(slots=True)
class WorkerSettings:
    """Worker endpoint settings used by fire-and-forget dispatch."""

    base_url: str = "http://127.0.0.1:8787/workers"
    auth_token: str = ""
    request_timeout_seconds: float = 120.0
    max_retries: int = 0


@dataclass(slots=True)
class RoutingSettings:
    """Task-kind to worker mapping and tier/model selection."""

    research_agent: str = "research-agent"
    save_agent: str = "save-agent"
    search_agent: str = "search-agent"
    code_agent: str = "code-agent"
    general_agent: str = "chat"
    model_fast: str = "claude-haiku-4-5-20251001"
    model_quality: str = "claude-sonnet-4-20250514"
    quality_min_chars: int = 500
    escalation_keywords: tuple[str, ...] = (
        "architecture",
        "refactor",
        "redesign",
        "migrate",
        "migration",
        "rewrite",
        "overhaul",
        "security audit",
    )


@dataclass(slots=True)
class PrincipalContextSettings:
    """Default principal for local CLI usage."""

    principal_id: str = "default_principal"
    display_name: str = "Default Principal"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".brain_dispatch.db")
    governor: GovernorSettings = field(default_factory=GovernorSettings)
    classifier: ClassifierSettings = field(default_factory=ClassifierSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    routing: RoutingSettings = field(default_factory=RoutingSettings)
    principal: PrincipalContextSettings = field(default_factory=PrincipalContextSettings)
    sqlite_busy_timeout_ms: int = 5_000

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        routing_defaults = RoutingSettings()
        return cls(
            db_path=db_path or Path(os.getenv("BRAIN_DISPATCH_DB_PATH", ".brain_dispatch.db")),
            governor=GovernorSettings(
                rate_limit_requests=int(os.getenv("BRAIN_DISPATCH_RATE_LIMIT_REQUESTS", "50")),
                rate_limit_window_seconds=int(
                    os.getenv("BRAIN_DISPATCH_RATE_LIMIT_WINDOW_SECONDS", "60"),
                ),
                max_concurrent_tasks=int(os.getenv("BRAIN_DISPATCH_MAX_CONCURRENT_TASKS", "10")),
                daily_task_limit=int(os.getenv("BRAIN_DISPATCH_DAILY_TASK_LIMIT", "200")),
                stale_after_seconds=int(os.getenv("BRAIN_DISPATCH_STALE_AFTER_SECONDS", "600")),
                loop_window_seconds=int(os.getenv("BRAIN_DISPATCH_LOOP_WINDOW_SECONDS", "60")),
                loop_task_threshold=int(os.getenv("BRAIN_DISPATCH_LOOP_TASK_THRESHOLD", "20")),
            ),
            classifier=ClassifierSettings(
                enabled=_env_bool("BRAIN_DISPATCH_CLASSIFIER_ENABLED", default=True),
                api_url=os.getenv(
                    "BRAIN_DISPATCH_CLASSIFIER_API_URL",
                    "https://api.anthropic.com/v1/messages",
                ),
                api_key=os.getenv(
                    "BRAIN_DISPATCH_CLASSIFIER_API_KEY",
                    os.getenv("ANTHROPIC_API_KEY", ""),
                ),
                api_version=os.getenv("BRAIN_DISPATCH_CLASSIFIER_API_VERSION", "2023-06-01"),
                model=os.getenv("BRAIN_DISPATCH_CLASSIFIER_MODEL", "claude-sonnet-4-20250514"),
                max_tokens=int(os.getenv("BRAIN_DISPATCH_CLASSIFIER_MAX_TOKENS", "1024")),
                request_timeout_seconds=float(
                    os.getenv("BRAIN_DISPATCH_CLASSIFIER_TIMEOUT_SECONDS", "20.0"),
                ),
                history_turns=int(os.getenv("BRAIN_DISPATCH_CLASSIFIER_HISTORY_TURNS", "6")),
            ),
            worker=WorkerSettings(
                base_url=os.getenv(
                    "BRAIN_DISPATCH_WORKER_BASE_URL",
                    "http://127.0.0.1:8787/workers",
                ),
                auth_token=os.getenv("BRAIN_DISPATCH_WORKER_AUTH_TOKEN", ""),
                request_timeout_seconds=float(
                    os.getenv("BRAIN_DISPATCH_WORKER_TIMEOUT_SECONDS", "120.0"),
                ),
                max_retries=int(os.getenv("BRAIN_DISPATCH_WORKER_MAX_RETRIES", "0")),
            ),
            routing=RoutingSettings(
                research_agent=os.getenv("BRAIN_DISPATCH_RESEARCH_AGENT", "research-agent"),
                save_agent=os.getenv("BRAIN_DISPATCH_SAVE_AGENT", "save-agent"),
                search_agent=os.getenv("BRAIN_DISPATCH_SEARCH_AGENT", "search-agent"),
                code_agent=os.getenv("BRAIN_DISPATCH_CODE_AGENT", "code-agent"),
                general_agent=os.getenv("BRAIN_DISPATCH_GENERAL_AGENT", "chat"),
                model_fast=os.getenv("BRAIN_DISPATCH_MODEL_FAST", "claude-haiku-4-5-20251001"),
                model_quality=os.getenv("BRAIN_DISPATCH_MODEL_QUALITY", "claude-sonnet-4-20250514"),
                quality_min_chars=int(os.getenv("BRAIN_DISPATCH_QUALITY_MIN_CHARS", "500")),
                escalation_keywords=_parse_keywords(
                    os.getenv("BRAIN_DISPATCH_ESCALATION_KEYWORDS", ""),
                    default=routing_defaults.escalation_keywords,
                ),
            ),
            principal=PrincipalContextSettings(
                principal_id=os.getenv("BRAIN_DISPATCH_PRINCIPAL_ID", "default_principal"),
                display_name=os.getenv("BRAIN_DISPATCH_PRINCIPAL_NAME", "Default Principal"),
            ),
            sqlite_busy_timeout_ms=int(os.getenv("BRAIN_DISPATCH_SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )

    def validate(self) -> None:
        """Raise configuration error for values the orchestrator cannot run with."""

        governor = self.governor
        for name, value in (
            ("BRAIN_DISPATCH_RATE_LIMIT_REQUESTS", governor.rate_limit_requests),
            ("BRAIN_DISPATCH_RATE_LIMIT_WINDOW_SECONDS", governor.rate_limit_window_seconds),
            ("BRAIN_DISPATCH_MAX_CONCURRENT_TASKS", governor.max_concurrent_tasks),
            ("BRAIN_DISPATCH_DAILY_TASK_LIMIT", governor.daily_task_limit),
            ("BRAIN_DISPATCH_STALE_AFTER_SECONDS", governor.stale_after_seconds),
            ("BRAIN_DISPATCH_LOOP_WINDOW_SECONDS", governor.loop_window_seconds),
            ("BRAIN_DISPATCH_LOOP_TASK_THRESHOLD", governor.loop_task_threshold),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        if self.worker.request_timeout_seconds <= 0:
            raise ValueError("BRAIN_DISPATCH_WORKER_TIMEOUT_SECONDS must be > 0.")
        if self.worker.max_retries < 0:
            raise ValueError("BRAIN_DISPATCH_WORKER_MAX_RETRIES must be >= 0.")
        if self.classifier.request_timeout_seconds <= 0:
            raise ValueError("BRAIN_DISPATCH_CLASSIFIER_TIMEOUT_SECONDS must be > 0.")
        if self.routing.quality_min_chars <= 0:
            raise ValueError("BRAIN_DISPATCH_QUALITY_MIN_CHARS must be > 0.")
        _validate_http_url("BRAIN_DISPATCH_WORKER_BASE_URL", self.worker.base_url)
        _validate_http_url("BRAIN_DISPATCH_CLASSIFIER_API_URL", self.classifier.api_url)
        for name, model in (
            ("BRAIN_DISPATCH_MODEL_FAST", self.routing.model_fast),
            ("BRAIN_DISPATCH_MODEL_QUALITY", self.routing.model_quality),
        ):
            if not model.strip():
                raise ValueError(f"{name} must not be empty.")


def _parse_keywords(raw: str, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if not raw.strip():
        return default
    values: list[str] = []
    for part in raw.split(","):
        keyword = part.strip().lower()
        if keyword and keyword not in values:
            values.append(keyword)
    return tuple(values)


def _validate_http_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
