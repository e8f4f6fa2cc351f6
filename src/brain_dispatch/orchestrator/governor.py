"""Per-principal admission control: rate, stale reaping, caps and loop detection."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from brain_dispatch.config import GovernorSettings
from brain_dispatch.orchestrator.errors import (
    ConcurrencyLimitError,
    DailyLimitError,
    LoopDetectedError,
    RateLimitedError,
)
from brain_dispatch.orchestrator.models import TaskView
from brain_dispatch.orchestrator.propagation import CompletionPropagator
from brain_dispatch.orchestrator.repository import TaskRepository
from brain_dispatch.storage.common import start_of_utc_day, utc_now

logger = logging.getLogger(__name__)

LOOP_DETECTED_REASON = "Loop detected"


@dataclass(slots=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    remaining: int
    reset_in_seconds: float


class FixedWindowRateLimiter:
    """In-memory fixed-window counter keyed by principal.

    Counters live in this process only; several instances each enforce their
    own window, so the limit is advisory next to the store-backed caps.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str) -> RateLimitDecision:
        """Count one request for ``key`` and report whether it is allowed."""

        now = self._clock()
        with self._lock:
            self._prune(now)
            entry = self._windows.get(key)
            if entry is None:
                reset_at = now + self.window_seconds
                self._windows[key] = (reset_at, 1)
                return RateLimitDecision(
                    allowed=True,
                    count=1,
                    limit=self.max_requests,
                    remaining=self.max_requests - 1,
                    reset_in_seconds=self.window_seconds,
                )
            reset_at, count = entry
            if count >= self.max_requests:
                return RateLimitDecision(
                    allowed=False,
                    count=count,
                    limit=self.max_requests,
                    remaining=0,
                    reset_in_seconds=max(0.0, reset_at - now),
                )
            count += 1
            self._windows[key] = (reset_at, count)
            return RateLimitDecision(
                allowed=True,
                count=count,
                limit=self.max_requests,
                remaining=self.max_requests - count,
                reset_in_seconds=max(0.0, reset_at - now),
            )

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [key for key, (reset_at, _) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]


@dataclass(slots=True)
class EffectiveLimits:
    max_concurrent_tasks: int
    daily_task_limit: int


@dataclass(slots=True)
class AdmissionReport:
    """What the governor observed while admitting one request."""

    principal_id: str
    limits: EffectiveLimits
    active_count: int
    daily_count: int
    recent_count: int
    reaped: list[TaskView] = field(default_factory=list)


class AdmissionGovernor:
    """Admit or reject a principal's request before any work is parsed.

    Order: rate limiter, stale reaper, concurrency cap, daily cap, loop
    detector. The loop detector is the only check that mutates other tasks.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        settings: GovernorSettings,
        propagator: CompletionPropagator,
        rate_limiter: FixedWindowRateLimiter | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.propagator = propagator
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
        self.clock = clock

    def admit(self, principal_id: str) -> AdmissionReport:
        """Run every admission check; raise an ``AdmissionError`` on rejection."""

        decision = self.rate_limiter.hit(principal_id)
        if not decision.allowed:
            logger.warning("Rate limit exceeded for principal=%s", principal_id)
            raise RateLimitedError(
                "Rate limit exceeded. Slow down and try again shortly.",
                count=decision.count,
                limit=decision.limit,
                retry_after_seconds=max(1, math.ceil(decision.reset_in_seconds)),
            )

        reaped = self.reap_stale(principal_id)
        limits = self.effective_limits(principal_id)
        now = self.clock()

        active_count = self.repository.count_active(principal_id=principal_id)
        if active_count >= limits.max_concurrent_tasks:
            raise ConcurrencyLimitError(
                "Too many tasks running. Please wait for some to complete.",
                count=active_count,
                limit=limits.max_concurrent_tasks,
            )

        day_start = start_of_utc_day(now)
        daily_count = self.repository.count_created_since(
            principal_id=principal_id,
            since=day_start,
        )
        if daily_count >= limits.daily_task_limit:
            next_day = day_start + timedelta(days=1)
            raise DailyLimitError(
                "Daily task limit reached. Try again tomorrow.",
                count=daily_count,
                limit=limits.daily_task_limit,
                retry_after_seconds=max(1, math.ceil((next_day - now).total_seconds())),
            )

        recent_count = self.repository.count_created_since(
            principal_id=principal_id,
            since=now - timedelta(seconds=self.settings.loop_window_seconds),
        )
        if recent_count >= self.settings.loop_task_threshold:
            cancelled = self.repository.cancel_tasks(
                principal_id=principal_id,
                reason=LOOP_DETECTED_REASON,
            )
            self.propagator.on_children_terminal(cancelled)
            logger.warning(
                "Runaway loop stopped for principal=%s: %d tasks in %ss, cancelled %d",
                principal_id,
                recent_count,
                self.settings.loop_window_seconds,
                len(cancelled),
            )
            raise LoopDetectedError(
                "Runaway task creation detected. All in-flight tasks were stopped.",
                cancelled_ids=[task.task_id for task in cancelled],
                count=recent_count,
                limit=self.settings.loop_task_threshold,
                retry_after_seconds=self.settings.loop_window_seconds,
            )

        return AdmissionReport(
            principal_id=principal_id,
            limits=limits,
            active_count=active_count,
            daily_count=daily_count,
            recent_count=recent_count,
            reaped=reaped,
        )

    def reap_stale(self, principal_id: str) -> list[TaskView]:
        """Fail the principal's tasks stuck in queued/running past the threshold."""

        stale_minutes = self.settings.stale_after_seconds // 60
        reason = (
            f"Timed out (stale >{stale_minutes}min)"
            if self.settings.stale_after_seconds % 60 == 0
            else f"Timed out (stale >{self.settings.stale_after_seconds}s)"
        )
        reaped = self.repository.reap_stale(
            principal_id=principal_id,
            older_than=self.clock() - timedelta(seconds=self.settings.stale_after_seconds),
            reason=reason,
        )
        if reaped:
            logger.info("Reaped %d stale tasks for principal=%s", len(reaped), principal_id)
            self.propagator.on_children_terminal(reaped)
        return reaped

    def effective_limits(self, principal_id: str) -> EffectiveLimits:
        """Configured ceilings with per-principal overrides applied."""

        overrides = self.repository.get_principal_settings(principal_id=principal_id)
        max_concurrent = self.settings.max_concurrent_tasks
        daily_limit = self.settings.daily_task_limit
        if overrides is not None:
            if overrides.max_concurrent_tasks is not None:
                max_concurrent = overrides.max_concurrent_tasks
            if overrides.daily_task_limit is not None:
                daily_limit = overrides.daily_task_limit
        return EffectiveLimits(max_concurrent_tasks=max_concurrent, daily_task_limit=daily_limit)
