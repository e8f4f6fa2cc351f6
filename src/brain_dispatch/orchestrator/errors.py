"""Error taxonomy for admission, classification and state transitions."""

from __future__ import annotations


class AdmissionError(Exception):
    """Request rejected before any task is created."""

    code = "admission_rejected"

    def __init__(
        self,
        message: str,
        *,
        count: int | None = None,
        limit: int | None = None,
        retry_after_seconds: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.count = count
        self.limit = limit
        self.retry_after_seconds = retry_after_seconds

    def to_payload(self) -> dict[str, object]:
        """Structured reason for the synchronous caller."""

        payload: dict[str, object] = {"error": self.code, "message": self.message}
        if self.count is not None:
            payload["count"] = self.count
        if self.limit is not None:
            payload["limit"] = self.limit
        if self.retry_after_seconds is not None:
            payload["retry_after_seconds"] = self.retry_after_seconds
        return payload


class RateLimitedError(AdmissionError):
    code = "rate_limited"


class ConcurrencyLimitError(AdmissionError):
    code = "too_many_concurrent_tasks"


class DailyLimitError(AdmissionError):
    code = "daily_limit_reached"


class LoopDetectedError(AdmissionError):
    """Runaway task creation; every in-flight task was cancelled."""

    code = "loop_detected"

    def __init__(
        self,
        message: str,
        *,
        cancelled_ids: list[str],
        count: int | None = None,
        limit: int | None = None,
        retry_after_seconds: int | None = None,
    ) -> None:
        super().__init__(
            message,
            count=count,
            limit=limit,
            retry_after_seconds=retry_after_seconds,
        )
        self.cancelled_ids = cancelled_ids

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["cancelled_ids"] = list(self.cancelled_ids)
        return payload


class ClassificationError(RuntimeError):
    """The intent-classification service failed or returned unusable output."""


class InvalidTransitionError(ValueError):
    """A status change outside the task state machine was requested."""
