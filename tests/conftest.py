"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from brain_dispatch.config import GovernorSettings, RoutingSettings
from brain_dispatch.orchestrator.propagation import CompletionPropagator
from brain_dispatch.orchestrator.repository import TaskRepository
from brain_dispatch.orchestrator.routing import RoutingDefaults

from doubles import OTHER_PRINCIPAL, PRINCIPAL, FakeClock


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 18, 12, 0, tzinfo=UTC))


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "tasks.db"


@pytest.fixture()
def repository(db_path: Path, clock: FakeClock) -> Iterator[TaskRepository]:
    repo = TaskRepository(db_path, clock=clock)
    repo.init_schema()
    repo.ensure_principal(PRINCIPAL, "Alice")
    repo.ensure_principal(OTHER_PRINCIPAL, "Bob")
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def propagator(repository: TaskRepository) -> CompletionPropagator:
    return CompletionPropagator(repository)


@pytest.fixture()
def routing_defaults() -> RoutingDefaults:
    return RoutingDefaults.from_settings(RoutingSettings())


@pytest.fixture()
def governor_settings() -> GovernorSettings:
    return GovernorSettings()
