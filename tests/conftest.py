"""Shared fixtures for longsteps tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from longsteps import LongSteps, LongStepsConfig, ProcessRegistry
from longsteps.storage import InMemoryProcessStorage

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock injected into managers."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> ProcessRegistry:
    return ProcessRegistry()


@pytest.fixture
def storage() -> InMemoryProcessStorage:
    return InMemoryProcessStorage()


@pytest.fixture
def manager(storage, registry, clock) -> LongSteps:
    return LongSteps(
        storage=storage,
        registry=registry,
        config=LongStepsConfig(join_poll_interval=30),
        clock=clock,
    )
