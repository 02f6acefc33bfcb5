"""Shared fixtures."""

import pytest

from fakes import FakeClock, FakeNotifier, FakeTrigger, InMemoryRepository, dt
from taskcadence.service.scheduler import TaskSchedulingService


@pytest.fixture
def clock():
    return FakeClock(dt(2024, 1, 1, 7, 0))


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def trigger():
    return FakeTrigger()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def service(repo, clock, trigger, notifier):
    return TaskSchedulingService(repo, clock, trigger, notifier, batch_size=5)
