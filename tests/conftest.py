"""Shared fixtures for focustm tests."""

from datetime import datetime, timedelta

import pytest

from focustm.audit import AuditTrail, MemoryAuditLog
from focustm.models import (
    QuadrantType,
    RecurrenceConfig,
    RecurrencePattern,
    RecurringTemplate,
    StandardTask,
)
from focustm.store import TaskStore

# A Monday morning
T0 = datetime(2024, 6, 10, 9, 0)


class FakeClock:
    """Settable clock; every store and trail in a test shares one."""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)
        return self.now


def make_task(task_id, kind=StandardTask, quadrant=QuadrantType.URGENT_IMPORTANT, **fields):
    """Build a task directly, bypassing the store."""
    if fields.get("completed") and "completed_at" not in fields:
        fields["completed_at"] = T0
    if kind is RecurringTemplate:
        fields.setdefault("recurrence", RecurrenceConfig(pattern=RecurrencePattern.DAILY))
    fields.setdefault("title", task_id.title())
    return kind(id=task_id, quadrant=quadrant, created_at=T0, updated_at=T0, **fields)


class RecordingSync:
    """Stands in for DebouncedSync and remembers every scheduled state."""

    def __init__(self):
        self.states = []

    def schedule(self, state):
        self.states.append(state)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return TaskStore(clock=clock)


@pytest.fixture
def trail(clock):
    return AuditTrail(MemoryAuditLog(), clock=clock)


@pytest.fixture
def audited_store(clock, trail):
    return TaskStore(clock=clock, audit=trail)
