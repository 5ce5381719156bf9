"""Shared fixtures for the jobdag test suite."""

import pytest

from jobdag.builtin.adapters.local.local_event_bus import LocalEventBus
from jobdag.builtin.adapters.memory.in_memory_state_store import InMemoryStateStore
from jobdag.core.orchestration.events import Event


@pytest.fixture
def memory_store() -> InMemoryStateStore:
    """Fresh in-memory state store."""
    return InMemoryStateStore()


@pytest.fixture
def event_bus() -> LocalEventBus:
    """Fresh local event bus with no handlers."""
    return LocalEventBus()


@pytest.fixture
def recorded_events(event_bus: LocalEventBus) -> list[Event]:
    """Every event published on ``event_bus``, in order."""
    events: list[Event] = []
    event_bus.register(events.append, handler_id="recorder")
    return events
