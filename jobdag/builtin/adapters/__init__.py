"""Adapters implementing the core ports."""

from jobdag.builtin.adapters.local import FileStateStore, LocalEventBus
from jobdag.builtin.adapters.memory import InMemoryStateStore

__all__ = ["FileStateStore", "InMemoryStateStore", "LocalEventBus"]
