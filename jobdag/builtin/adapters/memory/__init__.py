"""In-memory adapters."""

from jobdag.builtin.adapters.memory.in_memory_state_store import InMemoryStateStore

__all__ = ["InMemoryStateStore"]
