"""Local (single-process) adapters."""

from jobdag.builtin.adapters.local.file_state_store import FileStateStore
from jobdag.builtin.adapters.local.local_event_bus import LocalEventBus, LoggingErrorHandler

__all__ = ["FileStateStore", "LocalEventBus", "LoggingErrorHandler"]
