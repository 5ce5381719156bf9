"""Port interfaces: executor, state store and event bus."""

from jobdag.core.ports.event_bus import EventBus, EventHandler
from jobdag.core.ports.executor import ExecutionOptions, ExecutionResult, JobExecutor
from jobdag.core.ports.state_store import StateStore

__all__ = [
    "EventBus",
    "EventHandler",
    "ExecutionOptions",
    "ExecutionResult",
    "JobExecutor",
    "StateStore",
]
