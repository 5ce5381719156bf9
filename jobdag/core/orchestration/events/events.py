"""Typed lifecycle events published by the scheduler.

Every event carries the run id and an ``event_name`` class constant
(``"pipeline:started"``, ``"job:retrying"``, ...) so consumers that key on
names can still subscribe with :meth:`EventBus.on`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar


@dataclass(slots=True)
class Event:
    """Base class for all events - provides timestamp."""

    event_name: ClassVar[str] = "event"

    run_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC), init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event."""
        return f"{self.event_name} run={self.run_id}"


# Pipeline events
@dataclass(slots=True)
class PipelineStarted(Event):
    """A run moved to ``running``."""

    event_name: ClassVar[str] = "pipeline:started"

    pipeline: str = ""
    total_jobs: int = 0
    context: dict[str, Any] = field(default_factory=dict)

    def log_message(self) -> str:
        return f"Pipeline '{self.pipeline}' started ({self.total_jobs} jobs) run={self.run_id}"


@dataclass(slots=True)
class PipelineCompleted(Event):
    """A run finished with every job completed or skipped."""

    event_name: ClassVar[str] = "pipeline:completed"

    pipeline: str = ""
    duration_ms: float = 0.0

    def log_message(self) -> str:
        return f"Pipeline '{self.pipeline}' completed in {self.duration_ms / 1000:.2f}s"


@dataclass(slots=True)
class PipelineFailed(Event):
    """A run finished with at least one unrecoverable job failure."""

    event_name: ClassVar[str] = "pipeline:failed"

    pipeline: str = ""
    duration_ms: float = 0.0
    failed_jobs: list[str] = field(default_factory=list)
    error: str | None = None

    def log_message(self) -> str:
        return f"Pipeline '{self.pipeline}' failed: {self.error or ', '.join(self.failed_jobs)}"


@dataclass(slots=True)
class PipelineCancelled(Event):
    """A run stopped after a cancellation request."""

    event_name: ClassVar[str] = "pipeline:cancelled"

    pipeline: str = ""
    duration_ms: float = 0.0

    def log_message(self) -> str:
        return f"Pipeline '{self.pipeline}' cancelled after {self.duration_ms / 1000:.2f}s"


# Job events
@dataclass(slots=True)
class JobStarted(Event):
    """A job was dispatched to the executor."""

    event_name: ClassVar[str] = "job:started"

    job_id: str = ""
    job_name: str = ""
    attempt: int = 1

    def log_message(self) -> str:
        return f"Job '{self.job_id}' started (attempt {self.attempt})"


@dataclass(slots=True)
class JobCompleted(Event):
    """A job finished successfully."""

    event_name: ClassVar[str] = "job:completed"

    job_id: str = ""
    job_name: str = ""
    output: Any = None
    duration_ms: float = 0.0

    def log_message(self) -> str:
        return f"Job '{self.job_id}' completed in {self.duration_ms / 1000:.2f}s"


@dataclass(slots=True)
class JobFailed(Event):
    """A job exhausted its attempts."""

    event_name: ClassVar[str] = "job:failed"

    job_id: str = ""
    job_name: str = ""
    error: str = ""
    attempts: int = 0
    continue_on_error: bool = False

    def log_message(self) -> str:
        return f"Job '{self.job_id}' failed after {self.attempts} attempt(s): {self.error}"


@dataclass(slots=True)
class JobRetrying(Event):
    """A job attempt failed and another attempt is scheduled."""

    event_name: ClassVar[str] = "job:retrying"

    job_id: str = ""
    job_name: str = ""
    attempt: int = 0
    delay_ms: int = 0
    error: str = ""

    def log_message(self) -> str:
        return (
            f"Job '{self.job_id}' attempt {self.attempt} failed ({self.error}); "
            f"retrying in {self.delay_ms}ms"
        )


@dataclass(slots=True)
class JobSkipped(Event):
    """A job will never run because an upstream job failed or was skipped."""

    event_name: ClassVar[str] = "job:skipped"

    job_id: str = ""
    reason: str = ""

    def log_message(self) -> str:
        return f"Job '{self.job_id}' skipped: {self.reason}"


@dataclass(slots=True)
class JobCancelled(Event):
    """A job was cancelled before or during execution."""

    event_name: ClassVar[str] = "job:cancelled"

    job_id: str = ""
    was_running: bool = False

    def log_message(self) -> str:
        return f"Job '{self.job_id}' cancelled"


@dataclass(slots=True)
class JobProgress(Event):
    """Informational progress reported by an executor."""

    event_name: ClassVar[str] = "job:progress"

    job_id: str = ""
    percent: int = 0

    def log_message(self) -> str:
        return f"Job '{self.job_id}' progress {self.percent}%"


@dataclass(slots=True)
class JobLog(Event):
    """A line of output emitted by an executor through ``on_log``."""

    event_name: ClassVar[str] = "job:log"

    job_id: str = ""
    message: str = ""

    def log_message(self) -> str:
        return f"Job '{self.job_id}': {self.message}"


EVENT_TYPES: dict[str, type[Event]] = {
    cls.event_name: cls
    for cls in (
        PipelineStarted,
        PipelineCompleted,
        PipelineFailed,
        PipelineCancelled,
        JobStarted,
        JobCompleted,
        JobFailed,
        JobRetrying,
        JobSkipped,
        JobCancelled,
        JobProgress,
        JobLog,
    )
}
