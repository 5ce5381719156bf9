"""Domain model for pipeline run tracking.

A :class:`PipelineRun` is the mutable aggregate owned by exactly one
scheduler. Its JSON form (camelCase keys) is what state stores persist.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_core import to_json

from jobdag.core.exceptions import InvalidTransitionError


def utc_now() -> datetime:
    return datetime.now(UTC)


class RunStatus(StrEnum):
    """Lifecycle status of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_RUN_STATUSES


class JobStatus(StrEnum):
    """Lifecycle status of a single job within a run."""

    PENDING = "pending"
    BLOCKED = "blocked"
    READY = "ready"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES

    @property
    def is_waiting(self) -> bool:
        return self in WAITING_JOB_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_JOB_STATUSES


_TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})

TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.SKIPPED, JobStatus.CANCELLED}
)
WAITING_JOB_STATUSES = frozenset({JobStatus.PENDING, JobStatus.BLOCKED, JobStatus.READY})
ACTIVE_JOB_STATUSES = frozenset({JobStatus.RUNNING, JobStatus.RETRYING})

_ALLOWED_RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING}),
    RunStatus.RUNNING: _TERMINAL_RUN_STATUSES,
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
}


class _RunModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobRunState(_RunModel):
    """Runtime state of one job.

    ``duration_ms`` is the execution time of the attempt that completed the job.
    """

    id: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    output: Any = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float | None = None


class PipelineRun(_RunModel):
    """State of a single pipeline invocation."""

    run_id: str
    definition_name: str
    status: RunStatus = RunStatus.PENDING
    jobs: dict[str, JobRunState] = Field(default_factory=dict)
    progress: int = Field(default=0, ge=0, le=100)
    context: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def create(
        cls, run_id: str, definition_name: str, job_ids: list[str], context: dict[str, Any]
    ) -> PipelineRun:
        return cls(
            run_id=run_id,
            definition_name=definition_name,
            jobs={job_id: JobRunState(id=job_id) for job_id in job_ids},
            context=dict(context),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, target: RunStatus) -> None:
        """Move the run to ``target``, enforcing pending -> running -> terminal."""
        if target not in _ALLOWED_RUN_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.run_id, self.status.value, target.value)
        self.status = target
        if target is RunStatus.RUNNING:
            self.started_at = self.started_at or utc_now()
        elif target.is_terminal:
            self.completed_at = utc_now()

    def jobs_with_status(self, *statuses: JobStatus) -> list[str]:
        return [job_id for job_id, state in self.jobs.items() if state.status in statuses]

    def compute_progress(self) -> int:
        """Percentage of jobs in a terminal state, rounded half up."""
        total = len(self.jobs)
        if total == 0:
            return 100
        terminal = sum(1 for state in self.jobs.values() if state.status.is_terminal)
        return int(100 * terminal / total + 0.5)

    def snapshot(self) -> PipelineRun:
        """Copy of the run that callers may inspect without touching live state.

        Job outputs and the context are deep-copied as well.
        """
        return self.model_copy(deep=True)

    def to_json(self, indent: int | None = 2) -> bytes:
        """Serialize with camelCase keys; outputs that are not JSON-native become strings."""
        return to_json(self, by_alias=True, indent=indent, fallback=str)

    @classmethod
    def from_json(cls, data: str | bytes) -> PipelineRun:
        return cls.model_validate_json(data)
