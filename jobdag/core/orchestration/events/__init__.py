"""Lifecycle events emitted while a pipeline runs."""

from jobdag.core.orchestration.events.events import (
    EVENT_TYPES,
    Event,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobLog,
    JobProgress,
    JobRetrying,
    JobSkipped,
    JobStarted,
    PipelineCancelled,
    PipelineCompleted,
    PipelineFailed,
    PipelineStarted,
)

__all__ = [
    "EVENT_TYPES",
    "Event",
    "JobCancelled",
    "JobCompleted",
    "JobFailed",
    "JobLog",
    "JobProgress",
    "JobRetrying",
    "JobSkipped",
    "JobStarted",
    "PipelineCancelled",
    "PipelineCompleted",
    "PipelineFailed",
    "PipelineStarted",
]
