"""Domain models: pipeline definitions, run state and the dependency graph."""

from jobdag.core.domain.condition import JobCondition, parse_condition
from jobdag.core.domain.dag import DependencyGraph, GraphResolution
from jobdag.core.domain.pipeline import (
    BackoffStrategy,
    JobDefinition,
    PipelineDefinition,
    RetryPolicy,
)
from jobdag.core.domain.pipeline_run import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    WAITING_JOB_STATUSES,
    JobRunState,
    JobStatus,
    PipelineRun,
    RunStatus,
)

__all__ = [
    "ACTIVE_JOB_STATUSES",
    "TERMINAL_JOB_STATUSES",
    "WAITING_JOB_STATUSES",
    "BackoffStrategy",
    "DependencyGraph",
    "GraphResolution",
    "JobCondition",
    "JobDefinition",
    "JobRunState",
    "JobStatus",
    "PipelineDefinition",
    "PipelineRun",
    "RetryPolicy",
    "RunStatus",
    "parse_condition",
]
