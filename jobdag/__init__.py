"""jobdag - DAG-based job orchestrator.

Runs named, interdependent jobs through a pluggable executor with bounded
concurrency, per-job retry policies, crash-recoverable persisted state, live
lifecycle events and cooperative cancellation.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("jobdag")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for source checkouts

from jobdag.builtin.adapters import FileStateStore, InMemoryStateStore, LocalEventBus
from jobdag.core.config import EngineConfig, JobDAGConfig, load_config
from jobdag.core.domain import (
    BackoffStrategy,
    JobDefinition,
    JobRunState,
    JobStatus,
    PipelineDefinition,
    PipelineRun,
    RetryPolicy,
    RunStatus,
)
from jobdag.core.orchestration.cancellation import CancellationToken
from jobdag.core.orchestration.engine import PipelineEngine
from jobdag.core.pipeline_builder import load_pipeline
from jobdag.core.ports import ExecutionOptions, ExecutionResult

__all__ = [
    "BackoffStrategy",
    "CancellationToken",
    "EngineConfig",
    "ExecutionOptions",
    "ExecutionResult",
    "FileStateStore",
    "InMemoryStateStore",
    "JobDAGConfig",
    "JobDefinition",
    "JobRunState",
    "JobStatus",
    "LocalEventBus",
    "PipelineDefinition",
    "PipelineEngine",
    "PipelineRun",
    "RetryPolicy",
    "RunStatus",
    "__version__",
    "load_config",
    "load_pipeline",
]
