"""Core exception hierarchy for the jobdag pipeline engine.

All jobdag exceptions inherit from JobDAGError so callers can catch every
engine error in one place. Validation errors are raised synchronously when a
pipeline is submitted; job errors are recorded on the run and never escape
the scheduler.
"""

from __future__ import annotations

# ============================================================================
# Base Exception
# ============================================================================


class JobDAGError(Exception):
    """Base exception for all jobdag errors."""

    pass


# ============================================================================
# Configuration & Validation Errors
# ============================================================================


class ConfigurationError(JobDAGError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("engine", "max_concurrent_jobs must be >= 1")
    """

    def __init__(self, component: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            component: Name of the component with invalid configuration
            reason: Explanation of what's wrong
        """
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class PipelineValidationError(JobDAGError):
    """Raised when a pipeline definition is structurally unsound.

    No run is ever created for a definition that fails validation.
    """

    def __init__(self, pipeline: str, reason: str) -> None:
        super().__init__(f"Invalid pipeline '{pipeline}': {reason}")
        self.pipeline = pipeline
        self.reason = reason


class EmptyPipelineError(PipelineValidationError):
    """Raised when a pipeline declares no jobs."""

    def __init__(self, pipeline: str) -> None:
        super().__init__(pipeline, "pipeline must have at least one job")


class DuplicateJobError(PipelineValidationError):
    """Raised when two jobs share the same id."""

    def __init__(self, pipeline: str, job_id: str) -> None:
        super().__init__(pipeline, f"duplicate job id '{job_id}'")
        self.job_id = job_id


class MissingDependencyError(PipelineValidationError):
    """Raised when a job depends on a job that is not declared."""

    def __init__(self, pipeline: str, job_id: str, dependency: str) -> None:
        super().__init__(pipeline, f"job '{job_id}' depends on unknown job '{dependency}'")
        self.job_id = job_id
        self.dependency = dependency


class CycleDetectedError(PipelineValidationError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, pipeline: str, cycle: str) -> None:
        super().__init__(pipeline, cycle)
        self.cycle = cycle


class InvalidConditionError(PipelineValidationError):
    """Raised when a job's ``when`` condition cannot be used."""

    def __init__(self, pipeline: str, job_id: str, condition: str, reason: str) -> None:
        super().__init__(pipeline, f"job '{job_id}' has invalid condition '{condition}': {reason}")
        self.job_id = job_id
        self.condition = condition


class DefinitionLoadError(PipelineValidationError):
    """Raised when a pipeline file cannot be read or parsed."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(source, reason)
        self.source = source


# ============================================================================
# Resource Errors
# ============================================================================


class ResourceNotFoundError(JobDAGError):
    """Raised when a required resource cannot be found.

    Examples
    --------
    Example usage::

        raise ResourceNotFoundError("run", "build-1700000000000-ab12cd3")
    """

    def __init__(
        self, resource_type: str, resource_id: str, available: list[str] | None = None
    ) -> None:
        """Initialize resource not found error.

        Args
        ----
            resource_type: Type of resource (e.g., "run", "pipeline")
            resource_id: Identifier of the missing resource
            available: List of available resources (optional)
        """
        msg = f"{resource_type.title()} '{resource_id}' not found"
        if available:
            msg += f". Available: {', '.join(available[:5])}"
            if len(available) > 5:
                msg += f" ... and {len(available) - 5} more"
        super().__init__(msg)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available


class RunNotFoundError(ResourceNotFoundError):
    """Raised by a state store when no snapshot exists for a run id."""

    def __init__(self, run_id: str) -> None:
        super().__init__("run", run_id)
        self.run_id = run_id


class StateStoreError(JobDAGError):
    """Raised when a state store cannot read or write a snapshot."""

    pass


# ============================================================================
# Execution Errors
# ============================================================================


class JobExecutionError(JobDAGError):
    """Raised when an executor reports an unsuccessful result for a job."""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(f"Job '{job_id}' failed: {reason}")
        self.job_id = job_id
        self.reason = reason


class JobTimeoutError(JobExecutionError):
    """Raised when a job attempt exceeds its timeout."""

    def __init__(self, job_id: str, timeout_ms: int) -> None:
        super().__init__(job_id, f"timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class ConditionError(JobDAGError):
    """Raised when a job condition cannot be parsed or evaluated."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Condition error in '{expression}': {reason}")


class InvalidTransitionError(JobDAGError):
    """Raised when a run status change would break monotonicity."""

    def __init__(self, run_id: str, current: str, target: str) -> None:
        super().__init__(f"Run '{run_id}' cannot move from '{current}' to '{target}'")
        self.run_id = run_id
        self.current = current
        self.target = target


class ResolveError(JobDAGError):
    """Raised when a module path cannot be resolved."""

    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"Cannot resolve '{kind}': {reason}")


__all__ = [
    "JobDAGError",
    "ResolveError",
    "ConfigurationError",
    "PipelineValidationError",
    "EmptyPipelineError",
    "DuplicateJobError",
    "MissingDependencyError",
    "CycleDetectedError",
    "InvalidConditionError",
    "DefinitionLoadError",
    "ResourceNotFoundError",
    "RunNotFoundError",
    "StateStoreError",
    "JobExecutionError",
    "JobTimeoutError",
    "ConditionError",
    "InvalidTransitionError",
]
