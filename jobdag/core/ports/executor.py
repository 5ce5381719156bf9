"""Executor Port - the pluggable callable that performs a job's work.

The engine never inspects how a job is executed. An executor receives the
job definition, the merged context and an :class:`ExecutionOptions` carrying
a progress callback, a log callback and an abort signal. Returning
normally means success; raising means the attempt failed.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from jobdag.core.domain.pipeline import JobDefinition
    from jobdag.core.orchestration.cancellation import CancellationToken


class ExecutionResult(BaseModel):
    """Result of a job execution.

    Attributes
    ----------
    success : bool
        False marks the attempt as failed even though nothing was raised
    output : Any
        Result data, stored on the job and passed to dependents
    duration_ms : float
        Execution time reported by the executor
    error : str | None
        Error message when ``success`` is False
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    success: bool = True
    output: Any = None
    duration_ms: float = 0.0
    error: str | None = None

    @classmethod
    def coerce(cls, value: Any) -> ExecutionResult:
        """Normalise whatever an executor returned.

        Accepts an ExecutionResult, a mapping with ``success``/``output``/
        ``duration`` keys, or any other value which is taken as the output.
        """
        if isinstance(value, ExecutionResult):
            return value
        if isinstance(value, Mapping) and ("output" in value or "success" in value):
            return cls(
                success=bool(value.get("success", True)),
                output=value.get("output"),
                duration_ms=float(value.get("duration_ms", value.get("duration", 0.0)) or 0.0),
                error=value.get("error"),
            )
        return cls(output=value)


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Per-attempt options handed to the executor.

    Attributes
    ----------
    on_progress : Callable[[int], None]
        Report progress 0-100; purely informational
    on_log : Callable[[str], None]
        Emit a line of job output as a ``job:log`` event; safe to call from
        worker threads
    abort_signal : CancellationToken
        Tripped when the run is cancelled; executors should stop promptly
    attempt : int
        1-indexed attempt number
    timeout_ms : int | None
        Time budget the scheduler enforces for this attempt
    """

    on_progress: Callable[[int], None]
    on_log: Callable[[str], None]
    abort_signal: CancellationToken
    attempt: int = 1
    timeout_ms: int | None = None


@runtime_checkable
class JobExecutor(Protocol):
    """Callable shape of a job executor.

    Both ``async def`` functions and plain functions are accepted; plain
    functions run in a worker thread.
    """

    def __call__(
        self, job: JobDefinition, context: dict[str, Any], options: ExecutionOptions
    ) -> Any: ...
