"""Pipeline definition models.

A :class:`PipelineDefinition` is the immutable input to the engine. Models
accept both snake_case and the camelCase keys used by pipeline YAML files
(``dependsOn``, ``continueOnError``, ``maxAttempts``, ``delayMs``).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class BackoffStrategy(StrEnum):
    """Delay strategy applied between retry attempts."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


class _DefinitionModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class RetryPolicy(_DefinitionModel):
    """Per-job retry configuration.

    Attributes
    ----------
    max_attempts : int
        Total number of dispatches allowed, including the first one.
    backoff : BackoffStrategy
        ``fixed`` waits ``delay_ms`` every time, ``exponential`` waits
        ``delay_ms * 2**(attempt-1)`` and ``linear`` waits ``delay_ms * attempt``.
    delay_ms : int
        Base delay in milliseconds.
    max_delay_ms : int | None
        Optional cap on the computed delay.
    """

    max_attempts: int = Field(default=1, ge=1)
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    delay_ms: int = Field(default=2000, ge=0)
    max_delay_ms: int | None = Field(default=None, ge=0)


class JobDefinition(_DefinitionModel):
    """A single unit of work inside a pipeline.

    ``agent`` and ``task`` are opaque to the engine; they are handed to the
    executor untouched.

    ``when`` is an optional condition on the final status of other jobs (see
    :mod:`jobdag.core.domain.condition`); a job whose condition is false is
    skipped instead of dispatched.
    """

    id: str = Field(min_length=1)
    agent: str = Field(min_length=1)
    task: str = ""
    name: str | None = None
    depends_on: tuple[str, ...] = ()
    retry: RetryPolicy | None = None
    continue_on_error: bool = False
    inputs: dict[str, Any] = Field(default_factory=dict)
    timeout_ms: int | None = Field(default=None, ge=1)
    when: str | None = None

    @field_validator("depends_on", mode="before")
    @classmethod
    def _normalize_depends_on(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        # dict.fromkeys keeps first-seen order while dropping duplicates
        return tuple(dict.fromkeys(str(dep) for dep in value))

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def max_attempts(self) -> int:
        return self.retry.max_attempts if self.retry else 1


class PipelineDefinition(_DefinitionModel):
    """Named, ordered collection of jobs.

    Declared job order is only used as a tie-break when several jobs are
    ready and concurrency slots are scarce.
    """

    name: str = Field(min_length=1)
    jobs: list[JobDefinition] = Field(default_factory=list)
    description: str = ""
    version: str = "1.0"

    @property
    def job_ids(self) -> list[str]:
        return [job.id for job in self.jobs]

    def get_job(self, job_id: str) -> JobDefinition:
        for job in self.jobs:
            if job.id == job_id:
                return job
        raise KeyError(job_id)
