"""Structural validation of pipeline definitions.

Runs before any run state exists, so an invalid definition never leaves a
trace in the state store.
"""

from __future__ import annotations

from jobdag.core.domain.condition import parse_condition
from jobdag.core.domain.dag import DependencyGraph
from jobdag.core.domain.pipeline import PipelineDefinition
from jobdag.core.exceptions import (
    ConditionError,
    CycleDetectedError,
    DuplicateJobError,
    EmptyPipelineError,
    InvalidConditionError,
    MissingDependencyError,
)
from jobdag.core.logging import get_logger

logger = get_logger(__name__)


def validate_definition(definition: PipelineDefinition) -> None:
    """Check a definition for structural soundness.

    Checks run in order and the first violation is raised:

    1. the pipeline declares at least one job
    2. job ids are unique
    3. every ``depends_on`` entry names a declared job
    4. every ``when`` condition parses and only reads declared jobs
    5. the graph of dependencies and condition references is acyclic

    Raises
    ------
    EmptyPipelineError, DuplicateJobError, MissingDependencyError,
    InvalidConditionError, CycleDetectedError
        All subclasses of :class:`~jobdag.core.exceptions.PipelineValidationError`.
    """
    name = definition.name

    if not definition.jobs:
        raise EmptyPipelineError(name)

    seen: set[str] = set()
    for job in definition.jobs:
        if job.id in seen:
            raise DuplicateJobError(name, job.id)
        seen.add(job.id)

    for job in definition.jobs:
        for dep in job.depends_on:
            if dep not in seen:
                raise MissingDependencyError(name, job.id, dep)

    edges = {job.id: job.depends_on for job in definition.jobs}
    for job in definition.jobs:
        if job.when is None:
            continue
        try:
            condition = parse_condition(job.when)
        except ConditionError as e:
            raise InvalidConditionError(name, job.id, job.when, e.reason) from e
        for ref in condition.references:
            if ref not in seen:
                raise InvalidConditionError(name, job.id, job.when, f"unknown job '{ref}'")
        edges[job.id] = job.depends_on + condition.references

    if cycle := DependencyGraph.detect_cycle(edges):
        raise CycleDetectedError(name, cycle)

    logger.debug("Pipeline '{name}' is valid ({count} jobs)", name=name, count=len(seen))
