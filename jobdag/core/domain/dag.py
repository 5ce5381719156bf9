"""Dependency graph over the jobs of a pipeline definition.

The graph answers two questions for the scheduler: which waiting jobs may be
dispatched now, and which waiting jobs can never run because an upstream job
failed (or was skipped) without ``continue_on_error`` or because their
``when`` condition is false.

Jobs read by a condition only order the graph. They never prune the
conditional job; its condition is evaluated once they are all terminal.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from jobdag.core.domain.condition import JobCondition, parse_condition
from jobdag.core.domain.pipeline_run import JobStatus

if TYPE_CHECKING:
    from jobdag.core.domain.pipeline import PipelineDefinition
    from jobdag.core.domain.pipeline_run import JobRunState


class Color(Enum):
    """DFS colors for cycle detection."""

    WHITE = 0  # not visited
    GRAY = 1  # on the recursion stack
    BLACK = 2  # finished


@dataclass(slots=True)
class GraphResolution:
    """Result of evaluating the waiting jobs against current job states.

    Attributes
    ----------
    ready : list[str]
        Jobs whose dependencies are satisfied, in declared order
    blocked : list[str]
        Jobs still waiting on unfinished dependencies
    skipped : dict[str, str]
        Jobs that can never run, mapped to the reason
    """

    ready: list[str] = field(default_factory=list)
    blocked: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)


class DependencyGraph:
    """Adjacency model built from ``depends_on`` declarations and conditions.

    The definition is expected to be validated already; unknown dependency
    ids are ignored here rather than reported.
    """

    def __init__(self, definition: PipelineDefinition) -> None:
        self._order: dict[str, int] = {job.id: index for index, job in enumerate(definition.jobs)}
        self._continue_on_error: dict[str, bool] = {
            job.id: job.continue_on_error for job in definition.jobs
        }
        self._dependencies: dict[str, tuple[str, ...]] = {
            job.id: tuple(dep for dep in job.depends_on if dep in self._order)
            for job in definition.jobs
        }
        self._dependents: defaultdict[str, list[str]] = defaultdict(list)
        for job_id, deps in self._dependencies.items():
            for dep in deps:
                self._dependents[dep].append(job_id)

        self._conditions: dict[str, JobCondition] = {
            job.id: parse_condition(job.when) for job in definition.jobs if job.when is not None
        }
        # Ordering edges: dependencies plus the jobs each condition reads
        self._upstream: dict[str, tuple[str, ...]] = dict(self._dependencies)
        for job_id, condition in self._conditions.items():
            extra = tuple(
                ref
                for ref in condition.references
                if ref in self._order and ref not in self._dependencies[job_id]
            )
            self._upstream[job_id] = self._dependencies[job_id] + extra
        self._downstream: defaultdict[str, list[str]] = defaultdict(list)
        for job_id, upstream in self._upstream.items():
            for ref in upstream:
                self._downstream[ref].append(job_id)

        self._topological_cache: list[str] | None = None

    @staticmethod
    def detect_cycle(graph: Mapping[str, tuple[str, ...] | list[str] | set[str]]) -> str | None:
        """Detect a cycle using depth-first traversal with a recursion stack.

        Parameters
        ----------
        graph : Mapping[str, Iterable[str]]
            Job id mapped to the ids it depends on

        Returns
        -------
        str | None
            Cycle description if found, None otherwise

        Examples
        --------
        >>> DependencyGraph.detect_cycle({"a": ["b"], "b": ["c"], "c": ["a"]})
        'Cycle detected: a -> b -> c -> a'
        >>> DependencyGraph.detect_cycle({"a": ["b"], "b": []}) is None
        True
        """
        colors = dict.fromkeys(graph, Color.WHITE)

        def dfs(node: str, path: list[str]) -> str | None:
            if colors[node] == Color.GRAY:
                # Back edge to a node on the current stack
                cycle_start = path.index(node)
                cycle = path[cycle_start:] + [node]
                return f"Cycle detected: {' -> '.join(cycle)}"

            if colors[node] == Color.BLACK:
                return None

            colors[node] = Color.GRAY
            path.append(node)

            for dep in graph.get(node, ()):
                if dep in colors and (result := dfs(dep, path)):
                    return result

            path.pop()
            colors[node] = Color.BLACK
            return None

        for node in graph:
            if colors[node] == Color.WHITE and (result := dfs(node, [])):
                return result

        return None

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._order

    def dependencies_of(self, job_id: str) -> tuple[str, ...]:
        return self._dependencies[job_id]

    def dependents_of(self, job_id: str) -> list[str]:
        return list(self._dependents.get(job_id, ()))

    def condition_of(self, job_id: str) -> JobCondition | None:
        return self._conditions.get(job_id)

    def declared_index(self, job_id: str) -> int:
        return self._order[job_id]

    def topological_order(self) -> list[str]:
        """Kahn's algorithm; ties broken by declared order.

        Jobs read by a ``when`` condition come before the conditional job.

        Examples
        --------
            # For jobs declared [c, a, b] with b -> a:
            # returns [c, a, b]
        """
        if self._topological_cache is not None:
            return list(self._topological_cache)

        in_degree = {job_id: len(upstream) for job_id, upstream in self._upstream.items()}
        available = sorted((j for j, d in in_degree.items() if d == 0), key=self._order.__getitem__)
        order: list[str] = []

        while available:
            job_id = available.pop(0)
            order.append(job_id)
            for child in self._downstream.get(job_id, ()):
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    available.append(child)
            available.sort(key=self._order.__getitem__)

        if len(order) != len(in_degree):
            remaining = [job_id for job_id in self._order if job_id not in order]
            raise ValueError(f"Graph contains a cycle among: {remaining}")

        self._topological_cache = order
        return list(order)

    def _satisfies(self, dep: str, status: JobStatus) -> bool:
        if status is JobStatus.COMPLETED:
            return True
        if status in (JobStatus.FAILED, JobStatus.SKIPPED):
            return self._continue_on_error[dep]
        return False

    def _prunes(self, dep: str, status: JobStatus) -> bool:
        if status is JobStatus.CANCELLED:
            return True
        if status in (JobStatus.FAILED, JobStatus.SKIPPED):
            return not self._continue_on_error[dep]
        return False

    def ready_jobs(self, states: Mapping[str, JobRunState]) -> list[str]:
        """Waiting jobs that may be dispatched now, in declared order."""
        return self.resolve(states).ready

    def resolve(self, states: Mapping[str, JobRunState]) -> GraphResolution:
        """Classify every waiting job as ready, blocked or skipped.

        Skips cascade within a single call: jobs are visited in topological
        order and a job skipped here counts as skipped for its dependents.

        A job with a ``when`` condition stays blocked until every job the
        condition reads is terminal. It is then ready if the condition holds
        and skipped otherwise.
        """
        effective: dict[str, JobStatus] = {job_id: state.status for job_id, state in states.items()}
        resolution = GraphResolution()

        for job_id in self.topological_order():
            if not effective[job_id].is_waiting:
                continue

            deps = self._dependencies[job_id]
            pruning = next((dep for dep in deps if self._prunes(dep, effective[dep])), None)
            if pruning is not None:
                effective[job_id] = JobStatus.SKIPPED
                resolution.skipped[job_id] = (
                    f"dependency '{pruning}' {effective[pruning].value}"
                )
            elif not all(self._satisfies(dep, effective[dep]) for dep in deps):
                resolution.blocked.append(job_id)
            elif (condition := self._conditions.get(job_id)) is None:
                resolution.ready.append(job_id)
            elif not all(effective[ref].is_terminal for ref in condition.references):
                resolution.blocked.append(job_id)
            elif condition.evaluate(effective):
                resolution.ready.append(job_id)
            else:
                effective[job_id] = JobStatus.SKIPPED
                resolution.skipped[job_id] = f"condition not met: {condition}"

        resolution.ready.sort(key=self._order.__getitem__)
        return resolution
