"""Pipeline Engine - public facade over per-run schedulers.

The engine validates submissions, allocates and persists runs, starts one
:class:`~jobdag.core.orchestration.scheduler.Scheduler` task per run and
answers status and control queries. It never mutates a run itself once its
scheduler is running.

Examples
--------
Run a pipeline to completion::

    async def executor(job, context, options):
        return f"{job.agent} did {job.task}"

    async with PipelineEngine(executor) as engine:
        engine.on("job:completed", lambda event: print(event.job_id))
        run = await engine.run_pipeline(definition, {"branch": "main"})
        assert run.status == "completed"
"""

from __future__ import annotations

import asyncio
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jobdag.core.config.models import EngineConfig
from jobdag.core.domain.pipeline import PipelineDefinition
from jobdag.core.domain.pipeline_run import JobStatus, PipelineRun
from jobdag.core.exceptions import PipelineValidationError, RunNotFoundError, StateStoreError
from jobdag.core.logging import get_logger
from jobdag.core.orchestration.cancellation import CancellationToken
from jobdag.core.orchestration.scheduler import Scheduler
from jobdag.core.pipeline_builder.yaml_loader import aload_pipeline
from jobdag.core.validation.definition import validate_definition

if TYPE_CHECKING:
    from jobdag.core.ports.event_bus import EventBus, EventHandler
    from jobdag.core.ports.executor import JobExecutor
    from jobdag.core.ports.state_store import StateStore

logger = get_logger(__name__)

_RUN_ID_UNSAFE = re.compile(r"[^a-z0-9_-]+")

# Job states that are reset to pending when an interrupted run is resumed
_RESUME_RESET_STATUSES = frozenset(
    {
        JobStatus.RUNNING,
        JobStatus.RETRYING,
        JobStatus.FAILED,
        JobStatus.READY,
        JobStatus.BLOCKED,
        JobStatus.CANCELLED,
    }
)


def generate_run_id(pipeline_name: str) -> str:
    """Build a filesystem-safe run id ``<name>-<epoch ms>-<7 hex>``.

    Examples
    --------
    >>> generate_run_id("Build & Test").startswith("build-test-")
    True
    """
    slug = _RUN_ID_UNSAFE.sub("-", pipeline_name.lower()).strip("-") or "pipeline"
    return f"{slug}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"


@dataclass(slots=True)
class _RunHandle:
    definition: PipelineDefinition
    scheduler: Scheduler
    task: asyncio.Task[PipelineRun]


class PipelineEngine:
    """DAG job orchestrator with bounded concurrency, retries and persisted state.

    Parameters
    ----------
    executor : JobExecutor
        Callable performing the work of each job
    config : EngineConfig | None
        Execution defaults; ``EngineConfig()`` when omitted
    state_store : StateStore | None
        Persistence backend. Defaults to a file store under
        ``config.state_dir`` or, with persistence disabled, an in-memory store
    event_bus : EventBus | None
        Receives lifecycle events; a ``LocalEventBus`` when omitted
    """

    def __init__(
        self,
        executor: JobExecutor,
        config: EngineConfig | None = None,
        *,
        state_store: StateStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        if not callable(executor):
            raise TypeError(f"Executor must be callable, got {type(executor).__name__}")

        self.config = config or EngineConfig()
        self.state_store = (
            state_store if state_store is not None else self._default_state_store(self.config)
        )
        self.events = event_bus if event_bus is not None else self._default_event_bus()
        self._executor = executor
        self._runs: dict[str, _RunHandle] = {}

    @staticmethod
    def _default_state_store(config: EngineConfig) -> StateStore:
        from jobdag.builtin.adapters.local.file_state_store import FileStateStore
        from jobdag.builtin.adapters.memory.in_memory_state_store import InMemoryStateStore

        if config.enable_persistence:
            return FileStateStore(config.state_dir)
        return InMemoryStateStore()

    @staticmethod
    def _default_event_bus() -> EventBus:
        from jobdag.builtin.adapters.local.local_event_bus import LocalEventBus

        return LocalEventBus()

    def on(self, event_name: str, handler: EventHandler) -> str:
        """Subscribe ``handler`` to one event name, e.g. ``"job:failed"``."""
        return self.events.on(event_name, handler)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def start_pipeline(
        self,
        definition: PipelineDefinition | str | Path,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Validate ``definition``, create a run and start scheduling it.

        Parameters
        ----------
        definition : PipelineDefinition | str | Path
            Definition object or path to a pipeline YAML file
        context : dict[str, Any] | None
            Initial context handed to every job

        Returns
        -------
        str
            The new run id

        Raises
        ------
        PipelineValidationError
            If the definition is invalid; no run is created
        """
        if isinstance(definition, str | Path):
            definition = await aload_pipeline(definition)
        else:
            validate_definition(definition)

        run = PipelineRun.create(
            run_id=generate_run_id(definition.name),
            definition_name=definition.name,
            job_ids=definition.job_ids,
            context=context or {},
        )
        await self._persist(run)
        self._launch(definition, run)

        logger.info(
            "Started run {run_id} for pipeline '{pipeline}' ({count} jobs)",
            run_id=run.run_id,
            pipeline=definition.name,
            count=len(definition.jobs),
        )
        return run.run_id

    async def run_pipeline(
        self,
        definition: PipelineDefinition | str | Path,
        context: dict[str, Any] | None = None,
    ) -> PipelineRun:
        """Start a pipeline and wait until it is terminal."""
        run_id = await self.start_pipeline(definition, context)
        return await self.wait_for_completion(run_id)

    async def resume_pipeline(self, run_id: str, definition: PipelineDefinition) -> bool:
        """Continue a run that was interrupted before reaching a terminal state.

        Jobs that were in flight, failed or still waiting go back to
        ``pending`` with their attempt counter reset; completed and skipped
        jobs keep their output.

        Returns
        -------
        bool
            False when no persisted run exists, the run is terminal, or it is
            already live in this engine

        Raises
        ------
        PipelineValidationError
            If ``definition`` is invalid or does not match the persisted run
        """
        if run_id in self._runs:
            return False

        validate_definition(definition)
        try:
            run = await self.state_store.aload(run_id)
        except RunNotFoundError:
            return False

        if run.is_terminal:
            logger.info("Run {run_id} is already {status}", run_id=run_id, status=run.status.value)
            return False

        if run.definition_name != definition.name or set(run.jobs) != set(definition.job_ids):
            raise PipelineValidationError(
                definition.name,
                f"definition does not match persisted run '{run_id}' "
                f"(pipeline '{run.definition_name}')",
            )

        # Keep declared order for the resumed job map
        jobs = {job_id: run.jobs[job_id] for job_id in definition.job_ids}
        for state in jobs.values():
            if state.status in _RESUME_RESET_STATUSES:
                state.status = JobStatus.PENDING
                state.attempts = 0
                state.error = None
                state.started_at = None
                state.completed_at = None
        run.jobs = jobs
        run.progress = run.compute_progress()

        await self._persist(run)
        self._launch(definition, run)
        logger.info(
            "Resumed run {run_id} ({done}/{total} jobs already terminal)",
            run_id=run_id,
            done=sum(1 for s in jobs.values() if s.status.is_terminal),
            total=len(jobs),
        )
        return True

    def _launch(self, definition: PipelineDefinition, run: PipelineRun) -> None:
        scheduler = Scheduler(
            definition,
            run,
            self._executor,
            self.state_store,
            self.events,
            max_concurrent_jobs=self.config.max_concurrent_jobs,
            default_job_timeout_ms=self.config.default_job_timeout_ms,
            cancel_grace_period=self.config.cancel_grace_period,
            cancellation=CancellationToken(),
        )
        task = asyncio.create_task(scheduler.run(), name=f"jobdag:{run.run_id}")
        self._runs[run.run_id] = _RunHandle(definition, scheduler, task)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_pipeline_status(self, run_id: str) -> PipelineRun | None:
        """Snapshot of a run known to this engine, or None."""
        handle = self._runs.get(run_id)
        if handle is None:
            return None
        return handle.scheduler.pipeline_run.snapshot()

    async def aget_pipeline_status(self, run_id: str) -> PipelineRun | None:
        """Like :meth:`get_pipeline_status` but falls back to the state store."""
        if (run := self.get_pipeline_status(run_id)) is not None:
            return run
        try:
            return await self.state_store.aload(run_id)
        except RunNotFoundError:
            return None

    async def wait_for_completion(self, run_id: str, timeout: float | None = None) -> PipelineRun:
        """Wait until the run is terminal and return its final snapshot.

        Raises
        ------
        RunNotFoundError
            If the run is unknown to the engine and the state store
        TimeoutError
            If ``timeout`` seconds elapse first; the run keeps going
        """
        handle = self._runs.get(run_id)
        if handle is None:
            if (run := await self.aget_pipeline_status(run_id)) is None:
                raise RunNotFoundError(run_id)
            return run

        async with asyncio.timeout(timeout):
            await asyncio.shield(handle.task)
        return handle.scheduler.pipeline_run.snapshot()

    async def list_runs(self) -> list[PipelineRun]:
        """All runs known to the engine or the state store, oldest first."""
        runs: dict[str, PipelineRun] = {}
        for run_id in await self.state_store.alist_run_ids():
            try:
                runs[run_id] = await self.state_store.aload(run_id)
            except StateStoreError as e:
                logger.warning("Skipping unreadable run {run_id}: {error}", run_id=run_id, error=e)
        for run_id, handle in self._runs.items():
            runs[run_id] = handle.scheduler.pipeline_run.snapshot()
        return sorted(runs.values(), key=lambda r: (r.started_at is None, r.started_at, r.run_id))

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel_pipeline(self, run_id: str, reason: str = "cancelled by request") -> bool:
        """Request cooperative cancellation of a live run.

        Returns
        -------
        bool
            True iff a non-terminal run was found and cancellation initiated
        """
        handle = self._runs.get(run_id)
        if handle is None or handle.scheduler.pipeline_run.is_terminal:
            return False
        initiated = handle.scheduler.token.cancel(reason)
        if initiated:
            logger.info("Cancellation requested for run {run_id}", run_id=run_id)
        return initiated

    async def aclose(self) -> None:
        """Cancel live runs and wait for their schedulers to finish."""
        live = [
            (run_id, handle)
            for run_id, handle in self._runs.items()
            if not handle.task.done()
        ]
        for run_id, _ in live:
            self.cancel_pipeline(run_id, reason="engine shutting down")
        if live:
            await asyncio.gather(*(handle.task for _, handle in live))

        drain = getattr(self.events, "drain", None)
        if drain is not None:
            await drain()

    async def __aenter__(self) -> PipelineEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _persist(self, run: PipelineRun) -> None:
        try:
            await self.state_store.asave(run)
        except Exception:
            logger.exception("Failed to persist run {run_id}; continuing in memory", run_id=run.run_id)

    def __repr__(self) -> str:
        live = sum(1 for handle in self._runs.values() if not handle.task.done())
        return f"PipelineEngine(runs={len(self._runs)}, live={live}, store={self.state_store!r})"


__all__ = ["PipelineEngine", "generate_run_id"]
