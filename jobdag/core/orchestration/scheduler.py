"""Per-run scheduler - drives one PipelineRun from start to a terminal state.

The scheduler coroutine is the only writer of its run. Executor invocations
and retry backoffs are separate asyncio tasks that only return values or
raise; the dispatch loop wakes up whenever one of them finishes (or the
cancellation token trips) and applies the outcome to the run.

Each step that changes state follows the same order: mutate the run,
persist a snapshot, then publish the matching event.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import TYPE_CHECKING, Any

from jobdag.core.domain.dag import DependencyGraph
from jobdag.core.domain.pipeline_run import JobStatus, PipelineRun, RunStatus, utc_now
from jobdag.core.exceptions import JobExecutionError, JobTimeoutError
from jobdag.core.logging import get_logger, set_correlation_id
from jobdag.core.orchestration.cancellation import CancellationToken
from jobdag.core.orchestration.events import (
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
from jobdag.core.ports.executor import ExecutionOptions, ExecutionResult
from jobdag.core.validation.retry import delay_for, should_retry

if TYPE_CHECKING:
    from collections.abc import Callable

    from jobdag.core.domain.pipeline import JobDefinition, PipelineDefinition
    from jobdag.core.ports.event_bus import EventBus
    from jobdag.core.ports.executor import JobExecutor
    from jobdag.core.ports.state_store import StateStore

logger = get_logger(__name__)


class Scheduler:
    """Dispatch loop for a single pipeline run.

    Parameters
    ----------
    definition : PipelineDefinition
        Validated definition the run was created from
    run : PipelineRun
        Run to drive; either freshly created (``pending``) or resumed (``running``)
    executor : JobExecutor
        Callable performing each job's work
    state_store : StateStore
        Receives a full snapshot after every state change
    event_bus : EventBus
        Receives lifecycle events
    max_concurrent_jobs : int
        Upper bound on jobs that are running or waiting out a retry backoff
    default_job_timeout_ms : int | None
        Timeout for jobs that do not declare ``timeout_ms``
    cancel_grace_period : float
        Seconds in-flight executors get to honour the abort signal before
        their tasks are cancelled
    cancellation : CancellationToken | None
        Token shared with the engine; a new one is created when omitted
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        run: PipelineRun,
        executor: JobExecutor,
        state_store: StateStore,
        event_bus: EventBus,
        *,
        max_concurrent_jobs: int = 3,
        default_job_timeout_ms: int | None = None,
        cancel_grace_period: float = 5.0,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self.definition = definition
        self._run = run
        self.token = cancellation or CancellationToken()

        self._executor = executor
        self._state_store = state_store
        self._event_bus = event_bus
        self._max_concurrent_jobs = max_concurrent_jobs
        self._default_job_timeout_ms = default_job_timeout_ms
        self._cancel_grace_period = cancel_grace_period

        self._graph = DependencyGraph(definition)
        self._jobs: dict[str, JobDefinition] = {job.id: job for job in definition.jobs}
        self._executing: dict[asyncio.Task[ExecutionResult], str] = {}
        self._backoffs: dict[asyncio.Task[None], str] = {}
        self._cancel_applied = False
        self._grace_timer: asyncio.Task[None] | None = None
        self._started = time.perf_counter()

    @property
    def pipeline_run(self) -> PipelineRun:
        """The run being driven (live object, mutated by this scheduler only)."""
        return self._run

    @property
    def active_count(self) -> int:
        """Jobs holding a concurrency slot (running or in retry backoff)."""
        return len(self._executing) + len(self._backoffs)

    async def run(self) -> PipelineRun:
        """Drive the run until it is terminal and return it."""
        set_correlation_id(self._run.run_id)
        self._started = time.perf_counter()
        cancel_waiter = asyncio.ensure_future(self.token.wait())

        try:
            await self._start()
            await self._loop(cancel_waiter)
            await self._finish()
        except Exception as e:
            logger.exception("Scheduler for run {run_id} crashed", run_id=self._run.run_id)
            await self._abort(e)
        finally:
            cancel_waiter.cancel()
            self._cancel_children()

        return self._run

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _start(self) -> None:
        if self._run.status is RunStatus.PENDING:
            self._run.transition(RunStatus.RUNNING)
            await self._persist()
            self._publish(
                PipelineStarted(
                    run_id=self._run.run_id,
                    pipeline=self.definition.name,
                    total_jobs=len(self._run.jobs),
                    context=dict(self._run.context),
                )
            )
        else:
            logger.info(
                "Resuming run {run_id} of '{pipeline}'",
                run_id=self._run.run_id,
                pipeline=self.definition.name,
            )

    async def _loop(self, cancel_waiter: asyncio.Future[None]) -> None:
        while True:
            if not self.token.cancelled:
                await self._schedule()
            # Checked again after scheduling; handlers can cancel mid-dispatch
            if self.token.cancelled:
                await self._apply_cancellation()

            if not self._executing and not self._backoffs:
                break

            waiters: set[asyncio.Future[Any]] = {*self._executing, *self._backoffs}
            if not self.token.cancelled:
                waiters.add(cancel_waiter)
            elif self._grace_timer is not None:
                waiters.add(self._grace_timer)

            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

            # Apply outcomes in declared order so ties stay deterministic
            for task in sorted(done, key=self._completion_key):
                if task in self._executing:
                    await self._on_job_done(task)  # type: ignore[arg-type]
                elif task in self._backoffs:
                    await self._on_backoff_done(task)  # type: ignore[arg-type]
                elif task is self._grace_timer:
                    self._force_cancel_executing()

        await self._skip_unreachable()

    async def _finish(self) -> None:
        failed = [
            job_id
            for job_id in self._run.jobs_with_status(JobStatus.FAILED)
            if not self._jobs[job_id].continue_on_error
        ]
        if self.token.cancelled:
            target = RunStatus.CANCELLED
        elif failed:
            target = RunStatus.FAILED
        else:
            target = RunStatus.COMPLETED

        self._run.progress = self._run.compute_progress()
        self._run.transition(target)
        await self._persist()

        duration_ms = (time.perf_counter() - self._started) * 1000
        if target is RunStatus.CANCELLED:
            event: Event = PipelineCancelled(
                run_id=self._run.run_id, pipeline=self.definition.name, duration_ms=duration_ms
            )
        elif target is RunStatus.FAILED:
            event = PipelineFailed(
                run_id=self._run.run_id,
                pipeline=self.definition.name,
                duration_ms=duration_ms,
                failed_jobs=failed,
                error=f"{len(failed)} job(s) failed: {', '.join(failed)}",
            )
        else:
            event = PipelineCompleted(
                run_id=self._run.run_id, pipeline=self.definition.name, duration_ms=duration_ms
            )
        self._publish(event, level="INFO")

    async def _abort(self, error: Exception) -> None:
        """Fail the run after an unexpected scheduler error."""
        self._cancel_children()
        now = utc_now()
        for state in self._run.jobs.values():
            if not state.status.is_terminal:
                state.status = JobStatus.CANCELLED
                state.completed_at = now
        self._run.progress = self._run.compute_progress()
        if not self._run.is_terminal:
            if self._run.status is RunStatus.PENDING:
                self._run.transition(RunStatus.RUNNING)
            self._run.transition(RunStatus.FAILED)
        await self._persist()
        self._publish(
            PipelineFailed(
                run_id=self._run.run_id,
                pipeline=self.definition.name,
                duration_ms=(time.perf_counter() - self._started) * 1000,
                error=str(error) or type(error).__name__,
            ),
            level="ERROR",
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _schedule(self) -> None:
        resolution = self._graph.resolve(self._run.jobs)

        if resolution.skipped:
            now = utc_now()
            for job_id, reason in resolution.skipped.items():
                state = self._run.jobs[job_id]
                state.status = JobStatus.SKIPPED
                state.error = reason
                state.completed_at = now
            self._run.progress = self._run.compute_progress()
            await self._persist()
            for job_id, reason in resolution.skipped.items():
                self._publish(JobSkipped(run_id=self._run.run_id, job_id=job_id, reason=reason))

        for job_id in resolution.blocked:
            self._run.jobs[job_id].status = JobStatus.BLOCKED
        for job_id in resolution.ready:
            self._run.jobs[job_id].status = JobStatus.READY

        for job_id in resolution.ready:
            # An event handler may cancel the run while earlier jobs dispatch
            if self.token.cancelled or self.active_count >= self._max_concurrent_jobs:
                break
            await self._dispatch(job_id)

    async def _dispatch(self, job_id: str) -> None:
        job = self._jobs[job_id]
        state = self._run.jobs[job_id]
        previous_started_at = state.started_at

        state.status = JobStatus.RUNNING
        state.attempts += 1
        state.started_at = state.started_at or utc_now()
        state.completed_at = None
        await self._persist()

        if self.token.cancelled:
            # Cancelled while persisting; the executor was never invoked
            state.attempts -= 1
            state.started_at = previous_started_at
            await self._mark_cancelled([job_id], was_running=False)
            return

        self._publish(
            JobStarted(
                run_id=self._run.run_id,
                job_id=job_id,
                job_name=job.display_name,
                attempt=state.attempts,
            )
        )

        timeout_ms = job.timeout_ms or self._default_job_timeout_ms
        options = ExecutionOptions(
            on_progress=self._progress_reporter(job_id),
            on_log=self._log_reporter(job_id),
            abort_signal=self.token,
            attempt=state.attempts,
            timeout_ms=timeout_ms,
        )
        task = asyncio.create_task(
            self._execute(job, self._build_context(job), options),
            name=f"jobdag:{self._run.run_id}:{job_id}:{state.attempts}",
        )
        self._executing[task] = job_id

    def _build_context(self, job: JobDefinition) -> dict[str, Any]:
        """Initial context plus the output of every completed job, keyed by job id."""
        context = dict(self._run.context)
        for job_id, state in self._run.jobs.items():
            if state.status is JobStatus.COMPLETED:
                context[job_id] = state.output
        if job.inputs:
            context["inputs"] = dict(job.inputs)
        return context

    async def _execute(
        self, job: JobDefinition, context: dict[str, Any], options: ExecutionOptions
    ) -> ExecutionResult:
        start_time = time.perf_counter()
        timeout = options.timeout_ms / 1000 if options.timeout_ms else None

        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                raw = await self._invoke(job, context, options)
        except TimeoutError as e:
            # A TimeoutError raised by the executor itself is an ordinary failure
            if not deadline.expired():
                raise
            raise JobTimeoutError(job.id, options.timeout_ms or 0) from e

        result = ExecutionResult.coerce(raw)
        if not result.success:
            raise JobExecutionError(job.id, result.error or "executor reported failure")
        if not result.duration_ms:
            result = result.model_copy(
                update={"duration_ms": (time.perf_counter() - start_time) * 1000}
            )
        return result

    async def _invoke(
        self, job: JobDefinition, context: dict[str, Any], options: ExecutionOptions
    ) -> Any:
        executor = self._executor
        if inspect.iscoroutinefunction(executor) or inspect.iscoroutinefunction(
            getattr(executor, "__call__", None)
        ):
            return await executor(job, context, options)

        # Sync executors run in a worker thread so they cannot block the loop
        raw = await asyncio.to_thread(executor, job, context, options)
        if inspect.isawaitable(raw):
            raw = await raw
        return raw

    def _progress_reporter(self, job_id: str) -> Callable[[int], None]:
        run_id = self._run.run_id
        publish = self._threadsafe_publisher()

        def report(percent: int) -> None:
            clamped = max(0, min(100, int(percent)))
            publish(JobProgress(run_id=run_id, job_id=job_id, percent=clamped))

        return report

    def _log_reporter(self, job_id: str) -> Callable[[str], None]:
        run_id = self._run.run_id
        publish = self._threadsafe_publisher()

        def log(message: str) -> None:
            publish(JobLog(run_id=run_id, job_id=job_id, message=str(message)))

        return log

    def _threadsafe_publisher(self) -> Callable[[Event], None]:
        """Publish from the scheduler's loop, hopping over from worker threads."""
        loop = asyncio.get_running_loop()

        def publish(event: Event) -> None:
            try:
                current = asyncio.get_running_loop()
            except RuntimeError:
                current = None
            if current is loop:
                self._publish(event)
            else:
                loop.call_soon_threadsafe(self._publish, event)

        return publish

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _on_job_done(self, task: asyncio.Task[ExecutionResult]) -> None:
        job_id = self._executing.pop(task)
        job = self._jobs[job_id]
        state = self._run.jobs[job_id]

        error: BaseException | None
        if task.cancelled():
            error = asyncio.CancelledError("executor task was cancelled")
        else:
            error = task.exception()

        if error is None:
            result = task.result()
            state.status = JobStatus.COMPLETED
            state.output = result.output
            state.error = None
            state.completed_at = utc_now()
            state.duration_ms = result.duration_ms
            self._run.progress = self._run.compute_progress()
            await self._persist()
            self._publish(
                JobCompleted(
                    run_id=self._run.run_id,
                    job_id=job_id,
                    job_name=job.display_name,
                    output=result.output,
                    duration_ms=result.duration_ms,
                )
            )
            return

        message = str(error) or type(error).__name__

        if self.token.cancelled:
            state.error = message
            await self._mark_cancelled([job_id], was_running=True)
            return

        if should_retry(state.attempts, job.retry):
            delay_ms = delay_for(state.attempts, job.retry)
            state.status = JobStatus.RETRYING
            state.error = message
            await self._persist()
            self._publish(
                JobRetrying(
                    run_id=self._run.run_id,
                    job_id=job_id,
                    job_name=job.display_name,
                    attempt=state.attempts,
                    delay_ms=delay_ms,
                    error=message,
                ),
                level="WARNING",
            )
            backoff = asyncio.create_task(
                asyncio.sleep(delay_ms / 1000), name=f"jobdag:{self._run.run_id}:{job_id}:backoff"
            )
            self._backoffs[backoff] = job_id
            return

        state.status = JobStatus.FAILED
        state.error = message
        state.completed_at = utc_now()
        self._run.progress = self._run.compute_progress()
        await self._persist()
        self._publish(
            JobFailed(
                run_id=self._run.run_id,
                job_id=job_id,
                job_name=job.display_name,
                error=message,
                attempts=state.attempts,
                continue_on_error=job.continue_on_error,
            ),
            level="WARNING" if job.continue_on_error else "ERROR",
        )

    async def _on_backoff_done(self, task: asyncio.Task[None]) -> None:
        job_id = self._backoffs.pop(task)
        if self.token.cancelled:
            await self._mark_cancelled([job_id], was_running=False)
            return
        # The job kept its slot during the backoff
        await self._dispatch(job_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def _apply_cancellation(self) -> None:
        if self._cancel_applied:
            return
        self._cancel_applied = True
        logger.info(
            "Cancelling run {run_id} ({reason}); {running} job(s) in flight",
            run_id=self._run.run_id,
            reason=self.token.reason,
            running=len(self._executing),
        )

        undispatched = self._run.jobs_with_status(
            JobStatus.PENDING, JobStatus.BLOCKED, JobStatus.READY
        )
        for task, job_id in list(self._backoffs.items()):
            task.cancel()
            undispatched.append(job_id)
        self._backoffs.clear()

        if undispatched:
            await self._mark_cancelled(undispatched, was_running=False)

        if self._executing:
            self._grace_timer = asyncio.create_task(
                asyncio.sleep(self._cancel_grace_period),
                name=f"jobdag:{self._run.run_id}:grace",
            )

    def _force_cancel_executing(self) -> None:
        logger.warning(
            "Grace period of {grace}s elapsed; cancelling {count} executor task(s)",
            grace=self._cancel_grace_period,
            count=len(self._executing),
        )
        self._grace_timer = None
        for task in self._executing:
            task.cancel()

    async def _mark_cancelled(self, job_ids: list[str], *, was_running: bool) -> None:
        now = utc_now()
        for job_id in job_ids:
            state = self._run.jobs[job_id]
            state.status = JobStatus.CANCELLED
            state.completed_at = now
        self._run.progress = self._run.compute_progress()
        await self._persist()
        for job_id in job_ids:
            self._publish(
                JobCancelled(run_id=self._run.run_id, job_id=job_id, was_running=was_running)
            )

    async def _skip_unreachable(self) -> None:
        leftovers = self._run.jobs_with_status(JobStatus.PENDING, JobStatus.BLOCKED, JobStatus.READY)
        if not leftovers:
            return
        now = utc_now()
        for job_id in leftovers:
            state = self._run.jobs[job_id]
            state.status = JobStatus.SKIPPED
            state.error = "not reachable"
            state.completed_at = now
        self._run.progress = self._run.compute_progress()
        await self._persist()
        for job_id in leftovers:
            self._publish(JobSkipped(run_id=self._run.run_id, job_id=job_id, reason="not reachable"))

    def _cancel_children(self) -> None:
        for task in [*self._executing, *self._backoffs]:
            task.cancel()
        if self._grace_timer is not None:
            self._grace_timer.cancel()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _completion_key(self, task: asyncio.Future[Any]) -> int:
        if task in self._executing:
            job_id = self._executing[task]  # type: ignore[index]
        elif task in self._backoffs:
            job_id = self._backoffs[task]  # type: ignore[index]
        else:
            return len(self._jobs)
        return self._graph.declared_index(job_id)

    async def _persist(self) -> None:
        try:
            await self._state_store.asave(self._run)
        except Exception:
            logger.exception(
                "Failed to persist run {run_id}; continuing in memory", run_id=self._run.run_id
            )

    def _publish(self, event: Event, level: str = "DEBUG") -> None:
        logger.log(level, "{message}", message=event.log_message())
        self._event_bus.notify(event)
