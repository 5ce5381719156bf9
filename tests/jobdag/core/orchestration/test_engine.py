"""End-to-end tests for PipelineEngine."""

import asyncio
import re
import time

import pytest

from jobdag.builtin.adapters.local.file_state_store import FileStateStore
from jobdag.builtin.adapters.memory.in_memory_state_store import InMemoryStateStore
from jobdag.core.config.models import EngineConfig
from jobdag.core.domain.pipeline import JobDefinition, PipelineDefinition, RetryPolicy
from jobdag.core.domain.pipeline_run import JobStatus, PipelineRun, RunStatus
from jobdag.core.exceptions import CycleDetectedError, PipelineValidationError, RunNotFoundError
from jobdag.core.orchestration.engine import PipelineEngine, generate_run_id


def job(job_id: str, *depends_on: str, **kwargs) -> JobDefinition:
    return JobDefinition(id=job_id, agent="tester", task=f"do {job_id}", depends_on=depends_on, **kwargs)


def pipeline(*jobs: JobDefinition, name: str = "build") -> PipelineDefinition:
    return PipelineDefinition(name=name, jobs=list(jobs))


def make_config(tmp_path, **overrides) -> EngineConfig:
    overrides.setdefault("cancel_grace_period", 0.1)
    return EngineConfig(state_dir=str(tmp_path), **overrides)


async def echo_executor(job, context, options):
    return f"{job.agent}:{job.task}"


async def wait_until_running(engine: PipelineEngine, run_id: str, job_id: str) -> None:
    for _ in range(200):
        status = engine.get_pipeline_status(run_id)
        if status is not None and status.jobs[job_id].status is JobStatus.RUNNING:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"{job_id} never started")


class TestSubmission:
    def test_rejects_non_callable_executor(self, tmp_path):
        with pytest.raises(TypeError):
            PipelineEngine("not callable", make_config(tmp_path))  # type: ignore[arg-type]

    def test_persistence_disabled_uses_memory_store(self, tmp_path):
        engine = PipelineEngine(echo_executor, make_config(tmp_path, enable_persistence=False))
        assert isinstance(engine.state_store, InMemoryStateStore)

    def test_default_store_is_file_store(self, tmp_path):
        engine = PipelineEngine(echo_executor, make_config(tmp_path))
        assert isinstance(engine.state_store, FileStateStore)

    def test_run_id_format(self):
        run_id = generate_run_id("Build & Test")
        assert re.fullmatch(r"build-test-\d{13}-[0-9a-f]{7}", run_id)

    @pytest.mark.asyncio
    async def test_cycle_is_rejected_without_creating_run(self, tmp_path):
        definition = pipeline(job("a", "c"), job("b", "a"), job("c", "b"))

        async with PipelineEngine(echo_executor, make_config(tmp_path)) as engine:
            with pytest.raises(CycleDetectedError):
                await engine.start_pipeline(definition)

        assert list((tmp_path / "runs").iterdir()) == []

    @pytest.mark.asyncio
    async def test_start_from_yaml_path(self, tmp_path):
        path = tmp_path / "build.yaml"
        path.write_text(
            "name: build\n"
            "jobs:\n"
            "  - id: analyze\n"
            "    agent: analyzer\n"
            "  - id: test\n"
            "    agent: tester\n"
            "    dependsOn: [analyze]\n"
        )

        async with PipelineEngine(echo_executor, make_config(tmp_path)) as engine:
            run = await engine.run_pipeline(path)

        assert run.status is RunStatus.COMPLETED
        assert run.jobs["test"].output == "tester:"


class TestExecution:
    @pytest.mark.asyncio
    async def test_dependency_order(self, tmp_path):
        timeline = []

        async def executor(job, context, options):
            timeline.append(("start", job.id))
            await asyncio.sleep(0.01)
            timeline.append(("end", job.id))
            return job.id

        async with PipelineEngine(executor, make_config(tmp_path)) as engine:
            run = await engine.run_pipeline(pipeline(job("A"), job("B", "A")))

        assert timeline.index(("end", "A")) < timeline.index(("start", "B"))
        assert run.status is RunStatus.COMPLETED
        assert run.progress == 100

    @pytest.mark.asyncio
    async def test_continue_on_error(self, tmp_path):
        async def executor(job, context, options):
            if job.id == "job1":
                raise RuntimeError("lint failed")
            return "ok"

        definition = pipeline(job("job1", continue_on_error=True), job("job2", "job1"))
        async with PipelineEngine(executor, make_config(tmp_path)) as engine:
            run = await engine.run_pipeline(definition)

        assert run.jobs["job1"].status is JobStatus.FAILED
        assert run.jobs["job2"].status is JobStatus.COMPLETED
        assert run.status is RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_retries_with_fixed_backoff(self, tmp_path):
        retrying = []

        async def executor(job, context, options):
            raise RuntimeError(f"attempt {options.attempt} failed")

        definition = pipeline(
            job("test", retry=RetryPolicy(max_attempts=3, backoff="fixed", delay_ms=100))
        )
        async with PipelineEngine(executor, make_config(tmp_path)) as engine:
            engine.on("job:retrying", retrying.append)
            start = time.perf_counter()
            run = await engine.run_pipeline(definition)
            elapsed = time.perf_counter() - start

        assert run.jobs["test"].attempts == 3
        assert run.jobs["test"].status is JobStatus.FAILED
        assert run.jobs["test"].error == "attempt 3 failed"
        assert [event.delay_ms for event in retrying] == [100, 100]
        assert elapsed >= 0.2
        assert run.status is RunStatus.FAILED
        assert run.progress == 100

    @pytest.mark.asyncio
    async def test_job_timeout_from_config(self, tmp_path):
        async def executor(job, context, options):
            await asyncio.sleep(5)

        config = make_config(tmp_path, default_job_timeout_ms=50)
        async with PipelineEngine(executor, config) as engine:
            run = await engine.run_pipeline(pipeline(job("slow")))

        assert run.jobs["slow"].status is JobStatus.FAILED
        assert "timed out after 50ms" in run.jobs["slow"].error


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cooperative_cancellation(self, tmp_path):
        async def executor(job, context, options):
            await options.abort_signal.wait()
            raise RuntimeError("aborted")

        async with PipelineEngine(executor, make_config(tmp_path)) as engine:
            run_id = await engine.start_pipeline(pipeline(job("a"), job("b", "a"), job("c")))
            await wait_until_running(engine, run_id, "a")

            assert engine.cancel_pipeline(run_id) is True
            assert engine.cancel_pipeline(run_id) is False
            run = await engine.wait_for_completion(run_id, timeout=2)

        assert run.status is RunStatus.CANCELLED
        assert run.jobs["a"].status is JobStatus.CANCELLED
        assert run.jobs["b"].status is JobStatus.CANCELLED
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_grace_period_forces_cancellation(self, tmp_path):
        async def executor(job, context, options):
            await asyncio.sleep(30)

        async with PipelineEngine(executor, make_config(tmp_path)) as engine:
            run_id = await engine.start_pipeline(pipeline(job("stubborn")))
            await wait_until_running(engine, run_id, "stubborn")

            engine.cancel_pipeline(run_id)
            run = await engine.wait_for_completion(run_id, timeout=2)

        assert run.status is RunStatus.CANCELLED
        assert run.jobs["stubborn"].status is JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_success_after_cancel_is_kept(self, tmp_path):
        async def executor(job, context, options):
            await options.abort_signal.wait()
            return "finished anyway"

        async with PipelineEngine(executor, make_config(tmp_path)) as engine:
            run_id = await engine.start_pipeline(pipeline(job("a")))
            await wait_until_running(engine, run_id, "a")

            engine.cancel_pipeline(run_id)
            run = await engine.wait_for_completion(run_id, timeout=2)

        assert run.status is RunStatus.CANCELLED
        assert run.jobs["a"].status is JobStatus.COMPLETED
        assert run.jobs["a"].output == "finished anyway"

    @pytest.mark.asyncio
    async def test_cancel_from_event_handler_stops_ready_jobs(self, tmp_path):
        invoked = []

        async def executor(job, context, options):
            invoked.append(job.id)
            return job.id

        async with PipelineEngine(
            executor, make_config(tmp_path, max_concurrent_jobs=3)
        ) as engine:
            engine.on("job:started", lambda event: engine.cancel_pipeline(event.run_id))
            run = await engine.run_pipeline(pipeline(job("a"), job("b"), job("c")))

        assert invoked == ["a"]
        assert run.status is RunStatus.CANCELLED
        assert run.jobs["a"].status is JobStatus.COMPLETED
        assert run.jobs["b"].status is JobStatus.CANCELLED
        assert run.jobs["c"].status is JobStatus.CANCELLED
        assert run.jobs["b"].attempts == 0

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_finished_run(self, tmp_path):
        async with PipelineEngine(echo_executor, make_config(tmp_path)) as engine:
            assert engine.cancel_pipeline("missing") is False

            run = await engine.run_pipeline(pipeline(job("a")))
            assert engine.cancel_pipeline(run.run_id) is False

    @pytest.mark.asyncio
    async def test_aclose_cancels_live_runs(self, tmp_path):
        async def executor(job, context, options):
            await options.abort_signal.wait()
            raise RuntimeError("aborted")

        engine = PipelineEngine(executor, make_config(tmp_path))
        run_id = await engine.start_pipeline(pipeline(job("a")))
        await wait_until_running(engine, run_id, "a")

        await engine.aclose()

        status = engine.get_pipeline_status(run_id)
        assert status is not None
        assert status.status is RunStatus.CANCELLED


class TestQueries:
    @pytest.mark.asyncio
    async def test_status_is_a_snapshot(self, tmp_path):
        async with PipelineEngine(echo_executor, make_config(tmp_path)) as engine:
            run = await engine.run_pipeline(pipeline(job("a")))

            snapshot = engine.get_pipeline_status(run.run_id)
            snapshot.jobs["a"].status = JobStatus.FAILED

            assert engine.get_pipeline_status(run.run_id).jobs["a"].status is JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_run(self, tmp_path):
        async with PipelineEngine(echo_executor, make_config(tmp_path)) as engine:
            assert engine.get_pipeline_status("missing") is None
            assert await engine.aget_pipeline_status("missing") is None
            with pytest.raises(RunNotFoundError):
                await engine.wait_for_completion("missing")

    @pytest.mark.asyncio
    async def test_wait_timeout_leaves_run_going(self, tmp_path):
        release = asyncio.Event()

        async def executor(job, context, options):
            await release.wait()
            return "done"

        async with PipelineEngine(executor, make_config(tmp_path)) as engine:
            run_id = await engine.start_pipeline(pipeline(job("a")))

            with pytest.raises(TimeoutError):
                await engine.wait_for_completion(run_id, timeout=0.05)

            release.set()
            run = await engine.wait_for_completion(run_id, timeout=2)

        assert run.status is RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_state_survives_engine_restart(self, tmp_path):
        async with PipelineEngine(echo_executor, make_config(tmp_path)) as engine:
            run = await engine.run_pipeline(pipeline(job("a"), job("b", "a")), {"branch": "main"})

        async with PipelineEngine(echo_executor, make_config(tmp_path)) as restarted:
            restored = await restarted.aget_pipeline_status(run.run_id)
            listed = await restarted.list_runs()
            waited = await restarted.wait_for_completion(run.run_id)

        assert restored == run
        assert waited == run
        assert [r.run_id for r in listed] == [run.run_id]

    @pytest.mark.asyncio
    async def test_list_runs_includes_live_runs(self, tmp_path):
        release = asyncio.Event()
        release.set()

        async def executor(job, context, options):
            await release.wait()

        async with PipelineEngine(executor, make_config(tmp_path)) as engine:
            finished = await engine.run_pipeline(pipeline(job("a"), name="first"))
            release.clear()
            live_id = await engine.start_pipeline(pipeline(job("a"), name="second"))

            runs = {run.run_id: run for run in await engine.list_runs()}
            release.set()

        assert set(runs) == {finished.run_id, live_id}
        assert runs[finished.run_id].status is RunStatus.COMPLETED
        assert not runs[live_id].is_terminal


class TestResume:
    @staticmethod
    async def persist_interrupted_run(store) -> PipelineRun:
        run = PipelineRun.create("build-1-abc1234", "build", ["a", "b"], {"branch": "main"})
        run.transition(RunStatus.RUNNING)
        run.jobs["a"].status = JobStatus.COMPLETED
        run.jobs["a"].attempts = 1
        run.jobs["a"].output = {"files": 12}
        run.jobs["b"].status = JobStatus.RUNNING
        run.jobs["b"].attempts = 2
        await store.asave(run)
        return run

    @pytest.mark.asyncio
    async def test_resume_runs_only_unfinished_jobs(self, tmp_path, recorded_events, event_bus):
        store = FileStateStore(tmp_path)
        await self.persist_interrupted_run(store)
        calls = {}

        async def executor(job, context, options):
            calls[job.id] = context
            return "resumed"

        definition = pipeline(job("a"), job("b", "a"))
        async with PipelineEngine(
            executor, make_config(tmp_path), state_store=store, event_bus=event_bus
        ) as engine:
            assert await engine.resume_pipeline("build-1-abc1234", definition) is True
            run = await engine.wait_for_completion("build-1-abc1234", timeout=2)

        assert list(calls) == ["b"]
        assert calls["b"]["a"] == {"files": 12}
        assert run.status is RunStatus.COMPLETED
        assert run.jobs["b"].attempts == 1
        assert "pipeline:started" not in [e.event_name for e in recorded_events]

    @pytest.mark.asyncio
    async def test_resume_nothing_to_do(self, tmp_path):
        async with PipelineEngine(echo_executor, make_config(tmp_path)) as engine:
            finished = await engine.run_pipeline(pipeline(job("a")))

        async with PipelineEngine(echo_executor, make_config(tmp_path)) as engine:
            assert await engine.resume_pipeline(finished.run_id, pipeline(job("a"))) is False
            assert await engine.resume_pipeline("missing-1-0000000", pipeline(job("a"))) is False

    @pytest.mark.asyncio
    async def test_resume_with_mismatched_definition(self, tmp_path):
        store = FileStateStore(tmp_path)
        await self.persist_interrupted_run(store)

        async with PipelineEngine(echo_executor, make_config(tmp_path), state_store=store) as engine:
            with pytest.raises(PipelineValidationError, match="does not match"):
                await engine.resume_pipeline("build-1-abc1234", pipeline(job("a"), job("c")))
