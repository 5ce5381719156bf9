"""Tests for the JSON file state store."""

import json

import pytest

from jobdag.builtin.adapters.local.file_state_store import FileStateStore
from jobdag.core.domain.pipeline_run import JobStatus, PipelineRun, RunStatus
from jobdag.core.exceptions import RunNotFoundError, StateStoreError


def make_run(run_id: str = "build-1700000000000-abc1234") -> PipelineRun:
    run = PipelineRun.create(run_id, "build", ["analyze", "test"], {"branch": "main"})
    run.transition(RunStatus.RUNNING)
    run.jobs["analyze"].status = JobStatus.COMPLETED
    run.jobs["analyze"].attempts = 1
    run.jobs["analyze"].output = {"files": 12}
    run.progress = run.compute_progress()
    return run


class TestFileStateStore:
    @pytest.mark.asyncio
    async def test_writes_one_file_per_run(self, tmp_path):
        store = FileStateStore(tmp_path)
        run = make_run()

        await store.asave(run)

        path = tmp_path / "runs" / f"{run.run_id}.json"
        assert path.exists()
        data = json.loads(path.read_text())
        assert data["runId"] == run.run_id
        assert data["jobs"]["analyze"]["output"] == {"files": 12}
        assert data["progress"] == 50

    @pytest.mark.asyncio
    async def test_round_trip_in_new_store(self, tmp_path):
        run = make_run()
        await FileStateStore(tmp_path).asave(run)

        restored = await FileStateStore(tmp_path).aload(run.run_id)

        assert restored == run

    @pytest.mark.asyncio
    async def test_save_overwrites_snapshot(self, tmp_path):
        store = FileStateStore(tmp_path)
        run = make_run()
        await store.asave(run)

        run.jobs["test"].status = JobStatus.FAILED
        run.jobs["test"].error = "assertion failed"
        await store.asave(run)

        restored = await store.aload(run.run_id)
        assert restored.jobs["test"].error == "assertion failed"
        assert await store.alist_run_ids() == [run.run_id]
        # No temporary files are left behind
        assert [p.name for p in (tmp_path / "runs").iterdir()] == [f"{run.run_id}.json"]

    @pytest.mark.asyncio
    async def test_missing_run(self, tmp_path):
        with pytest.raises(RunNotFoundError):
            await FileStateStore(tmp_path).aload("nope-1-0000000")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("run_id", ["../escape", "a/b", "", ".hidden"])
    async def test_unsafe_run_ids_are_not_found(self, tmp_path, run_id):
        with pytest.raises(RunNotFoundError):
            await FileStateStore(tmp_path).aload(run_id)

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        store = FileStateStore(tmp_path)
        (tmp_path / "runs" / "broken-1-abc1234.json").write_text("{not json")

        with pytest.raises(StateStoreError, match="Corrupt"):
            await store.aload("broken-1-abc1234")

    @pytest.mark.asyncio
    async def test_list_run_ids_sorted(self, tmp_path):
        store = FileStateStore(tmp_path)
        for run_id in ("b-2-0000000", "a-1-0000000"):
            await store.asave(make_run(run_id))

        assert await store.alist_run_ids() == ["a-1-0000000", "b-2-0000000"]

    @pytest.mark.asyncio
    async def test_list_without_directory(self, tmp_path):
        store = FileStateStore(tmp_path / "absent", create_if_missing=False)
        assert await store.alist_run_ids() == []
