"""In-memory state store for tests and runs with persistence disabled."""

from __future__ import annotations

from jobdag.core.domain.pipeline_run import PipelineRun
from jobdag.core.exceptions import RunNotFoundError


class InMemoryStateStore:
    """Dictionary-backed StateStore.

    Snapshots are kept in their serialised JSON form so a save/load cycle
    behaves exactly like the file store, including the loss of object
    identity for job outputs.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, bytes] = {}
        self.save_count = 0

    async def asave(self, run: PipelineRun) -> None:
        self._snapshots[run.run_id] = run.to_json(indent=None)
        self.save_count += 1

    async def aload(self, run_id: str) -> PipelineRun:
        try:
            data = self._snapshots[run_id]
        except KeyError:
            raise RunNotFoundError(run_id) from None
        return PipelineRun.from_json(data)

    async def alist_run_ids(self) -> list[str]:
        return sorted(self._snapshots)

    def clear(self) -> None:
        self._snapshots.clear()
        self.save_count = 0

    def __len__(self) -> int:
        return len(self._snapshots)
