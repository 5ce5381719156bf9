"""State Store Port - durable snapshots of pipeline runs keyed by run id.

Implementations store full snapshots (not append-only logs): saving the same
run twice leaves exactly one record holding the latest state.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from jobdag.core.domain.pipeline_run import PipelineRun


@runtime_checkable
class StateStore(Protocol):
    """Port interface for run state persistence."""

    @abstractmethod
    async def asave(self, run: PipelineRun) -> None:
        """Overwrite the stored snapshot for ``run.run_id``.

        Raises
        ------
        StateStoreError
            If the backing store cannot be written
        """
        ...

    @abstractmethod
    async def aload(self, run_id: str) -> PipelineRun:
        """Load the latest snapshot for ``run_id``.

        Raises
        ------
        RunNotFoundError
            If no snapshot exists for ``run_id``
        StateStoreError
            If the snapshot exists but cannot be read
        """
        ...

    @abstractmethod
    async def alist_run_ids(self) -> list[str]:
        """Return the ids of all stored runs."""
        ...
