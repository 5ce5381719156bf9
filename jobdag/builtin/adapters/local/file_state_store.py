"""Filesystem state store: one JSON document per run.

Layout::

    <state_dir>/runs/<run_id>.json

Writes go to a temporary sibling file that is then renamed over the target,
so a crash mid-write never leaves a truncated snapshot behind.
"""

from __future__ import annotations

import re
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from jobdag.core.domain.pipeline_run import PipelineRun
from jobdag.core.exceptions import RunNotFoundError, StateStoreError
from jobdag.core.logging import get_logger

logger = get_logger(__name__)

_SAFE_RUN_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
RUNS_DIRNAME = "runs"


class FileStateStore:
    """JSON-file backed implementation of the StateStore port.

    Examples
    --------
    Basic usage::

        store = FileStateStore(".jobdag/pipelines")
        await store.asave(run)
        restored = await store.aload(run.run_id)
    """

    def __init__(self, state_dir: str | Path, create_if_missing: bool = True) -> None:
        self._state_dir = Path(state_dir)
        self._runs_dir = self._state_dir / RUNS_DIRNAME
        if create_if_missing:
            self._runs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def runs_dir(self) -> Path:
        return self._runs_dir

    def path_for(self, run_id: str) -> Path:
        """Path of the snapshot for ``run_id``.

        Raises
        ------
        RunNotFoundError
            If ``run_id`` is not a safe file name (e.g. contains a separator)
        """
        if not _SAFE_RUN_ID.match(run_id) or ".." in run_id:
            raise RunNotFoundError(run_id)
        return self._runs_dir / f"{run_id}.json"

    async def asave(self, run: PipelineRun) -> None:
        """Atomically overwrite the snapshot for ``run``."""
        target = self.path_for(run.run_id)
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.tmp")
        payload = run.to_json()

        try:
            await aiofiles.os.makedirs(self._runs_dir, exist_ok=True)
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp, target)
        except OSError as e:
            if await aiofiles.os.path.exists(tmp):
                await aiofiles.os.remove(tmp)
            raise StateStoreError(f"Cannot write state for run '{run.run_id}': {e}") from e

        logger.debug("Saved run {run_id} ({status})", run_id=run.run_id, status=run.status.value)

    async def aload(self, run_id: str) -> PipelineRun:
        """Load the snapshot for ``run_id``."""
        path = self.path_for(run_id)
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except FileNotFoundError:
            raise RunNotFoundError(run_id) from None
        except OSError as e:
            raise StateStoreError(f"Cannot read state for run '{run_id}': {e}") from e

        try:
            return PipelineRun.from_json(data)
        except ValidationError as e:
            raise StateStoreError(f"Corrupt state file for run '{run_id}': {e}") from e

    async def alist_run_ids(self) -> list[str]:
        """Ids of all persisted runs, sorted."""
        if not await aiofiles.os.path.isdir(self._runs_dir):
            return []
        names = await aiofiles.os.listdir(self._runs_dir)
        return sorted(
            name.removesuffix(".json")
            for name in names
            if name.endswith(".json") and not name.startswith(".")
        )

    def __repr__(self) -> str:
        return f"FileStateStore(state_dir={self._state_dir})"
