"""Cancellation token shared between a run's scheduler and its executors."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """One-shot abort signal.

    The scheduler owns the token and calls :meth:`cancel`; executors receive
    it as ``options.abort_signal`` and either poll :attr:`cancelled` or await
    :meth:`wait`. Reading :attr:`cancelled` is safe from worker threads.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Trip the token. Returns False if it was already cancelled."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled ({self._reason})" if self.cancelled else "active"
        return f"CancellationToken({state})"
