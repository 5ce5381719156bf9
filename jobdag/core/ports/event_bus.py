"""Event Bus Port - contract for publishing scheduler lifecycle events.

Key guarantees an implementation must provide:
- Delivery is in-process and does not block on consumers
- Handlers are read-only; they cannot affect scheduling
- A failing handler never propagates into the scheduler
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable, Iterable
from typing import Any, Protocol, runtime_checkable

from jobdag.core.orchestration.events.events import Event

# Handlers may be plain functions or coroutine functions
EventHandler = Callable[[Event], Any]


@runtime_checkable
class EventBus(Protocol):
    """Port interface for lifecycle event delivery."""

    @abstractmethod
    def register(
        self,
        handler: EventHandler,
        *,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
        handler_id: str | None = None,
    ) -> str:
        """Register a handler, optionally filtered by event type.

        Returns
        -------
            str: The ID of the registered handler
        """
        ...

    @abstractmethod
    def on(self, event_name: str, handler: EventHandler) -> str:
        """Register a handler for a single event name such as ``"job:failed"``."""
        ...

    @abstractmethod
    def unregister(self, handler_id: str) -> bool:
        """Remove a handler. Returns True if it was registered."""
        ...

    @abstractmethod
    def notify(self, event: Event) -> None:
        """Deliver ``event`` to every interested handler."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Remove all registered handlers."""
        ...

    @abstractmethod
    def __len__(self) -> int:
        """Return number of registered handlers."""
        ...
