"""Local Event Bus Adapter - in-process implementation of the EventBus port.

Delivery is synchronous and in registration order, so a handler observes
events in exactly the order the scheduler produced them. Coroutine handlers
are scheduled as fire-and-forget tasks on the running loop. Handler failures
are routed to an error handler and never reach the scheduler.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Iterable
from typing import Any, Protocol

from jobdag.core.logging import get_logger
from jobdag.core.orchestration.events.events import EVENT_TYPES, Event
from jobdag.core.ports.event_bus import EventHandler


class ErrorHandler(Protocol):
    """Protocol for handling errors raised by event handlers."""

    def handle_error(self, error: BaseException, context: dict[str, Any]) -> None:
        """Handle an error that occurred during event delivery."""
        ...


class LoggingErrorHandler:
    """Default error handler that logs errors."""

    def __init__(self, logger: Any | None = None):
        """Initialize with optional logger."""
        self.logger: Any = logger if logger is not None else get_logger(__name__)

    def handle_error(self, error: BaseException, context: dict[str, Any]) -> None:
        """Log the error with context."""
        handler_name = context.get("handler_name", "unknown")
        event_type = context.get("event_type", "unknown")
        self.logger.warning(
            "Handler {handler} failed for {event_type}: {error}",
            handler=handler_name,
            event_type=event_type,
            error=error,
        )


class LocalEventBus:
    """Synchronous in-process event bus.

    Examples
    --------
    Example usage::

        bus = LocalEventBus()
        bus.register(print, event_types=[JobFailed])
        bus.on("pipeline:completed", lambda event: print(event.run_id))
    """

    def __init__(self, error_handler: ErrorHandler | None = None) -> None:
        self._error_handler = error_handler or LoggingErrorHandler()
        self._handlers: dict[str, EventHandler] = {}
        self._event_filters: dict[str, frozenset[type[Event]] | None] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    def register(
        self,
        handler: EventHandler,
        *,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
        handler_id: str | None = None,
    ) -> str:
        """Register a handler with optional event type filtering.

        Raises
        ------
            TypeError: If handler is not callable
        """
        if not callable(handler):
            raise TypeError(f"Event handler must be callable, got {type(handler)}")

        handler_id = handler_id or str(uuid.uuid4())
        self._handlers[handler_id] = handler

        if event_types is None:
            self._event_filters[handler_id] = None
        elif isinstance(event_types, type):
            self._event_filters[handler_id] = frozenset({event_types})
        else:
            self._event_filters[handler_id] = frozenset(event_types)

        return handler_id

    def on(self, event_name: str, handler: EventHandler) -> str:
        """Register a handler for one event name (e.g. ``"job:completed"``).

        Raises
        ------
            ValueError: If the event name is unknown
        """
        try:
            event_type = EVENT_TYPES[event_name]
        except KeyError:
            known = ", ".join(sorted(EVENT_TYPES))
            raise ValueError(f"Unknown event name '{event_name}'. Known: {known}") from None
        return self.register(handler, event_types=event_type)

    def unregister(self, handler_id: str) -> bool:
        """Unregister a handler by ID."""
        self._event_filters.pop(handler_id, None)
        return self._handlers.pop(handler_id, None) is not None

    def notify(self, event: Event) -> None:
        """Deliver ``event`` to every interested handler, in registration order."""
        for handler_id, handler in list(self._handlers.items()):
            if self._should_notify(handler_id, event):
                self._safe_invoke(handler, event)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()
        self._event_filters.clear()

    async def drain(self) -> None:
        """Wait for coroutine handlers that are still running."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def __len__(self) -> int:
        return len(self._handlers)

    def _should_notify(self, handler_id: str, event: Event) -> bool:
        event_filter = self._event_filters.get(handler_id)
        if event_filter is None:
            return True
        return type(event) in event_filter

    def _safe_invoke(self, handler: EventHandler, event: Event) -> None:
        name = getattr(handler, "__name__", handler.__class__.__name__)
        context = {"handler_name": name, "event_type": event.event_name}
        try:
            result = handler(event)
        except Exception as e:
            self._error_handler.handle_error(e, context)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(lambda t: self._on_task_done(t, context))

    def _on_task_done(self, task: asyncio.Future[Any], context: dict[str, Any]) -> None:
        self._pending.discard(task)  # type: ignore[arg-type]
        if task.cancelled():
            return
        if (error := task.exception()) is not None:
            self._error_handler.handle_error(error, context)
