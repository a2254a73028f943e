"""In-process pub/sub for SystemEvents.

Producers (intake engine, session sweeper, enrichers, report store) call
``emit``; the event goes onto a queue and a single worker task fans it
out to subscribers off the reply path.

    from src.admin.events import emit, subscribe

    subscribe(audit_on_event)                                   # every event
    subscribe(on_persisted, [EventType.REPORT_PERSISTED])      # one type
    await emit(SystemEvent(event_type=EventType.SESSION_STARTED, user_id="42"))
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from typing import Any

from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


class EventBus:
    """Queue plus one worker task; subscribers keyed by event type (None = all)."""

    def __init__(self) -> None:
        self._handlers: defaultdict[EventType | None, list[EventHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    def subscribe(self, handler: EventHandler, event_types: list[EventType] | None = None) -> None:
        keys: list[EventType | None] = list(event_types) if event_types else [None]
        for key in keys:
            self._handlers[key].append(handler)
        logger.info(
            "Subscriber %s registered for %s",
            getattr(handler, "__name__", repr(handler)),
            "all events" if event_types is None else [t.value for t in event_types],
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        for handlers in self._handlers.values():
            while handler in handlers:
                handlers.remove(handler)

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._handlers.get(None, []), *self._handlers.get(event_type, [])]

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def emit(self, event: SystemEvent) -> None:
        if not self.running:
            self.start()
        await self._queue.put(event)  # type: ignore[union-attr]
        logger.debug("Queued %s (user=%s)", event.event_type.value, event.user_id)

    async def deliver(self, event: SystemEvent) -> None:
        """Run every matching subscriber concurrently; failures are logged, not raised."""
        handlers = self.handlers_for(event.event_type)
        if not handlers:
            return
        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Subscriber %s failed on %s: %r",
                    getattr(handler, "__name__", repr(handler)),
                    event.event_type.value,
                    result,
                )

    def start(self) -> None:
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(self._queue))

    async def stop(self) -> None:
        """Drain what is queued, then stop the worker."""
        if self._queue is not None and self.running:
            await self._queue.join()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None
        self._queue = None

    async def _run(self, queue: asyncio.Queue[SystemEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                await self.deliver(event)
            except Exception:
                logger.exception("Event worker failed on %s", event.event_type.value)
            finally:
                queue.task_done()


bus = EventBus()

subscribe = bus.subscribe
unsubscribe = bus.unsubscribe
emit = bus.emit


async def start_event_system() -> None:
    bus.start()
    logger.info("Event system started")


async def stop_event_system() -> None:
    await bus.stop()
    logger.info("Event system stopped")
