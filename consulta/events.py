"""In-process event bus for booking outcomes.

Workflows publish a SystemEvent after every state change; the audit
subscriber and the notification dispatcher consume them from a background
queue, so neither a slow webhook nor a broken subscriber can delay or undo
the change that produced the event.

Usage:
    from consulta.events import emit

    await emit(SystemEvent(
        event_type=EventType.APPOINTMENT_CANCELLED,
        appointment_id=appointment.id,
        data={"refund_status": "processed"},
    ))

Subscribers are registered once at startup (see consulta.main):

    subscribe(audit_handler)                               # every event
    subscribe(dispatcher.on_event, dispatcher.event_types)  # only these
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from consulta.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

# Upper bound on how long shutdown waits for queued events
DEFAULT_DRAIN_TIMEOUT = 10.0


def _name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", repr(handler))


class EventBus:
    """Queue-backed fan-out of SystemEvents to async subscribers."""

    def __init__(self, drain_timeout: float = DEFAULT_DRAIN_TIMEOUT) -> None:
        self._catch_all: list[EventHandler] = []
        self._by_type: defaultdict[EventType, list[EventHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._drain_timeout = drain_timeout

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    # ── Subscriptions ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
        """Register ``handler`` for ``event_types``, or for every event when None."""
        if event_types is None:
            self._catch_all.append(handler)
            logger.info("Subscribed %s to all events", _name(handler))
            return
        types = list(event_types)
        for event_type in types:
            self._by_type[event_type].append(handler)
        logger.info("Subscribed %s to %s", _name(handler), ", ".join(t.value for t in types))

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._catch_all:
            self._catch_all.remove(handler)
        for handlers in self._by_type.values():
            if handler in handlers:
                handlers.remove(handler)

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._catch_all, *self._by_type.get(event_type, [])]

    # ── Publishing ───────────────────────────────────────────────────

    async def publish(self, event: SystemEvent) -> None:
        """Queue ``event`` for the subscribers. Starts the worker on first use."""
        queue = self._queue if self.running and self._queue is not None else await self.start()
        await queue.put(event)
        logger.debug("Event queued: %s (appointment=%s)", event.event_type.value, event.appointment_id)

    async def dispatch(self, event: SystemEvent) -> None:
        """Deliver one event to its subscribers concurrently.

        A subscriber that raises is logged; the others still run.
        """
        handlers = self.handlers_for(event.event_type)
        if not handlers:
            return
        results = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Subscriber %s failed on %s (appointment=%s)",
                    _name(handler),
                    event.event_type.value,
                    event.appointment_id,
                    exc_info=result,
                )

    async def _drain_forever(self, queue: asyncio.Queue[SystemEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Event worker failed on %s", event.event_type.value)
            finally:
                queue.task_done()

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> asyncio.Queue[SystemEvent]:
        """Start the worker if needed; returns the queue it drains."""
        if self.running and self._queue is not None:
            return self._queue
        queue: asyncio.Queue[SystemEvent] = asyncio.Queue()
        self._queue = queue
        self._worker = asyncio.create_task(self._drain_forever(queue), name="consulta-event-bus")
        logger.info(
            "Event bus started: %d catch-all + %d typed subscriptions",
            len(self._catch_all),
            sum(len(v) for v in self._by_type.values()),
        )
        return queue

    async def stop(self) -> None:
        """Deliver what is queued (bounded by the drain timeout), then stop the worker."""
        if self._queue is not None and self.running:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self._drain_timeout)
            except TimeoutError:
                logger.warning("Event bus stopped with %d undelivered events", self._queue.qsize())

        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        self._worker = None
        self._queue = None
        logger.info("Event bus stopped")


# Process-wide bus used by the workflows and the app lifespan
bus = EventBus()


def subscribe(handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
    bus.subscribe(handler, event_types)


def unsubscribe(handler: EventHandler) -> None:
    bus.unsubscribe(handler)


async def emit(event: SystemEvent) -> None:
    await bus.publish(event)


async def start_event_system() -> None:
    await bus.start()


async def stop_event_system() -> None:
    await bus.stop()
