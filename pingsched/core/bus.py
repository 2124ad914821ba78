"""
pingsched Event Bus.

The queue engine, the lifecycle controller and the service publish here.
An event first passes through the middleware chain (the event log is one),
then reaches every subscriber whose pattern matches its type.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from typing import Awaitable, Callable

from pingsched.core.events import Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]
MiddlewareNext = Callable[[Event], Awaitable[Event]]
MiddlewareFunc = Callable[[Event, MiddlewareNext], Awaitable[Event]]


class EventBus:
    """
    Usage:
        bus = EventBus()
        bus.use(event_logger.middleware)
        bus.on("job:*", stats.record)

        await bus.emit(Event(type="job:failed", data={...}))
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._middleware: list[MiddlewareFunc] = []

    def on(self, pattern: str, handler: EventHandler) -> None:
        """Subscribe to event types matching pattern ('job:failed', 'job:*', '*')."""
        self._subscriptions.append((pattern, handler))

    def use(self, middleware: MiddlewareFunc) -> None:
        """
        Append middleware. Each one receives the event and the rest of the chain:

            async def my_middleware(event: Event, next: MiddlewareNext) -> Event:
                return await next(event)
        """
        self._middleware.append(middleware)

    async def emit(self, event: Event) -> Event:
        """Run the middleware chain in registration order, then the subscribers."""
        return await self._call(0, event)

    async def _call(self, index: int, event: Event) -> Event:
        if index < len(self._middleware):
            return await self._middleware[index](
                event, lambda e: self._call(index + 1, e)
            )
        await self._deliver(event)
        return event

    async def _deliver(self, event: Event) -> None:
        handlers = [
            handler for pattern, handler in self._subscriptions
            if fnmatch.fnmatchcase(event.type, pattern)
        ]
        if not handlers:
            return
        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Subscriber error for {event.type}: {result}", exc_info=result)
