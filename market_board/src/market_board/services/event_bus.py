"""
In-memory event bus for broadcasting market board changes to consumers.

Delivery is synchronous: ``emit`` calls every subscriber of the event
type in subscription order before returning, on the caller's own
execution context.  A subscriber that raises is logged and skipped so
it cannot starve the others.

Consumers that prefer to ``async for`` over events can use
:meth:`EventBus.stream`.  The returned :class:`EventStream` subscribes
immediately, so events emitted before the first iteration are queued.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]


class EventBus:
    """Named-event publish/subscribe with synchronous fan-out."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``event_type`` and return an unsubscribe function."""
        self._subscribers[event_type].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event_type)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, event_type: str, data: Any) -> None:
        """Deliver ``data`` to every subscriber of ``event_type``."""
        for callback in list(self._subscribers.get(event_type, ())):
            try:
                callback(data)
            except Exception:
                logger.exception("Subscriber for %s raised; continuing delivery", event_type)

    def subscriber_count(self, event_type: str) -> int:
        return len(self._subscribers.get(event_type, ()))

    def clear(self) -> None:
        self._subscribers.clear()

    def stream(self, event_type: str) -> "EventStream":
        """Subscribe now and return an async iterator over events of ``event_type``."""
        return EventStream(self, event_type)


_CLOSED = object()


class EventStream:
    """Queue-backed async iterator over one event type.

    Call :meth:`aclose` (or use ``async with``) to drop the subscription.
    """

    def __init__(self, bus: EventBus, event_type: str) -> None:
        self.event_type = event_type
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._unsubscribe = bus.subscribe(event_type, self._queue.put_nowait)

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> Any:
        if self._closed:
            raise StopAsyncIteration
        data = await self._queue.get()
        if data is _CLOSED:
            raise StopAsyncIteration
        return data

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        self._queue.put_nowait(_CLOSED)

    async def __aenter__(self) -> "EventStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
