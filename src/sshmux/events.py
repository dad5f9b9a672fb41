"""Structured event stream for windows, tabs and their output.

Events are a fixed set of frozen dataclasses. Consumers either register a
synchronous listener or open an async subscription; both see every event in
publication order.

Example:
    >>> stream = EventStream()
    >>> seen = []
    >>> unsubscribe = stream.add_listener(seen.append)
    >>> stream.publish(WindowSwitched(window_id=2))
    >>> seen
    [WindowSwitched(window_id=2)]
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowCreated:
    window_id: int
    name: str


@dataclass(frozen=True)
class WindowClosed:
    window_id: int


@dataclass(frozen=True)
class WindowSwitched:
    window_id: int


@dataclass(frozen=True)
class Output:
    """Decoded output chunk.

    In multiplexer mode ``window_id`` is the window that was active when the
    chunk arrived, not necessarily the window that produced it. In tab mode it
    is the producing tab.
    """

    window_id: int
    text: str


@dataclass(frozen=True)
class Error:
    message: str


Event = WindowCreated | WindowClosed | WindowSwitched | Output | Error

Listener = Callable[[Event], None]


DEFAULT_SUBSCRIPTION_SIZE = 1000


class Subscription:
    """Async iterator over events published after it was opened.

    The queue holds at most ``maxsize`` events. When a slow consumer lets it
    fill up, the oldest queued event is dropped to make room and counted in
    ``dropped``.
    """

    def __init__(self, stream: "EventStream", maxsize: int = DEFAULT_SUBSCRIPTION_SIZE):
        if maxsize < 1:
            raise ValueError("maxsize must be positive")
        self._stream = stream
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    def _push(self, item: Event | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"Event subscription full, dropped {self.dropped} event(s)")
        self._queue.put_nowait(item)

    def _put(self, event: Event) -> None:
        if not self._closed:
            self._push(event)

    def close(self) -> None:
        """Stop the subscription; a pending iteration ends after queued events."""
        if not self._closed:
            self._closed = True
            self._stream._subscriptions.discard(self)
            self._push(None)

    async def get(self) -> Event | None:
        """Next event, or None once closed and drained."""
        return await self._queue.get()

    def get_nowait(self) -> Event | None:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Event]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class EventStream:
    """Multi-consumer, ordered event publisher."""

    def __init__(self):
        self._listeners: list[Listener] = []
        self._subscriptions: set[Subscription] = set()

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a synchronous listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(self, maxsize: int = DEFAULT_SUBSCRIPTION_SIZE) -> Subscription:
        """Open an async subscription holding at most ``maxsize`` unread events."""
        subscription = Subscription(self, maxsize)
        self._subscriptions.add(subscription)
        return subscription

    def publish(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Event listener failed for {type(event).__name__}")
        for subscription in list(self._subscriptions):
            subscription._put(event)

    def close(self) -> None:
        """Close every open subscription and drop listeners."""
        for subscription in list(self._subscriptions):
            subscription.close()
        self._listeners.clear()


__all__ = [
    "Error",
    "Event",
    "EventStream",
    "Output",
    "Subscription",
    "WindowClosed",
    "WindowCreated",
    "WindowSwitched",
]
