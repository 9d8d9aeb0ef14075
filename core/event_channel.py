"""
core/event_channel.py

Bounded, closable channels connecting the provider's background workers.

Two channels exist at runtime:

- `EventChannel`: update events flowing from the polling loop and the action handler to the
  relay that forwards them to the platform. Publishing blocks while the channel is full, which
  slows producers down to the speed of the platform.
- `ActionQueue`: accepted action requests waiting for the action handler. Offering never blocks;
  a full queue rejects the request so a slow GIF API can not stall callback request threads.

Both share one condition variable for items and the closed flag, so an item is either accepted
before the close or rejected with `ChannelClosedError`; nothing is lost behind the end of stream.
Closing wakes up the consumer (it receives the end of stream once the backlog is drained) and
releases producers blocked on a full channel. Timeouts on `get` raise `queue.Empty`.
"""

import logging
import queue
import threading
from collections import deque
from typing import Deque, Generic, Iterator, Optional, TypeVar

from shared.errors import ChannelClosedError

T = TypeVar("T")

DEFAULT_CAPACITY = 5


class BoundedChannel(Generic[T]):
    """
    FIFO with a fixed capacity and an explicit end of stream.

    Items are delivered in publish order to a single consumer. After `close()` the consumer
    still receives everything that was published before, then `get()` returns None.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, name: str = "channel", logger: Optional[logging.Logger] = None):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.name = name
        self.capacity = capacity
        self._logger = logger or logging.getLogger(__name__)
        self._items: Deque[T] = deque()
        self._closed = False
        # Guards items and the closed flag; put, offer and close never interleave
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def put(self, item: T) -> None:
        """
        Publish an item, blocking while the channel is full.

        Raises:
            ChannelClosedError: If the channel is closed before or while waiting.
        """
        with self._cond:
            while not self._closed and len(self._items) >= self.capacity:
                self._cond.wait()
            if self._closed:
                raise ChannelClosedError(f"{self.name} is closed")
            self._items.append(item)
            self._cond.notify_all()

    def offer(self, item: T) -> bool:
        """
        Publish an item without blocking.

        Returns:
            bool: False if the channel is full.

        Raises:
            ChannelClosedError: If the channel is closed.
        """
        with self._cond:
            if self._closed:
                raise ChannelClosedError(f"{self.name} is closed")
            if len(self._items) >= self.capacity:
                return False
            self._items.append(item)
            self._cond.notify_all()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Take the next item, blocking until one is available.

        Returns:
            Optional[T]: The item, or None once the channel is closed and drained.

        Raises:
            queue.Empty: If `timeout` elapses first.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._items or self._closed, timeout=timeout):
                raise queue.Empty
            if not self._items:
                return None
            item = self._items.popleft()
            # Wake producers waiting for room
            self._cond.notify_all()
            return item

    def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        self._logger.debug("%s closed", self.name)

    def qsize(self) -> int:
        with self._cond:
            return len(self._items)

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item


class EventChannel(BoundedChannel):
    """Outbound update events; `publish` applies backpressure."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, logger: Optional[logging.Logger] = None):
        super().__init__(capacity=capacity, name="event channel", logger=logger)

    def publish(self, event) -> None:
        self.put(event)


class ActionQueue(BoundedChannel):
    """Accepted actions waiting for the handler; `enqueue` never blocks."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, logger: Optional[logging.Logger] = None):
        super().__init__(capacity=capacity, name="action queue", logger=logger)

    def enqueue(self, action) -> bool:
        return self.offer(action)
