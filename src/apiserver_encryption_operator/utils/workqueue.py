"""Deduplicating work queue for the controller workers."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Generic, Hashable, TypeVar

_K = TypeVar("_K", bound=Hashable)


class WorkQueue(Generic[_K]):
    """Work queue with the semantics controllers rely on.

    * An item added several times before it is processed is processed once.
    * An item added while it is being processed is processed again after ``done``.
    * ``add_after`` delays an item; the earliest pending delay wins.

    Retries of failed items are left to kopf, see :meth:`BaseController.run`.
    """

    def __init__(self, name: str, clock: Callable[[], float] = time.monotonic) -> None:
        self.name = name
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque[_K] = deque()
        self._dirty: set[_K] = set()
        self._processing: set[_K] = set()
        self._waiting: dict[_K, float] = {}
        self._shutting_down = False

    def add(self, item: _K) -> None:
        with self._cond:
            self._add_locked(item)

    def _add_locked(self, item: _K) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()

    def add_after(self, item: _K, delay: float) -> None:
        """Add ``item`` once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = self._clock() + delay
            current = self._waiting.get(item)
            if current is None or ready_at < current:
                self._waiting[item] = ready_at
            self._cond.notify()

    def _promote_waiting_locked(self) -> float | None:
        # Moves due items to the queue and returns seconds until the next one is due
        now = self._clock()
        next_in: float | None = None
        for item, ready_at in list(self._waiting.items()):
            if ready_at <= now:
                del self._waiting[item]
                self._add_locked(item)
            elif next_in is None or ready_at - now < next_in:
                next_in = ready_at - now
        return next_in

    def get(self, timeout: float | None = None) -> tuple[_K | None, bool]:
        """Wait for the next item.

        Args:
            timeout: Maximum seconds to wait, None waits until an item arrives

        Returns:
            ``(item, shutdown)``; item is None when the timeout expired or the queue shut down
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                next_in = self._promote_waiting_locked()
                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item, False
                if self._shutting_down:
                    return None, True

                wait_for = next_in
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None, False
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)
                self._cond.wait(wait_for)

    def done(self, item: _K) -> None:
        """Mark ``item`` processed, requeueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)
