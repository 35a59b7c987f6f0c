"""Deduplicating work queue of microservices to reconcile."""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import timedelta

from ..models.domain.resource import ObjectKey

__all__ = ["WorkQueue"]


class WorkQueue:
    """Queue of object keys awaiting reconciliation.

    A key is present in the queue at most once, so any number of change
    notifications for the same object before a worker picks it up result in
    a single reconciliation. A key is also never handed to two workers at
    once: if it is added again while a worker holds it, it is redelivered
    only after that worker calls `done`.
    """

    def __init__(self) -> None:
        self._queue: deque[ObjectKey] = deque()
        self._dirty: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._timers: dict[ObjectKey, asyncio.TimerHandle] = {}
        self._ready = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        """Whether `shut_down` has been called."""
        return self._shutting_down

    @property
    def waiting(self) -> int:
        """Number of keys scheduled to be added in the future."""
        return len(self._timers)

    def add(self, key: ObjectKey) -> None:
        """Add a key to the queue if it is not already pending.

        Parameters
        ----------
        key
            Key to add.
        """
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._ready.set()

    def add_after(self, key: ObjectKey, delay: timedelta) -> None:
        """Add a key to the queue after a delay.

        If the key is already scheduled, the earlier of the two deadlines
        wins.

        Parameters
        ----------
        key
            Key to add.
        delay
            How long to wait before adding it.
        """
        if self._shutting_down:
            return
        if delay <= timedelta(0):
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay.total_seconds()
        if timer := self._timers.get(key):
            if timer.when() <= deadline:
                return
            timer.cancel()
        self._timers[key] = loop.call_at(deadline, self._fire, key)

    def done(self, key: ObjectKey) -> None:
        """Mark processing of a key as complete.

        Must be called once for every key returned by `get`.

        Parameters
        ----------
        key
            Key whose processing is finished.
        """
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.append(key)
            self._ready.set()

    async def get(self) -> ObjectKey | None:
        """Wait for the next key to process.

        Returns
        -------
        ObjectKey or None
            Next key, or `None` if the queue has been shut down.
        """
        while not self._queue:
            if self._shutting_down:
                return None
            self._ready.clear()
            await self._ready.wait()
        if self._shutting_down:
            return None
        key = self._queue.popleft()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def shut_down(self) -> None:
        """Stop handing out keys.

        Workers waiting in `get` are woken and receive `None`. Keys already
        being processed may still be passed to `done`.
        """
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._ready.set()

    def _fire(self, key: ObjectKey) -> None:
        del self._timers[key]
        self.add(key)
