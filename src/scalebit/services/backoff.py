"""Retry scheduling with capped exponential backoff."""

from __future__ import annotations

import random
from datetime import timedelta

from ..models.domain.resource import ObjectKey
from .queue import WorkQueue

__all__ = [
    "ExponentialBackoff",
    "RetryScheduler",
]

_MAX_EXPONENT = 62
"""Largest exponent used when doubling the delay, to avoid overflow."""


class ExponentialBackoff:
    """Per-key capped exponential backoff with jitter.

    The delay for a key that has already failed ``n`` times in a row is
    ``min(base * 2**n, cap)``, multiplied by a random factor in
    ``[1, 1 + jitter)`` and capped again. Because the jitter factor is never
    less than one and never more than two, delays never decrease as failures
    accumulate.

    Parameters
    ----------
    base
        Delay after the first failure.
    cap
        Maximum delay.
    jitter
        Jitter factor, between 0 and 1.
    rng
        Random number generator, overridden by the test suite.

    Raises
    ------
    ValueError
        Raised if ``jitter`` is out of range.
    """

    def __init__(
        self,
        base: timedelta,
        cap: timedelta,
        jitter: float,
        *,
        rng: random.Random | None = None,
    ) -> None:
        if not 0.0 <= jitter <= 1.0:
            raise ValueError(f"Jitter {jitter} must be between 0 and 1")
        self._base = base.total_seconds()
        self._cap = cap.total_seconds()
        self._jitter = jitter
        self._rng = rng or random.Random()
        self._failures: dict[ObjectKey, int] = {}

    def attempts(self, key: ObjectKey) -> int:
        """Number of consecutive failures recorded for a key."""
        return self._failures.get(key, 0)

    def forget(self, key: ObjectKey) -> None:
        """Reset the failure count of a key after a success."""
        self._failures.pop(key, None)

    def when(self, key: ObjectKey) -> timedelta:
        """Record a failure and return the delay before the next attempt.

        Parameters
        ----------
        key
            Key that failed.

        Returns
        -------
        datetime.timedelta
            Delay before the key should be retried.
        """
        exponent = self._failures.get(key, 0)
        self._failures[key] = exponent + 1
        delay = min(self._base * 2 ** min(exponent, _MAX_EXPONENT), self._cap)
        delay *= 1 + self._jitter * self._rng.random()
        return timedelta(seconds=min(delay, self._cap))


class RetryScheduler:
    """Work queue with retries.

    Wraps `~scalebit.services.queue.WorkQueue`, adding backoff for keys
    whose reconciliation failed. There is no maximum number of attempts.

    Parameters
    ----------
    queue
        Underlying work queue.
    backoff
        Backoff policy for failed keys.
    """

    def __init__(self, queue: WorkQueue, backoff: ExponentialBackoff) -> None:
        self._queue = queue
        self._backoff = backoff

    @property
    def depth(self) -> int:
        """Number of keys ready to be processed."""
        return len(self._queue)

    @property
    def retrying(self) -> int:
        """Number of keys waiting for a delayed retry."""
        return self._queue.waiting

    def add(self, key: ObjectKey) -> None:
        """Queue a key for reconciliation as soon as possible."""
        self._queue.add(key)

    def add_after(self, key: ObjectKey, delay: timedelta) -> None:
        """Queue a key for reconciliation after a fixed delay.

        The failure count of the key is not changed.
        """
        self._queue.add_after(key, delay)

    def add_rate_limited(self, key: ObjectKey) -> timedelta:
        """Queue a key whose reconciliation failed, with backoff.

        Returns
        -------
        datetime.timedelta
            Delay before the key will be retried.
        """
        delay = self._backoff.when(key)
        self._queue.add_after(key, delay)
        return delay

    def attempts(self, key: ObjectKey) -> int:
        """Number of consecutive failures of a key."""
        return self._backoff.attempts(key)

    def done(self, key: ObjectKey) -> None:
        """Mark processing of a key returned by `get` as complete."""
        self._queue.done(key)

    def forget(self, key: ObjectKey) -> None:
        """Reset the backoff of a key after it converged."""
        self._backoff.forget(key)

    async def get(self) -> ObjectKey | None:
        """Wait for the next key, returning `None` after shutdown."""
        return await self._queue.get()

    def shut_down(self) -> None:
        """Shut down the queue, waking any waiting workers."""
        self._queue.shut_down()
