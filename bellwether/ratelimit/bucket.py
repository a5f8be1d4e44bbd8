"""Token-bucket burst control — a global bucket plus per-event-type buckets."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from bellwether.core.config import BurstConfig


class TokenBucket:
    """A token bucket that refills at a fixed rate.

    ``tokens`` always stays within ``[0, capacity]`` and ``capacity >= 1``,
    so a full bucket can always admit one firing.
    """

    def __init__(
        self,
        rate: float,
        capacity: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        if capacity < 1:
            raise ValueError("capacity must hold at least one token")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._tokens = capacity
        self._last_refill = clock()

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_refill = now

    def try_consume(self) -> bool:
        """Try to consume one token. Returns True if successful."""
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def refund(self) -> None:
        """Give back one token taken by ``try_consume``."""
        self._tokens = min(self.capacity, self._tokens + 1.0)

    def time_until_available(self) -> float:
        """Seconds until at least one token is available."""
        self._refill()
        if self._tokens >= 1.0:
            return 0.0
        return (1.0 - self._tokens) / self.rate


class BurstLimiter:
    """Global + per-event-type buckets; both must have a token to admit.

    There is no await between checking and decrementing a bucket, so a
    consume is atomic with respect to other tasks on the loop.
    """

    def __init__(
        self,
        capacity: float = 10.0,
        refill_per_sec: float = 1.0,
        per_event_type: dict[str, tuple[float, float]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._global = TokenBucket(rate=refill_per_sec, capacity=capacity, clock=clock)
        self._scoped: dict[str, TokenBucket] = {
            event_type: TokenBucket(rate=rate, capacity=cap, clock=clock)
            for event_type, (cap, rate) in (per_event_type or {}).items()
        }

    @classmethod
    def from_config(
        cls,
        config: BurstConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> BurstLimiter:
        return cls(
            capacity=config.capacity,
            refill_per_sec=config.refill_per_sec,
            per_event_type={
                name: (b.capacity, b.refill_per_sec)
                for name, b in config.per_event_type.items()
            },
            clock=clock,
        )

    @property
    def global_bucket(self) -> TokenBucket:
        return self._global

    def bucket_for(self, event_type: str) -> TokenBucket | None:
        return self._scoped.get(event_type)

    def try_acquire(self, event_type: str) -> bool:
        """Consume one token from the global and the event-type bucket."""
        if not self._global.try_consume():
            return False
        scoped = self._scoped.get(event_type)
        if scoped is not None and not scoped.try_consume():
            # Undo global consumption since the scoped bucket was empty
            self._global.refund()
            return False
        return True

    def time_until_available(self, event_type: str) -> float:
        wait = self._global.time_until_available()
        scoped = self._scoped.get(event_type)
        if scoped is not None:
            wait = max(wait, scoped.time_until_available())
        return wait

    async def acquire(self, event_type: str, stop: asyncio.Event | None = None) -> bool:
        """Wait until a token is available, then consume it.

        Returns False if *stop* is set before a token became available.
        """
        while True:
            if stop is not None and stop.is_set():
                return False
            if self.try_acquire(event_type):
                return True
            delay = max(self.time_until_available(event_type), 0.001)
            if stop is None:
                await asyncio.sleep(delay)
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except TimeoutError:
                pass
