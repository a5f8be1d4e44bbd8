"""Per-alert-key cooldown gate."""

from __future__ import annotations

import time
from collections.abc import Callable

from pydantic import BaseModel

from bellwether.core.locks import KeyedLocks


class CooldownRecord(BaseModel):
    """When an alert key last fired and how far apart firings must be."""

    alert_key: str
    last_fired_at: float
    min_interval: float


class CooldownController:
    """``admit(alert_key)`` returns True at most once per ``min_interval``.

    The check and the timestamp update happen under the key's lock, so two
    concurrent firings for the same key cannot both pass.
    """

    def __init__(
        self,
        default_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_interval = default_interval
        self._clock = clock
        self._records: dict[str, CooldownRecord] = {}
        self._locks = KeyedLocks()

    @property
    def default_interval(self) -> float:
        return self._default_interval

    async def admit(self, alert_key: str, min_interval: float | None = None) -> bool:
        interval = self._default_interval if min_interval is None else min_interval
        async with self._locks.hold(alert_key):
            now = self._clock()
            record = self._records.get(alert_key)
            if record is not None and now - record.last_fired_at < interval:
                return False
            self._records[alert_key] = CooldownRecord(
                alert_key=alert_key,
                last_fired_at=now,
                min_interval=interval,
            )
            return True

    def remaining(self, alert_key: str) -> float:
        """Seconds until *alert_key* may fire again (0 if it may fire now)."""
        record = self._records.get(alert_key)
        if record is None:
            return 0.0
        return max(0.0, record.min_interval - (self._clock() - record.last_fired_at))

    def record(self, alert_key: str) -> CooldownRecord | None:
        record = self._records.get(alert_key)
        return record.model_copy() if record is not None else None

    def reset(self, alert_key: str | None = None) -> None:
        if alert_key is None:
            self._records.clear()
        else:
            self._records.pop(alert_key, None)
            self._locks.discard(alert_key)

    def prune(self) -> int:
        """Forget keys whose cooldown has elapsed. Returns how many were dropped.

        A pruned key admits exactly as it would have, so this only bounds the
        tables when entity keys come and go.
        """
        now = self._clock()
        expired = [
            key for key, record in self._records.items()
            if now - record.last_fired_at >= record.min_interval
        ]
        for key in expired:
            del self._records[key]
            self._locks.discard(key)
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)
