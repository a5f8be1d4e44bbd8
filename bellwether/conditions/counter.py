"""SlidingCounter — recent-event counts per event type."""

from __future__ import annotations

from collections import deque


class SlidingCounter:
    """Keeps event timestamps per key for ``count > N in last W seconds``.

    Timestamps older than ``horizon_secs`` are pruned on every record, and
    each key keeps at most ``max_events`` entries.
    """

    def __init__(self, horizon_secs: float = 3600.0, max_events: int = 10_000) -> None:
        self._horizon = horizon_secs
        self._max_events = max_events
        self._events: dict[str, deque[float]] = {}

    @property
    def horizon_secs(self) -> float:
        return self._horizon

    def ensure_horizon(self, window_secs: float) -> None:
        """Grow the retention horizon to cover *window_secs*."""
        self._horizon = max(self._horizon, window_secs)

    def record(self, key: str, at: float) -> None:
        events = self._events.get(key)
        if events is None:
            events = deque(maxlen=self._max_events)
            self._events[key] = events
        events.append(at)
        self._prune(events, at)

    def count(self, key: str, window_secs: float, now: float) -> int:
        """Events for *key* in ``(now - window_secs, now]``."""
        events = self._events.get(key)
        if not events:
            return 0
        cutoff = now - window_secs
        return sum(1 for t in events if cutoff < t <= now)

    def clear(self) -> None:
        self._events.clear()

    def _prune(self, events: deque[float], now: float) -> None:
        cutoff = now - self._horizon
        while events and events[0] < cutoff:
            events.popleft()
