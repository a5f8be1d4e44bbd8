"""StateStore — keyed last-known state per entity and transition detection."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from bellwether.core.config import HysteresisConfig
from bellwether.core.locks import KeyedLocks
from bellwether.core.types import EntityStatus, MonitoredEntity, Status, Transition, is_healthy

if TYPE_CHECKING:
    from bellwether.probes.base import Probe

logger = structlog.get_logger(__name__)


class StateStore:
    """Owns every MonitoredEntity and decides when a Transition happened.

    A Transition is emitted only when the committed status changes. Two
    generic policies sit between the probe's raw classification and the
    committed status:

    - streaks: an unhealthy candidate needs ``enter_count`` consecutive
      samples, a healthy one ``exit_count``;
    - minimum down time: an unhealthy candidate is held back until it has
      persisted ``min_down_secs``. If the entity recovers first, neither
      the down nor the up transition is emitted.

    The first successful sample of a key is a baseline. A healthy baseline
    is committed silently; an unhealthy one leaves the entity ``unknown``
    and the streak starts with the next sample.

    All mutation for one key happens under that key's lock, so samples for
    one entity are applied in arrival order while different entities never
    block each other.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._entities: dict[str, MonitoredEntity] = {}
        self._locks = KeyedLocks()
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    # ── Queries ───────────────────────────────────────────────────

    def get(self, key: str) -> MonitoredEntity | None:
        """Read-only copy of one entity."""
        entity = self._entities.get(key)
        return entity.model_copy() if entity is not None else None

    def keys(self, monitor_id: str | None = None) -> list[str]:
        return [
            k for k, e in self._entities.items()
            if monitor_id is None or e.monitor_id == monitor_id
        ]

    def statuses(self) -> list[EntityStatus]:
        return [
            EntityStatus(
                key=e.key,
                monitor_id=e.monitor_id,
                status=e.status,
                consecutive_failures=e.consecutive_failures,
                last_error=e.last_error,
                last_transition_at=e.last_transition_at,
                last_sample_at=e.last_sample_at,
            )
            for e in list(self._entities.values())
        ]

    # ── Mutation ──────────────────────────────────────────────────

    async def record_sample(
        self,
        key: str,
        snapshot: Any,
        probe: Probe,
        *,
        monitor_id: str = "",
        event_type: str = "",
        hysteresis: HysteresisConfig | None = None,
    ) -> Transition | None:
        """Store a successful sample and return the Transition it caused, if any."""
        async with self._locks.hold(key):
            now = self._clock()
            entity = self._ensure(key, monitor_id, event_type)
            entity.last_snapshot = snapshot
            entity.last_sample_at = now

            try:
                candidate = probe.classify(entity.status, snapshot, hysteresis)
            except Exception as exc:
                logger.warning("classify_error", key=key, error=str(exc))
                return self._fail(entity, exc, now)

            entity.consecutive_failures = 0
            entity.last_error = None

            if not entity.initialized:
                entity.initialized = True
                _reset_streak(entity)
                if is_healthy(candidate):
                    entity.status = candidate
                    logger.debug("entity_baseline", key=key, status=candidate)
                else:
                    logger.debug("entity_baseline_unhealthy", key=key, candidate=candidate)
                return None

            return self._advance(
                entity,
                candidate,
                now,
                hysteresis or HysteresisConfig(),
                detail=probe.describe(snapshot),
                value=probe.value_of(snapshot),
            )

    async def record_error(
        self,
        key: str,
        error: BaseException | str,
        *,
        monitor_id: str = "",
        event_type: str = "",
    ) -> Transition | None:
        """Record a failed sample: status becomes ``unknown``."""
        async with self._locks.hold(key):
            now = self._clock()
            entity = self._ensure(key, monitor_id, event_type)
            entity.last_sample_at = now
            return self._fail(entity, error, now)

    async def evict(self, key: str) -> MonitoredEntity | None:
        """Drop an entity whose target left the watch list."""
        async with self._locks.hold(key):
            entity = self._entities.pop(key, None)
        self._locks.discard(key)
        if entity is not None:
            logger.info("entity_evicted", key=key, status=entity.status)
        return entity

    async def evict_missing(self, monitor_id: str, keep: set[str]) -> list[str]:
        """Evict every entity of *monitor_id* whose key is not in *keep*."""
        gone = [k for k in self.keys(monitor_id) if k not in keep]
        for key in gone:
            await self.evict(key)
        return gone

    # ── Internals ─────────────────────────────────────────────────

    def _ensure(self, key: str, monitor_id: str, event_type: str) -> MonitoredEntity:
        entity = self._entities.get(key)
        if entity is None:
            entity = MonitoredEntity(key=key, monitor_id=monitor_id, event_type=event_type)
            self._entities[key] = entity
        return entity

    def _fail(
        self,
        entity: MonitoredEntity,
        error: BaseException | str,
        now: float,
    ) -> Transition | None:
        entity.consecutive_failures += 1
        entity.last_error = str(error) or type(error).__name__
        _reset_streak(entity)
        if entity.status == Status.UNKNOWN:
            return None
        return self._commit(entity, Status.UNKNOWN, now, detail=entity.last_error)

    def _advance(
        self,
        entity: MonitoredEntity,
        candidate: Status,
        now: float,
        hysteresis: HysteresisConfig,
        detail: str,
        value: float | None,
    ) -> Transition | None:
        if candidate == entity.status:
            _reset_streak(entity)
            return None

        if candidate != entity.candidate:
            entity.candidate = candidate
            entity.candidate_count = 1
            entity.candidate_since = now
        else:
            entity.candidate_count += 1

        healthy = is_healthy(candidate)
        required = hysteresis.exit_count if healthy else hysteresis.enter_count
        if entity.candidate_count < required:
            return None

        if not healthy and hysteresis.min_down_secs > 0:
            since = entity.candidate_since if entity.candidate_since is not None else now
            if now - since < hysteresis.min_down_secs:
                return None

        return self._commit(entity, candidate, now, detail=detail, value=value)

    def _commit(
        self,
        entity: MonitoredEntity,
        status: Status,
        now: float,
        detail: str = "",
        value: float | None = None,
    ) -> Transition:
        transition = Transition(
            entity_key=entity.key,
            event_type=entity.event_type,
            monitor_id=entity.monitor_id,
            from_status=entity.status,
            to_status=status,
            at=now,
            detail=detail,
            value=value,
        )
        entity.status = status
        entity.last_transition_at = now
        _reset_streak(entity)
        logger.info(
            "transition_emitted",
            key=entity.key,
            from_status=transition.from_status,
            to_status=transition.to_status,
        )
        return transition


def _reset_streak(entity: MonitoredEntity) -> None:
    entity.candidate = None
    entity.candidate_count = 0
    entity.candidate_since = None
