"""Probe capability interface — one implementation per monitor kind."""

from __future__ import annotations

import abc
import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from bellwether.core.config import HysteresisConfig
from bellwether.core.types import Status
from bellwether.state.classifiers import Classifier

# Opaque, monitor-kind-specific value captured by a probe.
Snapshot = Any

SampleFn = Callable[[str], Snapshot | Awaitable[Snapshot]]


class Probe(abc.ABC):
    """Samples one kind of external state and classifies the result.

    The core never branches on ``kind``; it only calls ``sample`` and
    ``classify``. Subclasses raise ``ProbeError`` for failed samples.
    """

    kind: str = "probe"

    @abc.abstractmethod
    async def sample(self, target: str) -> Snapshot:
        """Take a point-in-time snapshot of *target*."""

    @abc.abstractmethod
    def classify(
        self,
        old: Status,
        snapshot: Snapshot,
        hysteresis: HysteresisConfig | None,
    ) -> Status:
        """Map a snapshot to a status, given the entity's current status."""

    async def targets(self) -> list[str] | None:
        """Current watch list, or None if the configured targets are fixed."""
        return None

    def value_of(self, snapshot: Snapshot) -> float | None:
        """Numeric reading carried into transitions, if the snapshot has one."""
        if isinstance(snapshot, bool):
            return None
        if isinstance(snapshot, (int, float)):
            return float(snapshot)
        if isinstance(snapshot, dict):
            raw = snapshot.get("value")
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                return float(raw)
        return None

    def describe(self, snapshot: Snapshot) -> str:
        if isinstance(snapshot, dict) and "detail" in snapshot:
            return str(snapshot["detail"])
        return str(snapshot)

    async def close(self) -> None:
        """Release resources. Default is a no-op."""


class FunctionProbe(Probe):
    """Adapts a plain sampling callable and a classifier into a Probe.

    Blocking callables run in a worker thread so a slow shell-out never
    stalls the event loop.

    Usage::

        probe = FunctionProbe(read_cpu_percent, ThresholdClassifier(), kind="cpu")
    """

    def __init__(self, fn: SampleFn, classifier: Classifier, kind: str = "function") -> None:
        self._fn = fn
        self._classifier = classifier
        self.kind = kind

    async def sample(self, target: str) -> Snapshot:
        if inspect.iscoroutinefunction(self._fn):
            return await self._fn(target)
        result = await asyncio.to_thread(self._fn, target)
        if asyncio.iscoroutine(result):
            return await result
        return result

    def classify(
        self,
        old: Status,
        snapshot: Snapshot,
        hysteresis: HysteresisConfig | None,
    ) -> Status:
        return self._classifier.classify(old, snapshot, hysteresis)
