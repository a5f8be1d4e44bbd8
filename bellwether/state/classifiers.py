"""Snapshot classifiers — map a reading to a status band.

Classifiers implement the raw band decision only. Streak lengths and the
minimum-down duration are applied by the State Store.
"""

from __future__ import annotations

import abc
from typing import Any

from bellwether.core.config import HysteresisConfig
from bellwether.core.types import Status


class Classifier(abc.ABC):
    """``classify(old, snapshot, hysteresis) -> Status``."""

    @abc.abstractmethod
    def classify(
        self,
        old: Status,
        snapshot: Any,
        hysteresis: HysteresisConfig | None,
    ) -> Status:
        """Return the status the snapshot points at."""


def _numeric(snapshot: Any) -> float:
    if isinstance(snapshot, dict):
        snapshot = snapshot.get("value")
    if isinstance(snapshot, bool) or not isinstance(snapshot, (int, float)):
        raise TypeError(f"expected a numeric snapshot, got {snapshot!r}")
    return float(snapshot)


class ThresholdClassifier(Classifier):
    """Numeric reading against an enter/exit band.

    While outside the alert band a reading must reach ``enter_threshold`` to
    point at ``alert_status``; once inside, it stays there until the reading
    drops below ``exit_threshold``. With ``higher_is_worse=False`` the
    comparisons are mirrored (e.g. free disk space).
    """

    def __init__(
        self,
        enter_threshold: float | None = None,
        exit_threshold: float | None = None,
        alert_status: Status = Status.CRITICAL,
        ok_status: Status = Status.OK,
        higher_is_worse: bool = True,
    ) -> None:
        self._enter = enter_threshold
        self._exit = exit_threshold
        self._alert = alert_status
        self._ok = ok_status
        self._higher_is_worse = higher_is_worse

    def _thresholds(self, hysteresis: HysteresisConfig | None) -> tuple[float, float]:
        enter = self._enter
        exit_ = self._exit
        if hysteresis is not None and hysteresis.enter_threshold is not None:
            enter = hysteresis.enter_threshold
            exit_ = hysteresis.exit_threshold
        if enter is None:
            raise ValueError("ThresholdClassifier needs an enter threshold")
        return enter, exit_ if exit_ is not None else enter

    def classify(
        self,
        old: Status,
        snapshot: Any,
        hysteresis: HysteresisConfig | None,
    ) -> Status:
        value = _numeric(snapshot)
        enter, exit_ = self._thresholds(hysteresis)
        if not self._higher_is_worse:
            value, enter, exit_ = -value, -enter, -exit_

        if old == self._alert:
            return self._alert if value >= exit_ else self._ok
        return self._alert if value >= enter else self._ok


class BooleanClassifier(Classifier):
    """Truthy snapshot → ``true_status``, falsy → ``false_status``."""

    def __init__(
        self,
        true_status: Status = Status.CONNECTED,
        false_status: Status = Status.DISCONNECTED,
    ) -> None:
        self._true = true_status
        self._false = false_status

    def classify(
        self,
        old: Status,
        snapshot: Any,
        hysteresis: HysteresisConfig | None,
    ) -> Status:
        if isinstance(snapshot, dict):
            snapshot = snapshot.get("value")
        return self._true if snapshot else self._false
