"""ConditionEvaluator — decides whether a transition satisfies a trigger."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from bellwether.conditions.counter import SlidingCounter
from bellwether.conditions.expr import EvalContext, Expr, TimeWindow
from bellwether.conditions.parser import parse_time
from bellwether.core.config import QuietHoursConfig
from bellwether.core.types import Transition

if TYPE_CHECKING:
    from bellwether.rules.compiler import CompiledTrigger


class MatchOutcome(StrEnum):
    """Why a trigger did or did not match. Only MATCHED fires."""

    MATCHED = "matched"
    DISABLED = "disabled"
    EVENT_MISMATCH = "event_mismatch"
    STATUS_MISMATCH = "status_mismatch"
    QUIET_HOURS = "quiet_hours"
    CONDITION_UNMET = "condition_unmet"


class QuietHours:
    """Daily window during which non-exempt triggers are suppressed."""

    def __init__(self, window: TimeWindow | None = None) -> None:
        self._window = window

    @classmethod
    def from_config(cls, config: QuietHoursConfig) -> QuietHours:
        if config.start is None or config.end is None:
            return cls(None)
        return cls(TimeWindow(parse_time(config.start), parse_time(config.end)))

    @property
    def enabled(self) -> bool:
        return self._window is not None

    def active(self, now: datetime.datetime) -> bool:
        return self._window is not None and self._window.contains(now.time())


class ConditionEvaluator:
    """Matches transitions against compiled triggers.

    Time-based conditions are evaluated at the transition's own timestamp
    (local time) unless an explicit ``at`` is given.
    """

    def __init__(
        self,
        quiet_hours: QuietHours | None = None,
        counter: SlidingCounter | None = None,
    ) -> None:
        self._quiet_hours = quiet_hours or QuietHours()
        self._counter = counter

    @property
    def quiet_hours(self) -> QuietHours:
        return self._quiet_hours

    @property
    def counter(self) -> SlidingCounter | None:
        return self._counter

    def context(self, transition: Transition, at: datetime.datetime | None = None) -> EvalContext:
        now = at or datetime.datetime.fromtimestamp(transition.at)
        return EvalContext(transition=transition, now=now, counter=self._counter)

    def evaluate(
        self,
        expr: Expr,
        transition: Transition,
        at: datetime.datetime | None = None,
    ) -> bool:
        return expr.evaluate(self.context(transition, at))

    def match(
        self,
        trigger: CompiledTrigger,
        transition: Transition,
        at: datetime.datetime | None = None,
    ) -> MatchOutcome:
        if not trigger.enabled:
            return MatchOutcome.DISABLED
        if trigger.event_type != transition.event_type:
            return MatchOutcome.EVENT_MISMATCH
        if trigger.to_status and transition.to_status not in trigger.to_status:
            return MatchOutcome.STATUS_MISMATCH
        if trigger.from_status and transition.from_status not in trigger.from_status:
            return MatchOutcome.STATUS_MISMATCH

        ctx = self.context(transition, at)
        if not trigger.quiet_hours_exempt and self._quiet_hours.active(ctx.now):
            return MatchOutcome.QUIET_HOURS
        if not trigger.condition.evaluate(ctx):
            return MatchOutcome.CONDITION_UNMET
        return MatchOutcome.MATCHED
