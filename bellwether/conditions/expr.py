"""Typed condition expression tree, built once at load time."""

from __future__ import annotations

import abc
import datetime
import operator
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bellwether.core.types import Status, Transition

if TYPE_CHECKING:
    from bellwether.conditions.counter import SlidingCounter

COMPARATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}


@dataclass(frozen=True)
class EvalContext:
    """Everything a condition may look at."""

    transition: Transition
    now: datetime.datetime
    counter: SlidingCounter | None = None


class Expr(abc.ABC):
    """A boolean condition over an EvalContext."""

    @abc.abstractmethod
    def evaluate(self, ctx: EvalContext) -> bool:
        """Return True if the condition holds."""


@dataclass(frozen=True)
class TimeWindow(Expr):
    """Time-of-day window; wraps midnight when ``start > end``.

    The start is inclusive and the end exclusive. ``start == end`` is an
    empty window.
    """

    start: datetime.time
    end: datetime.time

    def contains(self, moment: datetime.time) -> bool:
        moment = moment.replace(second=0, microsecond=0, tzinfo=None)
        if self.start < self.end:
            return self.start <= moment < self.end
        if self.start > self.end:
            return moment >= self.start or moment < self.end
        return False

    def evaluate(self, ctx: EvalContext) -> bool:
        return self.contains(ctx.now.time())


@dataclass(frozen=True)
class DaysOfWeek(Expr):
    """Day-of-week set, Monday = 0."""

    days: frozenset[int]

    def evaluate(self, ctx: EvalContext) -> bool:
        return ctx.now.weekday() in self.days


@dataclass(frozen=True)
class NumericCompare(Expr):
    """Compare the transition's carried value against a threshold."""

    op: str
    threshold: float

    def evaluate(self, ctx: EvalContext) -> bool:
        value = ctx.transition.value
        if value is None:
            return False
        return COMPARATORS[self.op](value, self.threshold)


@dataclass(frozen=True)
class RegexMatch(Expr):
    """Regex search against a text field of the transition."""

    pattern: re.Pattern[str]
    field: str = "detail"

    def evaluate(self, ctx: EvalContext) -> bool:
        text = getattr(ctx.transition, self.field, "")
        return self.pattern.search(str(text)) is not None


@dataclass(frozen=True)
class StatusIn(Expr):
    """The transition's ``to_status`` (or ``from_status``) is in a set."""

    statuses: frozenset[Status]
    field: str = "to_status"

    def evaluate(self, ctx: EvalContext) -> bool:
        return getattr(ctx.transition, self.field) in self.statuses


@dataclass(frozen=True)
class RecentCount(Expr):
    """``count OP N in last W seconds`` for an event type.

    ``event_type=None`` counts the transition's own event type.
    """

    op: str
    count: int
    window_secs: float
    event_type: str | None = None

    def evaluate(self, ctx: EvalContext) -> bool:
        if ctx.counter is None:
            return False
        key = self.event_type or ctx.transition.event_type
        seen = ctx.counter.count(key, self.window_secs, ctx.transition.at)
        return COMPARATORS[self.op](seen, self.count)


@dataclass(frozen=True)
class All(Expr):
    """Conjunction. An empty conjunction is always true."""

    children: tuple[Expr, ...] = ()

    def evaluate(self, ctx: EvalContext) -> bool:
        return all(child.evaluate(ctx) for child in self.children)

    def windows(self) -> list[float]:
        """Every RecentCount window in the tree (sizes the counter horizon)."""
        return [c.window_secs for c in self.children if isinstance(c, RecentCount)]


ALWAYS = All()
