"""Trigger conditions — expression tree, parser, sliding counter, evaluator."""

from bellwether.conditions.counter import SlidingCounter
from bellwether.conditions.evaluator import ConditionEvaluator, MatchOutcome, QuietHours
from bellwether.conditions.expr import (
    ALWAYS,
    All,
    DaysOfWeek,
    EvalContext,
    Expr,
    NumericCompare,
    RecentCount,
    RegexMatch,
    StatusIn,
    TimeWindow,
)
from bellwether.conditions.parser import parse_condition

__all__ = [
    "ALWAYS",
    "All",
    "ConditionEvaluator",
    "DaysOfWeek",
    "EvalContext",
    "Expr",
    "MatchOutcome",
    "NumericCompare",
    "QuietHours",
    "RecentCount",
    "RegexMatch",
    "SlidingCounter",
    "StatusIn",
    "TimeWindow",
    "parse_condition",
]
