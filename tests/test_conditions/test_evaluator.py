"""Tests for ConditionEvaluator and QuietHours."""

from __future__ import annotations

import datetime

from bellwether.conditions.counter import SlidingCounter
from bellwether.conditions.evaluator import ConditionEvaluator, MatchOutcome, QuietHours
from bellwether.conditions.parser import parse_condition
from bellwether.core.config import QuietHoursConfig
from bellwether.core.types import Status, StepKind, Transition
from bellwether.rules.compiler import CompiledTrigger
from bellwether.workflow.graph import WorkflowGraph
from bellwether.workflow.types import WorkflowStep

LATE = datetime.datetime(2024, 5, 15, 23, 30)
NOON = datetime.datetime(2024, 5, 15, 12, 0)


def make_trigger(**kwargs) -> CompiledTrigger:
    graph = WorkflowGraph.build([WorkflowStep(id="log", kind=StepKind.LOG)], name="t")
    defaults = {"id": "t", "event_type": "cpu", "graph": graph}
    defaults.update(kwargs)
    return CompiledTrigger(**defaults)


def make_transition(
    to: Status = Status.CRITICAL,
    frm: Status = Status.OK,
    value: float | None = 96.0,
    event_type: str = "cpu",
    at: datetime.datetime = NOON,
) -> Transition:
    return Transition(
        entity_key="cpu",
        event_type=event_type,
        from_status=frm,
        to_status=to,
        at=at.timestamp(),
        value=value,
    )


def quiet_22_to_07() -> QuietHours:
    return QuietHours.from_config(QuietHoursConfig(start="22:00", end="07:00"))


# ── QuietHours ──────────────────────────────────────────────────


class TestQuietHours:
    def test_disabled_when_null(self) -> None:
        qh = QuietHours.from_config(QuietHoursConfig())
        assert not qh.enabled
        assert not qh.active(LATE)

    def test_active_across_midnight(self) -> None:
        qh = quiet_22_to_07()
        assert qh.enabled
        assert qh.active(LATE)
        assert qh.active(datetime.datetime(2024, 5, 16, 6, 59))
        assert not qh.active(NOON)


# ── Matching ────────────────────────────────────────────────────


class TestMatch:
    def test_matches_with_defaults(self) -> None:
        ev = ConditionEvaluator()
        assert ev.match(make_trigger(), make_transition()) == MatchOutcome.MATCHED

    def test_disabled(self) -> None:
        ev = ConditionEvaluator()
        assert ev.match(make_trigger(enabled=False), make_transition()) == MatchOutcome.DISABLED

    def test_event_mismatch(self) -> None:
        ev = ConditionEvaluator()
        outcome = ev.match(make_trigger(), make_transition(event_type="disk"))
        assert outcome == MatchOutcome.EVENT_MISMATCH

    def test_status_filters(self) -> None:
        ev = ConditionEvaluator()
        trigger = make_trigger(to_status=frozenset({Status.OK}))
        assert ev.match(trigger, make_transition()) == MatchOutcome.STATUS_MISMATCH
        trigger = make_trigger(from_status=frozenset({Status.WARNING}))
        assert ev.match(trigger, make_transition()) == MatchOutcome.STATUS_MISMATCH

    def test_condition_unmet(self) -> None:
        ev = ConditionEvaluator()
        trigger = make_trigger(condition=parse_condition("value >= 98"))
        assert ev.match(trigger, make_transition()) == MatchOutcome.CONDITION_UNMET

    def test_time_condition_uses_transition_time(self) -> None:
        ev = ConditionEvaluator()
        trigger = make_trigger(condition=parse_condition("time in 08:00-22:00"))
        assert ev.match(trigger, make_transition(at=NOON)) == MatchOutcome.MATCHED
        assert ev.match(trigger, make_transition(at=LATE)) == MatchOutcome.CONDITION_UNMET

    def test_explicit_time_overrides(self) -> None:
        ev = ConditionEvaluator()
        trigger = make_trigger(condition=parse_condition("time in 08:00-22:00"))
        assert ev.match(trigger, make_transition(at=NOON), at=LATE) == MatchOutcome.CONDITION_UNMET

    def test_recent_count_uses_counter(self) -> None:
        counter = SlidingCounter()
        ev = ConditionEvaluator(counter=counter)
        trigger = make_trigger(condition=parse_condition("count > 2 in 60s"))
        t = make_transition()
        for offset in (-30, -20, 0):
            counter.record("cpu", t.at + offset)
        assert ev.match(trigger, t) == MatchOutcome.MATCHED


class TestQuietHoursSuppression:
    def test_non_exempt_suppressed_at_2330(self) -> None:
        ev = ConditionEvaluator(quiet_hours=quiet_22_to_07())
        outcome = ev.match(make_trigger(), make_transition(at=LATE))
        assert outcome == MatchOutcome.QUIET_HOURS

    def test_exempt_trigger_fires_at_2330(self) -> None:
        ev = ConditionEvaluator(quiet_hours=quiet_22_to_07())
        trigger = make_trigger(quiet_hours_exempt=True)
        assert ev.match(trigger, make_transition(at=LATE)) == MatchOutcome.MATCHED

    def test_outside_window_fires(self) -> None:
        ev = ConditionEvaluator(quiet_hours=quiet_22_to_07())
        assert ev.match(make_trigger(), make_transition(at=NOON)) == MatchOutcome.MATCHED

    def test_status_checked_before_quiet_hours(self) -> None:
        ev = ConditionEvaluator(quiet_hours=quiet_22_to_07())
        trigger = make_trigger(to_status=frozenset({Status.OK}))
        outcome = ev.match(trigger, make_transition(at=LATE))
        assert outcome == MatchOutcome.STATUS_MISMATCH
