"""Tests for WorkflowGraph validation."""

from __future__ import annotations

import pytest

from bellwether.conditions.parser import parse_condition
from bellwether.core.types import StepKind
from bellwether.rules.exceptions import ConfigurationError
from bellwether.workflow.graph import WorkflowGraph
from bellwether.workflow.types import WorkflowStep


def log(step_id: str, **kwargs) -> WorkflowStep:
    return WorkflowStep(id=step_id, kind=StepKind.LOG, **kwargs)


class TestBuild:
    def test_entry_defaults_to_first_step(self) -> None:
        graph = WorkflowGraph.build([log("a", next="b"), log("b")], name="w")
        assert graph.entry == "a"
        assert len(graph) == 2
        assert "b" in graph
        assert [s.id for s in graph] == ["a", "b"]

    def test_explicit_entry(self) -> None:
        graph = WorkflowGraph.build([log("a"), log("b", next="a")], entry="b")
        assert graph.entry == "b"

    def test_empty_graph(self) -> None:
        with pytest.raises(ConfigurationError, match="no steps"):
            WorkflowGraph.build([], name="w")

    def test_duplicate_ids(self) -> None:
        with pytest.raises(ConfigurationError, match="duplicate"):
            WorkflowGraph.build([log("a"), log("a")])

    def test_missing_entry(self) -> None:
        with pytest.raises(ConfigurationError, match="entry"):
            WorkflowGraph.build([log("a")], entry="nope")

    def test_error_carries_workflow_name(self) -> None:
        with pytest.raises(ConfigurationError) as info:
            WorkflowGraph.build([], name="cpu-alarm")
        assert info.value.source == "cpu-alarm"


class TestReferences:
    def test_missing_next(self) -> None:
        with pytest.raises(ConfigurationError, match="missing step 'ghost'"):
            WorkflowGraph.build([log("a", next="ghost")])

    def test_missing_branch_target(self) -> None:
        cond = WorkflowStep(
            id="c",
            kind=StepKind.CONDITION,
            condition=parse_condition("value > 1"),
            branch_true="a",
            branch_false="ghost",
        )
        with pytest.raises(ConfigurationError, match="ghost"):
            WorkflowGraph.build([cond, log("a")])

    def test_missing_case_target(self) -> None:
        branch = WorkflowStep(
            id="b", kind=StepKind.BRANCH, config={"cases": {"critical": "ghost"}},
        )
        with pytest.raises(ConfigurationError, match="ghost"):
            WorkflowGraph.build([branch])

    def test_missing_parallel_branch(self) -> None:
        group = WorkflowStep(id="g", kind=StepKind.PARALLEL_GROUP, parallel_with=("a", "ghost"))
        with pytest.raises(ConfigurationError, match="ghost"):
            WorkflowGraph.build([group, log("a")])


class TestStepShape:
    @pytest.mark.parametrize(
        ("kind", "key"),
        [(StepKind.PLAY, "sound"), (StepKind.WAIT, "seconds"), (StepKind.WEBHOOK, "url")],
    )
    def test_required_config(self, kind: StepKind, key: str) -> None:
        with pytest.raises(ConfigurationError, match=key):
            WorkflowGraph.build([WorkflowStep(id="s", kind=kind)])

    def test_parallel_without_branches(self) -> None:
        with pytest.raises(ConfigurationError, match="no branches"):
            WorkflowGraph.build([WorkflowStep(id="g", kind=StepKind.PARALLEL_GROUP)])

    @pytest.mark.parametrize(
        ("timeout", "match"), [("later", "non-numeric timeout"), (0, "must be positive")],
    )
    def test_bad_parallel_timeout(self, timeout: object, match: str) -> None:
        group = WorkflowStep(
            id="g", kind=StepKind.PARALLEL_GROUP, parallel_with=("a",),
            config={"timeoutSecs": timeout},
        )
        with pytest.raises(ConfigurationError, match=match):
            WorkflowGraph.build([group, log("a")])

    def test_condition_without_expression(self) -> None:
        with pytest.raises(ConfigurationError, match="no condition"):
            WorkflowGraph.build([WorkflowStep(id="c", kind=StepKind.CONDITION)])

    def test_branch_without_cases(self) -> None:
        with pytest.raises(ConfigurationError, match="no cases"):
            WorkflowGraph.build([WorkflowStep(id="b", kind=StepKind.BRANCH)])

    @pytest.mark.parametrize("seconds", ["soon", -1])
    def test_bad_wait(self, seconds: object) -> None:
        step = WorkflowStep(id="w", kind=StepKind.WAIT, config={"seconds": seconds})
        with pytest.raises(ConfigurationError, match="wait step"):
            WorkflowGraph.build([step])


class TestCycles:
    def test_self_loop(self) -> None:
        with pytest.raises(ConfigurationError, match="cycle"):
            WorkflowGraph.build([log("a", next="a")])

    def test_longer_cycle(self) -> None:
        with pytest.raises(ConfigurationError, match="cycle"):
            WorkflowGraph.build([log("a", next="b"), log("b", next="c"), log("c", next="a")])

    def test_diamond_is_not_a_cycle(self) -> None:
        cond = WorkflowStep(
            id="c",
            kind=StepKind.CONDITION,
            condition=parse_condition("value > 1"),
            branch_true="x",
            branch_false="y",
        )
        graph = WorkflowGraph.build([cond, log("x", next="z"), log("y", next="z"), log("z")])
        assert len(graph) == 4
