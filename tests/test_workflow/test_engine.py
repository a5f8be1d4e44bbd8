"""Tests for WorkflowEngine — sequencing, branching, parallel groups, deadlines."""

from __future__ import annotations

import asyncio
import time
from typing import Any

from bellwether.conditions.parser import parse_condition
from bellwether.core.types import Status, StepKind, Transition
from bellwether.sinks.base import ActionError, ActionSink
from bellwether.workflow.engine import WorkflowEngine, render
from bellwether.workflow.graph import WorkflowGraph
from bellwether.workflow.types import WorkflowRun, WorkflowState, WorkflowStep


class FakeSink(ActionSink):
    def __init__(self, play_delay: float = 0.0, fail_on: set[str] | None = None) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.play_delay = play_delay
        self.fail_on = fail_on or set()

    async def play(self, sound_ref: str, volume: float) -> None:
        if "play" in self.fail_on:
            raise ActionError("no player")
        await asyncio.sleep(self.play_delay)
        self.calls.append(("play", sound_ref, volume))

    async def notify(self, message: str) -> None:
        self.calls.append(("notify", message))

    async def log(self, message: str) -> None:
        if "log" in self.fail_on:
            raise ActionError("log down")
        self.calls.append(("log", message))

    async def webhook(self, url: str, payload: dict[str, Any]) -> None:
        self.calls.append(("webhook", url, payload))


def transition(to: Status = Status.CRITICAL, value: float = 96.0) -> Transition:
    return Transition(
        entity_key="host/cpu",
        event_type="cpu",
        from_status=Status.OK,
        to_status=to,
        value=value,
        detail="load high",
    )


def step(step_id: str, kind: StepKind, **kwargs) -> WorkflowStep:
    return WorkflowStep(id=step_id, kind=kind, **kwargs)


def graph(*steps: WorkflowStep, entry: str | None = None) -> WorkflowGraph:
    return WorkflowGraph.build(steps, entry=entry, name="test")


# ── Sequencing ──────────────────────────────────────────────────


class TestSequence:
    async def test_runs_steps_in_order(self) -> None:
        sink = FakeSink()
        g = graph(
            step("a", StepKind.PLAY, config={"sound": "bundled:stop"}, next="b"),
            step("b", StepKind.NOTIFY, config={"message": "cpu at {value}"}, next="c"),
            step("c", StepKind.WEBHOOK, config={"url": "http://hook"}),
        )
        run = await WorkflowEngine(sink).execute(g, transition(), trigger_id="cpu-critical")

        assert run.state == WorkflowState.COMPLETED
        assert [c[0] for c in sink.calls] == ["play", "notify", "webhook"]
        assert sink.calls[1] == ("notify", "cpu at 96.0")
        assert sink.calls[2][2]["trigger_id"] == "cpu-critical"
        assert [r.step_id for r in run.steps] == ["a", "b", "c"]
        assert all(r.state == WorkflowState.COMPLETED for r in run.steps)
        assert run.started_at is not None and run.finished_at is not None

    async def test_default_log_message(self) -> None:
        sink = FakeSink()
        await WorkflowEngine(sink).execute(graph(step("l", StepKind.LOG)), transition())
        assert sink.calls == [("log", "cpu host/cpu: ok -> critical load high")]

    async def test_webhook_payload_is_rendered(self) -> None:
        sink = FakeSink()
        g = graph(step("w", StepKind.WEBHOOK, config={
            "url": "http://hook",
            "payload": {"text": "{entity_key} is {to_status}", "tags": ["{event_type}"]},
        }))
        await WorkflowEngine(sink).execute(g, transition())
        assert sink.calls[0][2] == {"text": "host/cpu is critical", "tags": ["cpu"]}

    async def test_volume_is_clamped(self) -> None:
        sink = FakeSink()
        g = graph(step("p", StepKind.PLAY, config={"sound": "x", "volume": 0.9}))
        await WorkflowEngine(sink, max_volume=0.5).execute(g, transition())
        assert sink.calls == [("play", "x", 0.5)]


# ── Branching ───────────────────────────────────────────────────


class TestBranching:
    def _condition_graph(self) -> WorkflowGraph:
        return graph(
            step(
                "c",
                StepKind.CONDITION,
                condition=parse_condition("value >= 98"),
                branch_true="loud",
                branch_false="quiet",
            ),
            step("loud", StepKind.PLAY, config={"sound": "siren"}),
            step("quiet", StepKind.LOG, config={"message": "below 98"}),
        )

    async def test_condition_false_branch(self) -> None:
        sink = FakeSink()
        await WorkflowEngine(sink).execute(self._condition_graph(), transition(value=96))
        assert sink.calls == [("log", "below 98")]

    async def test_condition_true_branch(self) -> None:
        sink = FakeSink()
        await WorkflowEngine(sink).execute(self._condition_graph(), transition(value=99))
        assert sink.calls == [("play", "siren", 1.0)]

    async def test_branch_on_status(self) -> None:
        g = graph(
            step(
                "b",
                StepKind.BRANCH,
                config={"cases": {"critical": "crit", "warning": "warn"}},
                branch_false="other",
            ),
            step("crit", StepKind.LOG, config={"message": "crit"}),
            step("warn", StepKind.LOG, config={"message": "warn"}),
            step("other", StepKind.LOG, config={"message": "other"}),
        )
        sink = FakeSink()
        engine = WorkflowEngine(sink)
        await engine.execute(g, transition(to=Status.WARNING))
        await engine.execute(g, transition(to=Status.OK))
        assert sink.calls == [("log", "warn"), ("log", "other")]


# ── Failures ────────────────────────────────────────────────────


class TestFailures:
    async def test_continue_on_fail(self) -> None:
        sink = FakeSink(fail_on={"play"})
        g = graph(
            step("p", StepKind.PLAY, config={"sound": "x"}, next="l"),
            step("l", StepKind.LOG, config={"message": "after"}),
        )
        run = await WorkflowEngine(sink).execute(g, transition())
        assert run.state == WorkflowState.COMPLETED
        assert run.result_for("p").state == WorkflowState.FAILED
        assert run.result_for("p").error == "no player"
        assert sink.calls == [("log", "after")]

    async def test_abort_on_fail(self) -> None:
        sink = FakeSink(fail_on={"play"})
        g = graph(
            step("p", StepKind.PLAY, config={"sound": "x"}, next="l", continue_on_fail=False),
            step("l", StepKind.LOG),
        )
        run = await WorkflowEngine(sink).execute(g, transition())
        assert run.state == WorkflowState.FAILED
        assert run.error == "aborted after failed step 'p'"
        assert sink.calls == []


# ── Parallel groups ─────────────────────────────────────────────


class TestParallel:
    async def test_slow_branch_times_out_without_hanging(self) -> None:
        sink = FakeSink()
        g = graph(
            step("g", StepKind.PARALLEL_GROUP, parallel_with=("fast", "slow", "medium")),
            step("fast", StepKind.WAIT, config={"seconds": 0.01}),
            step("slow", StepKind.WAIT, config={"seconds": 5}),
            step("medium", StepKind.WAIT, config={"seconds": 0.02}),
        )
        started = time.monotonic()
        run = await WorkflowEngine(sink).execute(g, transition(), timeout=0.2)
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        group = run.result_for("g")
        assert group.state == WorkflowState.FAILED
        assert group.branches == {
            "fast": WorkflowState.COMPLETED,
            "slow": WorkflowState.TIMED_OUT,
            "medium": WorkflowState.COMPLETED,
        }
        # The group failed but the run carried on past it.
        assert run.state == WorkflowState.COMPLETED

    async def test_step_after_group_runs_once_slice_elapses(self) -> None:
        sink = FakeSink()
        g = graph(
            step(
                "g",
                StepKind.PARALLEL_GROUP,
                parallel_with=("fast", "slow", "medium"),
                config={"timeoutSecs": 0.2},
                next="after",
            ),
            step("fast", StepKind.WAIT, config={"seconds": 0.01}),
            step("slow", StepKind.WAIT, config={"seconds": 5}),
            step("medium", StepKind.WAIT, config={"seconds": 0.02}),
            step("after", StepKind.LOG, config={"message": "after group"}),
        )
        started = time.monotonic()
        run = await WorkflowEngine(sink).execute(g, transition(), timeout=2.0)
        elapsed = time.monotonic() - started

        assert 0.15 < elapsed < 1.0
        assert run.result_for("g").branches == {
            "fast": WorkflowState.COMPLETED,
            "slow": WorkflowState.TIMED_OUT,
            "medium": WorkflowState.COMPLETED,
        }
        assert run.result_for("after").state == WorkflowState.COMPLETED
        assert sink.calls == [("log", "after group")]
        assert run.state == WorkflowState.COMPLETED

    async def test_group_slice_is_capped_at_run_deadline(self) -> None:
        sink = FakeSink()
        g = graph(
            step(
                "g",
                StepKind.PARALLEL_GROUP,
                parallel_with=("slow",),
                config={"timeout_secs": 30},
                next="after",
            ),
            step("slow", StepKind.WAIT, config={"seconds": 5}),
            step("after", StepKind.LOG, config={"message": "after group"}),
        )
        started = time.monotonic()
        run = await WorkflowEngine(sink).execute(g, transition(), timeout=0.1)

        assert time.monotonic() - started < 1.0
        assert run.result_for("g").branches == {"slow": WorkflowState.TIMED_OUT}
        assert run.state == WorkflowState.TIMED_OUT
        assert sink.calls == []

    async def test_all_branches_complete(self) -> None:
        sink = FakeSink()
        g = graph(
            step("g", StepKind.PARALLEL_GROUP, parallel_with=("a", "b"), next="end"),
            step("a", StepKind.LOG, config={"message": "a"}),
            step("b", StepKind.NOTIFY, config={"message": "b"}),
            step("end", StepKind.LOG, config={"message": "end"}),
        )
        run = await WorkflowEngine(sink).execute(g, transition())
        assert run.state == WorkflowState.COMPLETED
        assert run.result_for("g").state == WorkflowState.COMPLETED
        assert sink.calls[-1] == ("log", "end")
        assert {c[1] for c in sink.calls[:2]} == {"a", "b"}

    async def test_failed_branch_does_not_stop_siblings(self) -> None:
        sink = FakeSink(fail_on={"log"})
        g = graph(
            step("g", StepKind.PARALLEL_GROUP, parallel_with=("bad", "good"), next="end"),
            step("bad", StepKind.LOG, continue_on_fail=False),
            step("good", StepKind.NOTIFY, config={"message": "ok"}),
            step("end", StepKind.PLAY, config={"sound": "x"}),
        )
        run = await WorkflowEngine(sink).execute(g, transition())
        assert run.result_for("g").branches == {
            "bad": WorkflowState.FAILED,
            "good": WorkflowState.COMPLETED,
        }
        assert run.state == WorkflowState.COMPLETED
        assert ("notify", "ok") in sink.calls
        assert ("play", "x", 1.0) in sink.calls


# ── Deadlines and cancellation ──────────────────────────────────


class TestDeadlines:
    async def test_slow_sink_times_out(self) -> None:
        sink = FakeSink(play_delay=5)
        g = graph(step("p", StepKind.PLAY, config={"sound": "x"}))
        run = await WorkflowEngine(sink).execute(g, transition(), timeout=0.05)
        assert run.state == WorkflowState.TIMED_OUT
        assert run.result_for("p").state == WorkflowState.TIMED_OUT

    async def test_wait_longer_than_deadline(self) -> None:
        g = graph(step("w", StepKind.WAIT, config={"seconds": 10}))
        run = await WorkflowEngine(FakeSink()).execute(g, transition(), timeout=0.05)
        assert run.state == WorkflowState.TIMED_OUT

    async def test_stop_interrupts_wait(self) -> None:
        stop = asyncio.Event()
        engine = WorkflowEngine(FakeSink(), stop=stop)
        g = graph(
            step("w", StepKind.WAIT, config={"seconds": 10}, next="l"),
            step("l", StepKind.LOG),
        )
        task = asyncio.create_task(engine.execute(g, transition()))
        await asyncio.sleep(0.01)
        stop.set()
        run = await asyncio.wait_for(task, timeout=1.0)
        assert run.state == WorkflowState.CANCELLED
        assert run.result_for("w").state == WorkflowState.CANCELLED
        assert run.result_for("l") is None

    async def test_task_cancellation_marks_run(self) -> None:
        g = graph(step("w", StepKind.WAIT, config={"seconds": 10}))
        run = WorkflowRun(trigger_id="t")
        task = asyncio.create_task(WorkflowEngine(FakeSink()).execute(g, transition(), run=run))
        await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        assert task.cancelled()
        assert run.state == WorkflowState.CANCELLED


class TestRender:
    def test_unknown_placeholders_survive(self) -> None:
        assert render("{known} {unknown}", {"known": 1}) == "1 {unknown}"

    def test_malformed_template_is_returned(self) -> None:
        assert render("{", {}) == "{"

    def test_non_strings_pass_through(self) -> None:
        assert render(5, {}) == 5
