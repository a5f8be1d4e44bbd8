"""WorkflowEngine — executes a trigger's step graph under one deadline."""

from __future__ import annotations

import asyncio
import datetime
import time
from collections.abc import Awaitable
from typing import Any, TypeVar

import structlog

from bellwether.conditions.evaluator import ConditionEvaluator
from bellwether.conditions.expr import EvalContext, Expr
from bellwether.core.types import StepKind, Transition
from bellwether.ratelimit.volume import clamp_volume
from bellwether.sinks.base import ActionSink
from bellwether.workflow.exceptions import WorkflowStepFailed
from bellwether.workflow.graph import WorkflowGraph
from bellwether.workflow.types import StepResult, WorkflowRun, WorkflowState, WorkflowStep

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_DEFAULT_MESSAGE = "{event_type} {entity_key}: {from_status} -> {to_status} {detail}"


class _DeadlineExceeded(Exception):
    """The run's deadline passed."""


class _StopRequested(Exception):
    """The shared stop signal was set."""


class _SafeDict(dict[str, Any]):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render(template: Any, fields: dict[str, Any]) -> Any:
    """Fill ``{placeholders}`` in strings (recursively in dicts and lists)."""
    if isinstance(template, str):
        try:
            return template.format_map(_SafeDict(fields))
        except (ValueError, IndexError):
            return template
    if isinstance(template, dict):
        return {k: render(v, fields) for k, v in template.items()}
    if isinstance(template, list):
        return [render(v, fields) for v in template]
    return template


class WorkflowEngine:
    """Runs workflow graphs; each call to ``execute`` is an independent run.

    The whole run shares one deadline and parallel branches run against
    their group's slice of it. Every suspension point (sink call, ``wait``,
    parallel join) is bounded by what is left. Setting *stop* cancels runs
    at the next step boundary or inside a ``wait``.
    """

    def __init__(
        self,
        sink: ActionSink,
        evaluator: ConditionEvaluator | None = None,
        max_volume: float = 1.0,
        default_timeout: float = 30.0,
        stop: asyncio.Event | None = None,
    ) -> None:
        self._sink = sink
        self._evaluator = evaluator
        self._max_volume = max_volume
        self._default_timeout = default_timeout
        self._stop = stop or asyncio.Event()

    @property
    def stop_event(self) -> asyncio.Event:
        return self._stop

    async def execute(
        self,
        graph: WorkflowGraph,
        transition: Transition,
        trigger_id: str = "",
        timeout: float | None = None,
        run: WorkflowRun | None = None,
    ) -> WorkflowRun:
        """Run *graph* for one transition and return the finished run record.

        If the surrounding task is cancelled the run is marked ``cancelled``
        and the cancellation propagates.
        """
        run = run or WorkflowRun(trigger_id=trigger_id, transition=transition)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout or self._default_timeout)
        fields = {
            **transition.model_dump(mode="json"),
            "trigger_id": run.trigger_id,
            "run_id": run.run_id,
        }

        run.state = WorkflowState.RUNNING
        run.started_at = time.time()
        log = logger.bind(run_id=run.run_id, trigger_id=run.trigger_id)
        try:
            completed = await self._run_chain(
                graph, graph.entry, transition, fields, deadline, run.steps,
            )
            run.state = WorkflowState.COMPLETED if completed else WorkflowState.FAILED
        except _DeadlineExceeded:
            run.state = WorkflowState.TIMED_OUT
            run.error = "workflow deadline exceeded"
        except _StopRequested:
            run.state = WorkflowState.CANCELLED
            run.error = "stop requested"
        except asyncio.CancelledError:
            run.state = WorkflowState.CANCELLED
            run.error = "cancelled"
            raise
        finally:
            run.finished_at = time.time()
            log.info("workflow_finished", state=run.state, steps=len(run.steps))
        if run.state == WorkflowState.FAILED:
            failed = [r.step_id for r in run.steps if r.state == WorkflowState.FAILED]
            run.error = f"aborted after failed step {failed[-1]!r}" if failed else "failed"
        return run

    # ── Graph walking ───────────────────────────────────────────

    async def _run_chain(
        self,
        graph: WorkflowGraph,
        start: str | None,
        transition: Transition,
        fields: dict[str, Any],
        deadline: float,
        results: list[StepResult],
    ) -> bool:
        """Follow steps from *start*. Returns False if a step aborted the chain."""
        step_id = start
        while step_id is not None:
            self._check(deadline)
            step = graph.step(step_id)
            result = StepResult(step_id=step.id, kind=step.kind, state=WorkflowState.RUNNING)
            results.append(result)
            try:
                step_id = await self._run_step(
                    step, graph, transition, fields, deadline, result, results,
                )
                if result.state == WorkflowState.RUNNING:
                    result.state = WorkflowState.COMPLETED
            except _DeadlineExceeded:
                result.state = WorkflowState.TIMED_OUT
                raise
            except (_StopRequested, asyncio.CancelledError):
                result.state = WorkflowState.CANCELLED
                raise
            except Exception as exc:
                result.state = WorkflowState.FAILED
                result.error = str(exc)
                logger.warning(
                    "workflow_step_failed",
                    step_id=step.id,
                    kind=step.kind,
                    error=str(exc),
                    continue_on_fail=step.continue_on_fail,
                )
                if not step.continue_on_fail:
                    return False
                step_id = step.next
            finally:
                result.finished_at = time.time()
        return True

    async def _run_step(
        self,
        step: WorkflowStep,
        graph: WorkflowGraph,
        transition: Transition,
        fields: dict[str, Any],
        deadline: float,
        result: StepResult,
        results: list[StepResult],
    ) -> str | None:
        """Execute one step and return the id of the step to run next."""
        cfg = step.config

        if step.kind == StepKind.PLAY:
            volume = clamp_volume(float(cfg.get("volume", 1.0)), self._max_volume)
            await self._bounded(self._sink.play(str(cfg["sound"]), volume), deadline)
            return step.next

        if step.kind == StepKind.WAIT:
            await self._wait(float(cfg["seconds"]), deadline)
            return step.next

        if step.kind == StepKind.CONDITION:
            if step.condition is None:
                raise WorkflowStepFailed(step.id, "condition step without a condition")
            chosen = self._evaluate(step.condition, transition)
            return step.branch_true if chosen else step.branch_false

        if step.kind == StepKind.BRANCH:
            field = str(cfg.get("field", "to_status"))
            value = getattr(transition, field, None)
            return step.cases.get(str(value), step.branch_false)

        if step.kind == StepKind.PARALLEL_GROUP:
            await self._run_parallel(step, graph, transition, fields, deadline, result, results)
            return step.next

        if step.kind == StepKind.WEBHOOK:
            payload = render(cfg.get("payload", fields), fields)
            if not isinstance(payload, dict):
                raise WorkflowStepFailed(step.id, "webhook payload must be a mapping")
            await self._bounded(self._sink.webhook(str(cfg["url"]), payload), deadline)
            return step.next

        if step.kind == StepKind.LOG:
            message = render(str(cfg.get("message", _DEFAULT_MESSAGE)), fields)
            await self._bounded(self._sink.log(message), deadline)
            return step.next

        if step.kind == StepKind.NOTIFY:
            message = render(str(cfg.get("message", _DEFAULT_MESSAGE)), fields)
            await self._bounded(self._sink.notify(message), deadline)
            return step.next

        raise WorkflowStepFailed(step.id, f"unsupported step kind {step.kind!r}")

    async def _run_parallel(
        self,
        step: WorkflowStep,
        graph: WorkflowGraph,
        transition: Transition,
        fields: dict[str, Any],
        deadline: float,
        result: StepResult,
        results: list[StepResult],
    ) -> None:
        """Fan out to each branch chain and join within the group's slice.

        The slice is ``timeout_secs`` from the step config, capped at the run
        deadline (the whole remaining run time when unset). Branches still
        running when it elapses are timed out, and the run carries on past
        the group. A branch that times out or fails marks the group failed
        but does not affect its siblings.
        """
        loop = asyncio.get_running_loop()
        group_deadline = deadline
        if step.group_timeout is not None:
            group_deadline = min(deadline, loop.time() + step.group_timeout)
        branch_results: dict[str, list[StepResult]] = {b: [] for b in step.parallel_with}
        tasks: dict[str, asyncio.Task[bool]] = {
            b: asyncio.create_task(
                self._run_chain(graph, b, transition, fields, group_deadline, branch_results[b]),
                name=f"branch:{step.id}:{b}",
            )
            for b in step.parallel_with
        }
        try:
            await asyncio.wait(tasks.values(), timeout=max(0.0, group_deadline - loop.time()))
        finally:
            pending = [t for t in tasks.values() if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for branch_id, task in tasks.items():
            result.branches[branch_id] = _branch_state(task)
            results.extend(branch_results[branch_id])

        if self._stop.is_set():
            raise _StopRequested
        failed = [b for b, s in result.branches.items() if s != WorkflowState.COMPLETED]
        if failed:
            raise WorkflowStepFailed(step.id, f"branches did not complete: {', '.join(failed)}")

    # ── Suspension points ───────────────────────────────────────

    def _check(self, deadline: float) -> None:
        if self._stop.is_set():
            raise _StopRequested
        if asyncio.get_running_loop().time() >= deadline:
            raise _DeadlineExceeded

    async def _bounded(self, aw: Awaitable[T], deadline: float) -> T:
        if asyncio.get_running_loop().time() >= deadline:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise _DeadlineExceeded
        scope = asyncio.timeout_at(deadline)
        try:
            async with scope:
                return await aw
        except TimeoutError:
            if scope.expired():
                raise _DeadlineExceeded from None
            raise

    async def _wait(self, seconds: float, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        remaining = deadline - loop.time()
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, min(seconds, remaining)))
        except TimeoutError:
            if seconds > remaining:
                raise _DeadlineExceeded from None
            return
        raise _StopRequested

    def _evaluate(self, expr: Expr, transition: Transition) -> bool:
        if self._evaluator is not None:
            return self._evaluator.evaluate(expr, transition)
        ctx = EvalContext(
            transition=transition,
            now=datetime.datetime.fromtimestamp(transition.at),
        )
        return expr.evaluate(ctx)


def _branch_state(task: asyncio.Task[bool]) -> WorkflowState:
    if task.cancelled():
        return WorkflowState.TIMED_OUT
    exc = task.exception()
    if exc is None:
        return WorkflowState.COMPLETED if task.result() else WorkflowState.FAILED
    if isinstance(exc, _DeadlineExceeded):
        return WorkflowState.TIMED_OUT
    if isinstance(exc, _StopRequested):
        return WorkflowState.CANCELLED
    return WorkflowState.FAILED
