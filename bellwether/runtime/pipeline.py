"""Pipeline — sample → state → trigger match → rate control → workflow run."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import TYPE_CHECKING, Any

import structlog

from bellwether.conditions.evaluator import ConditionEvaluator, MatchOutcome
from bellwether.core.types import Admission, OverflowPolicy, Status, StatusReport, Transition
from bellwether.ratelimit.bucket import BurstLimiter
from bellwether.ratelimit.cooldown import CooldownController
from bellwether.rules.compiler import CompiledTrigger, RuleSet
from bellwether.runtime.scheduler import MonitorLoop, SampleHandler
from bellwether.state.store import StateStore
from bellwether.workflow.engine import WorkflowEngine
from bellwether.workflow.types import WorkflowRun, WorkflowState

if TYPE_CHECKING:
    from bellwether.runtime.scheduler import Scheduler

logger = structlog.get_logger(__name__)

Decision = Admission | MatchOutcome


class Pipeline(SampleHandler):
    """Glue between the scheduler, the state store and the workflow engine.

    For each Transition every trigger watching its event type is evaluated
    in turn: match (event, statuses, quiet hours, condition), then the
    per-key cooldown, then burst control. Admitted triggers launch an
    independent workflow task; the pipeline never waits for it.

    Transitions for one entity key reach ``handle_transition`` in sample
    order because each MonitorLoop awaits its handler before sampling that
    key again.
    """

    def __init__(
        self,
        rules: RuleSet,
        store: StateStore,
        evaluator: ConditionEvaluator,
        cooldowns: CooldownController,
        limiter: BurstLimiter,
        engine: WorkflowEngine,
        enabled: bool = True,
        max_throttled: int = 100,
        stop: asyncio.Event | None = None,
    ) -> None:
        self._rules = rules
        self._store = store
        self._evaluator = evaluator
        self._cooldowns = cooldowns
        self._limiter = limiter
        self._engine = engine
        self._enabled = enabled
        self._max_throttled = max_throttled
        self._stop = stop or engine.stop_event
        self._scheduler: Scheduler | None = None

        self._inflight: dict[str, set[asyncio.Task[WorkflowRun]]] = defaultdict(set)
        self._deferred: set[asyncio.Task[None]] = set()
        self._merged: dict[str, list[Transition]] = {}
        self._throttled: dict[str, deque[Transition]] = {}
        self._last_runs: dict[str, WorkflowRun] = {}
        self._ensure_horizons(rules)

    @property
    def rules(self) -> RuleSet:
        return self._rules

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        logger.info("pipeline_enabled" if enabled else "pipeline_disabled")

    def attach(self, scheduler: Scheduler) -> None:
        """Include *scheduler*'s loops in status reports."""
        self._scheduler = scheduler

    def last_run(self, trigger_id: str) -> WorkflowRun | None:
        return self._last_runs.get(trigger_id)

    def inflight(self, trigger_id: str | None = None) -> int:
        if trigger_id is not None:
            return len(self._inflight.get(trigger_id, ()))
        return sum(len(tasks) for tasks in self._inflight.values())

    # ── SampleHandler ───────────────────────────────────────────

    async def on_sample(self, loop: MonitorLoop, key: str, snapshot: Any) -> None:
        hysteresis = self._rules.hysteresis_for(loop.event_type) or loop.config.hysteresis
        transition = await self._store.record_sample(
            key,
            snapshot,
            loop.probe,
            monitor_id=loop.monitor_id,
            event_type=loop.event_type,
            hysteresis=hysteresis,
        )
        if transition is not None:
            await self.handle_transition(transition)

    async def on_error(self, loop: MonitorLoop, key: str, error: BaseException) -> None:
        transition = await self._store.record_error(
            key, error, monitor_id=loop.monitor_id, event_type=loop.event_type,
        )
        if transition is not None:
            await self.handle_transition(transition)

    async def on_targets(self, loop: MonitorLoop, keys: set[str]) -> None:
        gone = await self._store.evict_missing(loop.monitor_id, keys)
        if gone:
            logger.info("targets_removed", monitor_id=loop.monitor_id, keys=gone)
        self._cooldowns.prune()

    # ── Dispatch ────────────────────────────────────────────────

    async def emit(
        self,
        event_type: str,
        *,
        entity_key: str | None = None,
        to_status: Status = Status.UNKNOWN,
        from_status: Status = Status.UNKNOWN,
        detail: str = "",
        value: float | None = None,
    ) -> dict[str, Decision]:
        """Inject an event that did not come from a monitor (e.g. a hook)."""
        transition = Transition(
            entity_key=entity_key or event_type,
            event_type=event_type,
            from_status=from_status,
            to_status=to_status,
            detail=detail,
            value=value,
        )
        return await self.handle_transition(transition)

    async def handle_transition(self, transition: Transition) -> dict[str, Decision]:
        """Evaluate every trigger watching *transition*'s event type.

        Returns the decision taken for each of those triggers.
        """
        counter = self._evaluator.counter
        if counter is not None:
            counter.record(transition.event_type, transition.at)

        if not self._enabled:
            logger.debug("transition_ignored_disabled", key=transition.entity_key)
            return {}

        decisions: dict[str, Decision] = {}
        for trigger in self._rules.for_event(transition.event_type):
            try:
                outcome = self._evaluator.match(trigger, transition)
                if outcome != MatchOutcome.MATCHED:
                    logger.debug("trigger_skipped", trigger_id=trigger.id, outcome=outcome)
                    decisions[trigger.id] = outcome
                    continue
                decisions[trigger.id] = await self._admit(trigger, transition)
            except Exception:
                logger.exception("trigger_evaluation_error", trigger_id=trigger.id)
        return decisions

    async def _admit(self, trigger: CompiledTrigger, transition: Transition) -> Admission:
        alert_key = trigger.alert_key(transition)
        if not await self._cooldowns.admit(alert_key, trigger.cooldown_secs):
            logger.info(
                "trigger_cooldown",
                trigger_id=trigger.id,
                alert_key=alert_key,
                remaining_secs=round(self._cooldowns.remaining(alert_key), 3),
            )
            return Admission.COOLDOWN

        if self._limiter.try_acquire(trigger.event_type):
            self._launch(trigger, transition)
            return Admission.ADMITTED

        if trigger.overflow == OverflowPolicy.MERGE:
            buffered = self._merged.setdefault(trigger.id, [])
            buffered.append(transition)
            if len(buffered) == 1:
                self._defer(self._flush_merged(trigger), f"merge:{trigger.id}")
            logger.info("trigger_merged", trigger_id=trigger.id, buffered=len(buffered))
            return Admission.MERGED

        if trigger.overflow == OverflowPolicy.THROTTLE:
            queue = self._throttled.setdefault(trigger.id, deque())
            if len(queue) >= self._max_throttled:
                logger.warning(
                    "trigger_throttle_full", trigger_id=trigger.id, queued=len(queue),
                )
                return Admission.RATE_LIMITED
            queue.append(transition)
            if len(queue) == 1:
                self._defer(self._drain_throttled(trigger.id, queue), f"throttle:{trigger.id}")
            logger.info("trigger_throttled", trigger_id=trigger.id, queued=len(queue))
            return Admission.THROTTLED

        logger.info("trigger_rate_limited", trigger_id=trigger.id, alert_key=alert_key)
        return Admission.RATE_LIMITED

    def _launch(
        self,
        trigger: CompiledTrigger,
        transition: Transition,
    ) -> asyncio.Task[WorkflowRun]:
        run = WorkflowRun(trigger_id=trigger.id, transition=transition)
        task = asyncio.create_task(
            self._execute(trigger, transition, run),
            name=f"workflow:{trigger.id}:{run.run_id}",
        )
        tasks = self._inflight[trigger.id]
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        self._last_runs[trigger.id] = run
        logger.info(
            "trigger_fired",
            trigger_id=trigger.id,
            run_id=run.run_id,
            key=transition.entity_key,
            to_status=transition.to_status,
        )
        return task

    async def _execute(
        self,
        trigger: CompiledTrigger,
        transition: Transition,
        run: WorkflowRun,
    ) -> WorkflowRun:
        try:
            return await self._engine.execute(
                trigger.graph,
                transition,
                trigger_id=trigger.id,
                timeout=trigger.timeout_secs,
                run=run,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("workflow_error", trigger_id=trigger.id, run_id=run.run_id)
            run.state = WorkflowState.FAILED
            run.error = str(exc)
            return run

    # ── Overflow handling ───────────────────────────────────────

    def _defer(self, coro: Any, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._deferred.add(task)
        task.add_done_callback(self._deferred.discard)

    async def _flush_merged(self, trigger: CompiledTrigger) -> None:
        acquired = await self._limiter.acquire(trigger.event_type, self._stop)
        pending = self._merged.pop(trigger.id, [])
        current = self._rules.get(trigger.id)
        if not acquired or not pending or current is None or not current.enabled:
            return
        last = pending[-1]
        detail = f"{len(pending)} merged"
        if last.detail:
            detail = f"{detail}: {last.detail}"
        summary = last.model_copy(update={"detail": detail})
        self._launch(current, summary)

    async def _drain_throttled(self, trigger_id: str, queue: deque[Transition]) -> None:
        """Launch queued firings one token at a time, oldest first."""
        try:
            while queue:
                if not await self._limiter.acquire(queue[0].event_type, self._stop):
                    return
                if not queue:
                    return
                transition = queue.popleft()
                current = self._rules.get(trigger_id)
                if current is not None and current.enabled:
                    self._launch(current, transition)
        finally:
            if self._throttled.get(trigger_id) is queue:
                del self._throttled[trigger_id]

    # ── Reload / status / shutdown ──────────────────────────────

    async def reload(self, rules: RuleSet) -> None:
        """Swap in a new rule set; cancel runs of removed or disabled triggers."""
        self._rules = rules
        self._ensure_horizons(rules)

        doomed: list[asyncio.Task[WorkflowRun]] = []
        for trigger_id, tasks in self._inflight.items():
            current = rules.get(trigger_id)
            if current is None or not current.enabled:
                doomed.extend(tasks)
                if tasks:
                    logger.info(
                        "workflows_cancelled_on_reload",
                        trigger_id=trigger_id,
                        runs=len(tasks),
                    )
        for trigger_id in list(self._merged):
            current = rules.get(trigger_id)
            if current is None or not current.enabled:
                del self._merged[trigger_id]
        for trigger_id in list(self._throttled):
            current = rules.get(trigger_id)
            if current is None or not current.enabled:
                # The waiting worker finds its queue empty and exits.
                self._throttled.pop(trigger_id).clear()

        for task in doomed:
            task.cancel()
        if doomed:
            await asyncio.gather(*doomed, return_exceptions=True)
        logger.info("rules_reloaded", triggers=len(rules))

    def status(self) -> StatusReport:
        """Snapshot of entities, monitor loops, and last run per trigger.

        Never raises: a part that cannot be read is left out.
        """
        report = StatusReport()
        try:
            report.entities = self._store.statuses()
        except Exception:
            logger.exception("status_entities_error")
        if self._scheduler is not None:
            try:
                report.monitors = self._scheduler.statuses()
            except Exception:
                logger.exception("status_monitors_error")
        try:
            report.workflows = {tid: str(run.state) for tid, run in self._last_runs.items()}
        except Exception:
            logger.exception("status_workflows_error")
        return report

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for every in-flight run. Returns False if *timeout* elapsed."""
        tasks = [*self._deferred, *(t for ts in self._inflight.values() for t in ts)]
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def shutdown(self) -> None:
        """Signal stop and cancel every in-flight and deferred task."""
        self._stop.set()
        tasks = [*self._deferred, *(t for ts in self._inflight.values() for t in ts)]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._merged.clear()
        self._throttled.clear()
        logger.info("pipeline_stopped", cancelled=len(tasks))

    def _ensure_horizons(self, rules: RuleSet) -> None:
        counter = self._evaluator.counter
        if counter is None:
            return
        for window in rules.count_windows():
            counter.ensure_horizon(window)
