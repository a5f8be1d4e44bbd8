"""Convenience factory for wiring the detection and dispatch stack."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from bellwether.conditions.counter import SlidingCounter
from bellwether.conditions.evaluator import ConditionEvaluator, QuietHours
from bellwether.core.config import Settings
from bellwether.core.types import StatusReport
from bellwether.probes.base import Probe
from bellwether.probes.registry import load_probe
from bellwether.ratelimit.bucket import BurstLimiter
from bellwether.ratelimit.cooldown import CooldownController
from bellwether.rules.compiler import RuleSet, compile_rules
from bellwether.runtime.pipeline import Pipeline
from bellwether.runtime.scheduler import MonitorLoop, Scheduler
from bellwether.sinks.base import ActionSink
from bellwether.sinks.router import SinkRouter
from bellwether.state.store import StateStore
from bellwether.workflow.engine import WorkflowEngine

logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    """Everything ``create_runtime`` wired together, sharing one stop event."""

    settings: Settings
    rules: RuleSet
    pipeline: Pipeline
    scheduler: Scheduler
    sink: ActionSink
    stop: asyncio.Event

    async def start(self) -> None:
        await self.scheduler.start()
        logger.info(
            "runtime_started",
            monitors=len(self.scheduler.loops),
            triggers=len(self.rules),
            enabled=self.pipeline.enabled,
        )

    async def shutdown(self) -> None:
        """Stop scheduling, cancel in-flight workflows, close sinks."""
        self.stop.set()
        try:
            await self.scheduler.stop()
        except Exception:
            logger.exception("scheduler_stop_error")
        await self.pipeline.shutdown()
        try:
            await self.sink.close()
        except Exception:
            logger.exception("sink_close_error")
        logger.info("runtime_stopped")

    async def reload(self, settings: Settings) -> RuleSet:
        """Recompile triggers and workflows from *settings* and swap them in.

        Monitors are not rebuilt. Raises ConfigurationError (leaving the
        current rules in place) if the new configuration is invalid.
        """
        rules = compile_rules(settings)
        await self.pipeline.reload(rules)
        self.pipeline.set_enabled(settings.enabled)
        self.rules = rules
        self.settings = settings
        return rules

    def status(self) -> StatusReport:
        return self.pipeline.status()


def create_runtime(
    settings: Settings,
    sink: ActionSink | None = None,
    probes: dict[str, Probe] | None = None,
) -> Runtime:
    """Build the full stack from *settings*. Nothing is started.

    Rules are compiled first, so a ConfigurationError surfaces before any
    probe is loaded or any loop exists.

    Args:
        sink: Override the configured SinkRouter (tests, embedding).
        probes: Probe instances by monitor id, overriding ``monitor.probe``.
    """
    rules = compile_rules(settings)

    stop = asyncio.Event()
    sink = sink or SinkRouter.from_config(settings.sinks)

    counter = SlidingCounter()
    evaluator = ConditionEvaluator(
        quiet_hours=QuietHours.from_config(settings.quiet_hours),
        counter=counter,
    )
    engine = WorkflowEngine(
        sink,
        evaluator=evaluator,
        max_volume=settings.defaults.max_volume,
        default_timeout=settings.defaults.workflow_timeout_secs,
        stop=stop,
    )
    pipeline = Pipeline(
        rules=rules,
        store=StateStore(),
        evaluator=evaluator,
        cooldowns=CooldownController(default_interval=settings.defaults.cooldown_secs),
        limiter=BurstLimiter.from_config(settings.burst),
        engine=engine,
        enabled=settings.enabled,
        max_throttled=settings.burst.max_throttled,
        stop=stop,
    )

    overrides = probes or {}
    loops = [
        MonitorLoop(
            monitor,
            overrides.get(monitor.id) or load_probe(monitor),
            pipeline,
            stop=stop,
            probe_timeout_secs=settings.defaults.probe_timeout_secs,
        )
        for monitor in settings.monitors
    ]
    scheduler = Scheduler(loops, stop=stop)
    pipeline.attach(scheduler)

    return Runtime(
        settings=settings,
        rules=rules,
        pipeline=pipeline,
        scheduler=scheduler,
        sink=sink,
        stop=stop,
    )
