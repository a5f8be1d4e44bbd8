"""Compile trigger and workflow configuration into an immutable RuleSet.

All validation happens here, before any scheduler starts: unknown workflow
names, branches to missing steps, cycles, unparseable conditions and
conflicting hysteresis settings all raise ``ConfigurationError``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from bellwether.conditions.expr import All
from bellwether.conditions.parser import parse_condition
from bellwether.core.config import (
    ActionConfig,
    HysteresisConfig,
    Settings,
    TriggerConfig,
    WorkflowConfig,
    WorkflowStepConfig,
)
from bellwether.core.types import OverflowPolicy, Status, StepKind, Transition
from bellwether.rules.exceptions import ConfigurationError
from bellwether.workflow.graph import WorkflowGraph
from bellwether.workflow.types import WorkflowStep

logger = structlog.get_logger(__name__)

# Kinds that make sense as a flat ``actions:`` list.
_INLINE_KINDS = frozenset({
    StepKind.PLAY, StepKind.WAIT, StepKind.LOG, StepKind.NOTIFY, StepKind.WEBHOOK,
})


@dataclass(frozen=True)
class CompiledTrigger:
    """A trigger ready for evaluation — condition parsed, graph validated."""

    id: str
    event_type: str
    graph: WorkflowGraph
    condition: All = field(default_factory=All)
    to_status: frozenset[Status] = frozenset()
    from_status: frozenset[Status] = frozenset()
    enabled: bool = True
    cooldown_secs: float | None = None
    overflow: OverflowPolicy = OverflowPolicy.SILENCE
    quiet_hours_exempt: bool = False
    hysteresis: HysteresisConfig | None = None
    timeout_secs: float | None = None

    def alert_key(self, transition: Transition) -> str:
        return f"{self.id}:{transition.entity_key}"


@dataclass(frozen=True)
class RuleSet:
    """The complete, read-only set of triggers for one run (or one reload)."""

    triggers: tuple[CompiledTrigger, ...] = ()
    hysteresis: dict[str, HysteresisConfig] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.triggers)

    def get(self, trigger_id: str) -> CompiledTrigger | None:
        for trigger in self.triggers:
            if trigger.id == trigger_id:
                return trigger
        return None

    def for_event(self, event_type: str) -> list[CompiledTrigger]:
        return [t for t in self.triggers if t.event_type == event_type]

    def hysteresis_for(self, event_type: str) -> HysteresisConfig | None:
        return self.hysteresis.get(event_type)

    def count_windows(self) -> list[float]:
        """Every recent-count window used by any trigger condition."""
        return [w for t in self.triggers for w in t.condition.windows()]


def compile_step(config: WorkflowStepConfig, source: str = "") -> WorkflowStep:
    condition = None
    if config.kind == StepKind.CONDITION:
        raw = config.config.get("when", config.config.get("condition"))
        if raw is None:
            raise ConfigurationError(
                f"{source}: condition step {config.id!r} needs 'when'", source,
            )
        condition = _parse(raw, source)
    return WorkflowStep(
        id=config.id,
        kind=config.kind,
        config=dict(config.config),
        next=config.next,
        branch_true=config.branch_true,
        branch_false=config.branch_false,
        parallel_with=tuple(config.parallel_with),
        continue_on_fail=config.continue_on_fail,
        condition=condition,
    )


def compile_workflow(name: str, config: WorkflowConfig) -> WorkflowGraph:
    steps = [compile_step(s, source=name) for s in config.steps]
    return WorkflowGraph.build(steps, entry=config.entry, name=name)


def actions_to_graph(trigger_id: str, actions: list[ActionConfig]) -> WorkflowGraph:
    """Turn a flat action list into a linear workflow."""
    ids = [f"{trigger_id}.{i}" for i in range(len(actions))]
    steps: list[WorkflowStep] = []
    for i, action in enumerate(actions):
        if action.kind not in _INLINE_KINDS:
            raise ConfigurationError(
                f"trigger {trigger_id!r}: {action.kind} needs a workflow, not an inline action",
                trigger_id,
            )
        steps.append(WorkflowStep(
            id=ids[i],
            kind=action.kind,
            config=action.options,
            next=ids[i + 1] if i + 1 < len(ids) else None,
            continue_on_fail=action.continue_on_fail,
        ))
    return WorkflowGraph.build(steps, name=trigger_id)


def _parse(raw: str | dict, source: str) -> All:
    try:
        return parse_condition(raw)
    except ConfigurationError as exc:
        raise ConfigurationError(f"{source}: {exc}", source) from exc


def _event_triggers(settings: Settings) -> list[TriggerConfig]:
    return [
        TriggerConfig(
            id=f"event:{name}",
            event_type=name,
            enabled=event.enabled,
            cooldown_secs=event.cooldown,
            actions=[ActionConfig(kind=StepKind.PLAY, sound=event.sound, volume=event.volume)],
        )
        for name, event in settings.events.items()
    ]


def compile_trigger(
    config: TriggerConfig,
    workflows: dict[str, WorkflowGraph],
) -> CompiledTrigger:
    if bool(config.actions) == bool(config.workflow):
        raise ConfigurationError(
            f"trigger {config.id!r} needs exactly one of 'actions' or 'workflow'", config.id,
        )
    if config.workflow is not None:
        graph = workflows.get(config.workflow)
        if graph is None:
            raise ConfigurationError(
                f"trigger {config.id!r} references unknown workflow {config.workflow!r}",
                config.id,
            )
    else:
        graph = actions_to_graph(config.id, config.actions)

    return CompiledTrigger(
        id=config.id,
        event_type=config.event_type,
        graph=graph,
        condition=_parse(config.condition, config.id),
        to_status=frozenset(config.to_status),
        from_status=frozenset(config.from_status),
        enabled=config.enabled,
        cooldown_secs=config.cooldown_secs,
        overflow=config.overflow,
        quiet_hours_exempt=config.quiet_hours_exempt,
        hysteresis=config.hysteresis,
        timeout_secs=config.timeout_secs,
    )


def _resolve_hysteresis(triggers: Iterable[CompiledTrigger]) -> dict[str, HysteresisConfig]:
    resolved: dict[str, HysteresisConfig] = {}
    owner: dict[str, str] = {}
    for trigger in triggers:
        if trigger.hysteresis is None:
            continue
        current = resolved.get(trigger.event_type)
        if current is not None and current != trigger.hysteresis:
            raise ConfigurationError(
                f"triggers {owner[trigger.event_type]!r} and {trigger.id!r} set different "
                f"hysteresis for event type {trigger.event_type!r}",
                trigger.id,
            )
        resolved[trigger.event_type] = trigger.hysteresis
        owner[trigger.event_type] = trigger.id
    return resolved


def compile_rules(settings: Settings) -> RuleSet:
    """Validate and compile every trigger and workflow in *settings*.

    Raises:
        ConfigurationError: on the first problem found.
    """
    workflows = {name: compile_workflow(name, wf) for name, wf in settings.workflows.items()}

    configs = [*_event_triggers(settings), *settings.triggers]
    seen: set[str] = set()
    for cfg in configs:
        if cfg.id in seen:
            raise ConfigurationError(f"duplicate trigger id {cfg.id!r}", cfg.id)
        seen.add(cfg.id)

    triggers = tuple(compile_trigger(cfg, workflows) for cfg in configs)

    monitor_ids = [m.id for m in settings.monitors]
    if len(set(monitor_ids)) != len(monitor_ids):
        raise ConfigurationError("duplicate monitor ids")
    produced = {m.resolved_event_type for m in settings.monitors}
    for trigger in triggers:
        if produced and trigger.event_type not in produced:
            logger.warning(
                "trigger_event_type_unmonitored",
                trigger_id=trigger.id,
                event_type=trigger.event_type,
            )

    rules = RuleSet(triggers=triggers, hysteresis=_resolve_hysteresis(triggers))
    logger.info("rules_compiled", triggers=len(triggers), workflows=len(workflows))
    return rules
