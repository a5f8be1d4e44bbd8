"""WorkflowGraph — validated, acyclic step graph with a single entry."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from bellwether.core.types import StepKind
from bellwether.rules.exceptions import ConfigurationError
from bellwether.workflow.types import WorkflowStep

# Config keys each step kind cannot do without.
_REQUIRED_CONFIG: dict[StepKind, tuple[str, ...]] = {
    StepKind.PLAY: ("sound",),
    StepKind.WAIT: ("seconds",),
    StepKind.WEBHOOK: ("url",),
}


class WorkflowGraph:
    """Immutable step graph. Build with ``WorkflowGraph.build``."""

    def __init__(self, name: str, steps: dict[str, WorkflowStep], entry: str) -> None:
        self._name = name
        self._steps = steps
        self._entry = entry

    @property
    def name(self) -> str:
        return self._name

    @property
    def entry(self) -> str:
        return self._entry

    def step(self, step_id: str) -> WorkflowStep:
        return self._steps[step_id]

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[WorkflowStep]:
        return iter(self._steps.values())

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._steps

    @classmethod
    def build(
        cls,
        steps: Iterable[WorkflowStep],
        entry: str | None = None,
        name: str = "",
    ) -> WorkflowGraph:
        """Validate and freeze a graph.

        Raises:
            ConfigurationError: empty graph, duplicate ids, missing entry,
                a reference to an unknown step, a malformed step, or a cycle.
        """
        table: dict[str, WorkflowStep] = {}
        for step in steps:
            if step.id in table:
                raise ConfigurationError(f"workflow {name!r}: duplicate step id {step.id!r}", name)
            table[step.id] = step
        if not table:
            raise ConfigurationError(f"workflow {name!r} has no steps", name)

        entry = entry or next(iter(table))
        if entry not in table:
            raise ConfigurationError(
                f"workflow {name!r}: entry step {entry!r} does not exist", name,
            )

        for step in table.values():
            _check_step(step, table, name)

        _check_acyclic(table, name)
        return cls(name, table, entry)


def _check_step(step: WorkflowStep, table: dict[str, WorkflowStep], name: str) -> None:
    for ref in step.successors():
        if ref not in table:
            raise ConfigurationError(
                f"workflow {name!r}: step {step.id!r} references missing step {ref!r}", name,
            )
    for key in _REQUIRED_CONFIG.get(step.kind, ()):
        if key not in step.config:
            raise ConfigurationError(
                f"workflow {name!r}: {step.kind} step {step.id!r} needs {key!r}", name,
            )
    if step.kind == StepKind.PARALLEL_GROUP:
        if not step.parallel_with:
            raise ConfigurationError(
                f"workflow {name!r}: parallel step {step.id!r} lists no branches", name,
            )
        try:
            slice_secs = step.group_timeout
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"workflow {name!r}: parallel step {step.id!r} has a non-numeric timeout", name,
            ) from exc
        if slice_secs is not None and slice_secs <= 0:
            raise ConfigurationError(
                f"workflow {name!r}: parallel step {step.id!r} timeout must be positive", name,
            )
    if step.kind == StepKind.CONDITION and step.condition is None:
        raise ConfigurationError(
            f"workflow {name!r}: condition step {step.id!r} has no condition", name,
        )
    if step.kind == StepKind.BRANCH and not step.cases:
        raise ConfigurationError(f"workflow {name!r}: branch step {step.id!r} has no cases", name)
    if step.kind == StepKind.WAIT:
        try:
            seconds = float(step.config["seconds"])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"workflow {name!r}: wait step {step.id!r} has a non-numeric duration", name,
            ) from exc
        if seconds < 0:
            raise ConfigurationError(
                f"workflow {name!r}: wait step {step.id!r} has a negative duration", name,
            )


def _check_acyclic(table: dict[str, WorkflowStep], name: str) -> None:
    visiting, done = 1, 2
    marks: dict[str, int] = {}

    for root in table:
        if root in marks:
            continue
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(table[root].successors()))]
        marks[root] = visiting
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                marks[node] = done
                stack.pop()
                continue
            mark = marks.get(child)
            if mark == visiting:
                raise ConfigurationError(
                    f"workflow {name!r}: cycle through steps {node!r} -> {child!r}", name,
                )
            if mark is None:
                marks[child] = visiting
                stack.append((child, iter(table[child].successors())))
