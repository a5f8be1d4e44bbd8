"""Workflow steps, run states, and run records."""

from __future__ import annotations

import time
import uuid
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from bellwether.conditions.expr import Expr
from bellwether.core.types import StepKind, Transition


class WorkflowState(StrEnum):
    """pending -> running -> {completed, failed, timed_out, cancelled}."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (WorkflowState.PENDING, WorkflowState.RUNNING)


class WorkflowStep(BaseModel):
    """One node of a compiled workflow graph.

    ``condition`` is the pre-parsed expression of a ``condition`` step.
    A ``branch`` step switches on a transition field: ``config.field``
    (default ``to_status``) is looked up in ``config.cases``.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    kind: StepKind
    config: dict[str, Any] = Field(default_factory=dict)
    next: str | None = None
    branch_true: str | None = None
    branch_false: str | None = None
    parallel_with: tuple[str, ...] = ()
    continue_on_fail: bool = True
    condition: Expr | None = None

    @property
    def cases(self) -> dict[str, str]:
        raw = self.config.get("cases") or {}
        return {str(k): str(v) for k, v in raw.items()}

    @property
    def group_timeout(self) -> float | None:
        """Seconds a ``parallel`` group may run before unfinished branches time out."""
        raw = self.config.get("timeout_secs", self.config.get("timeoutSecs"))
        return None if raw is None else float(raw)

    def successors(self) -> list[str]:
        """Every step id this step can hand control to."""
        out = [s for s in (self.next, self.branch_true, self.branch_false) if s]
        out.extend(self.parallel_with)
        if self.kind == StepKind.BRANCH:
            out.extend(self.cases.values())
        return out


class StepResult(BaseModel):
    """Outcome of one executed step."""

    step_id: str
    kind: StepKind
    state: WorkflowState
    error: str | None = None
    started_at: float = Field(default_factory=time.time)
    finished_at: float | None = None
    branches: dict[str, WorkflowState] = Field(default_factory=dict)


class WorkflowRun(BaseModel):
    """One firing of a trigger — independent of every other firing."""

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    trigger_id: str
    transition: Transition | None = None
    state: WorkflowState = WorkflowState.PENDING
    steps: list[StepResult] = Field(default_factory=list)
    error: str | None = None
    started_at: float | None = None
    finished_at: float | None = None

    def result_for(self, step_id: str) -> StepResult | None:
        for result in self.steps:
            if result.step_id == step_id:
                return result
        return None
