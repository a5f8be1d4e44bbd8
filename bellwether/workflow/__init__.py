"""Workflow engine — step graphs executed when a trigger fires."""

from bellwether.workflow.engine import WorkflowEngine, render
from bellwether.workflow.exceptions import WorkflowError, WorkflowStepFailed
from bellwether.workflow.graph import WorkflowGraph
from bellwether.workflow.types import StepResult, WorkflowRun, WorkflowState, WorkflowStep

__all__ = [
    "StepResult",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowGraph",
    "WorkflowRun",
    "WorkflowState",
    "WorkflowStep",
    "WorkflowStepFailed",
    "render",
]
