"""Workflow execution exceptions."""

from __future__ import annotations


class WorkflowError(Exception):
    """Base exception for workflow execution errors."""


class WorkflowStepFailed(WorkflowError):
    """A step could not complete. Aborts the run only if the step says so."""

    def __init__(self, step_id: str, message: str) -> None:
        super().__init__(f"step {step_id!r} failed: {message}")
        self.step_id = step_id
