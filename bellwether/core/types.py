"""Domain types shared by the detection and dispatch pipeline."""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Status(StrEnum):
    """Classified status of a monitored entity."""

    UNKNOWN = "unknown"
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    UP = "up"
    DOWN = "down"


HEALTHY_STATUSES: frozenset[Status] = frozenset({Status.OK, Status.CONNECTED, Status.UP})


def is_healthy(status: Status) -> bool:
    return status in HEALTHY_STATUSES


class Transition(BaseModel):
    """A detected change in classified status for one entity.

    ``value`` carries the numeric reading behind the transition when the
    snapshot has one; ``detail`` carries free text (probe error, summary, etc).
    """

    model_config = ConfigDict(frozen=True)

    entity_key: str
    event_type: str
    from_status: Status
    to_status: Status
    at: float = Field(default_factory=time.time)
    detail: str = ""
    value: float | None = None
    monitor_id: str = ""

    @property
    def is_recovery(self) -> bool:
        return is_healthy(self.to_status) and not is_healthy(self.from_status)


class MonitoredEntity(BaseModel):
    """Last-known state of one monitor-instance x sub-target."""

    key: str
    monitor_id: str = ""
    event_type: str = ""
    last_snapshot: Any = None
    status: Status = Status.UNKNOWN
    consecutive_failures: int = 0
    last_transition_at: float | None = None
    last_sample_at: float | None = None
    last_error: str | None = None
    # Hysteresis bookkeeping: the status the samples currently point at and
    # how long they have pointed at it.
    candidate: Status | None = None
    candidate_count: int = 0
    candidate_since: float | None = None
    initialized: bool = False


class EntityStatus(BaseModel):
    """Read-only view of an entity for status queries."""

    key: str
    monitor_id: str
    status: Status
    consecutive_failures: int
    last_error: str | None = None
    last_transition_at: float | None = None
    last_sample_at: float | None = None


class MonitorStatus(BaseModel):
    """Read-only view of one scheduler loop."""

    monitor_id: str
    running: bool
    error_count: int
    restarts: int
    last_poll_time: float | None = None


class StatusReport(BaseModel):
    """Aggregated answer to a status query."""

    entities: list[EntityStatus] = Field(default_factory=list)
    monitors: list[MonitorStatus] = Field(default_factory=list)
    workflows: dict[str, str] = Field(default_factory=dict)
    generated_at: float = Field(default_factory=time.time)


class OverflowPolicy(StrEnum):
    """What a trigger does with firings that exceed its burst budget."""

    SILENCE = "silence"
    MERGE = "merge"
    THROTTLE = "throttle"


class StepKind(StrEnum):
    """Workflow step kinds."""

    PLAY = "play"
    WAIT = "wait"
    CONDITION = "condition"
    BRANCH = "branch"
    PARALLEL_GROUP = "parallel_group"
    WEBHOOK = "webhook"
    LOG = "log"
    NOTIFY = "notify"


class Admission(StrEnum):
    """Outcome of passing a firing through cooldown and burst control."""

    ADMITTED = "admitted"
    COOLDOWN = "cooldown"
    RATE_LIMITED = "rate_limited"
    MERGED = "merged"
    THROTTLED = "throttled"
