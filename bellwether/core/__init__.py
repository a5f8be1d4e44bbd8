"""Core module — config, types, logging, keyed locks."""

from bellwether.core.config import Settings, get_settings, load_settings, reset_settings
from bellwether.core.locks import KeyedLocks
from bellwether.core.logging import setup_logging
from bellwether.core.types import (
    EntityStatus,
    MonitoredEntity,
    OverflowPolicy,
    Status,
    StatusReport,
    StepKind,
    Transition,
)

__all__ = [
    "EntityStatus",
    "KeyedLocks",
    "MonitoredEntity",
    "OverflowPolicy",
    "Settings",
    "Status",
    "StatusReport",
    "StepKind",
    "Transition",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
