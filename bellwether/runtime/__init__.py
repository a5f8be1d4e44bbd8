"""Runtime — monitor scheduling, the dispatch pipeline, and stack wiring."""

from bellwether.runtime.factory import Runtime, create_runtime
from bellwether.runtime.pipeline import Pipeline
from bellwether.runtime.scheduler import MonitorLoop, SampleHandler, Scheduler, entity_key

__all__ = [
    "MonitorLoop",
    "Pipeline",
    "Runtime",
    "SampleHandler",
    "Scheduler",
    "create_runtime",
    "entity_key",
]
