"""Probe interface — external samplers, one per monitor kind."""

from bellwether.probes.base import FunctionProbe, Probe, SampleFn, Snapshot
from bellwether.probes.exceptions import ProbeError, ProbeTimeoutError
from bellwether.probes.registry import load_probe

__all__ = [
    "FunctionProbe",
    "Probe",
    "ProbeError",
    "ProbeTimeoutError",
    "SampleFn",
    "Snapshot",
    "load_probe",
]
