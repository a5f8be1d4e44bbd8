"""Resolve ``module:attr`` probe references at configuration time."""

from __future__ import annotations

import importlib
from typing import Any

from bellwether.core.config import MonitorConfig
from bellwether.probes.base import Probe
from bellwether.rules.exceptions import ConfigurationError


def _import_ref(ref: str) -> Any:
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"probe reference must look like 'module:attr', got {ref!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"cannot import probe module {module_name!r}: {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigurationError(f"module {module_name!r} has no attribute {attr!r}") from exc


def load_probe(config: MonitorConfig) -> Probe:
    """Build the probe for a monitor from its ``probe`` reference.

    The reference may name a Probe subclass, a factory callable returning a
    Probe, or a ready Probe instance. ``options`` are passed as keyword
    arguments to the class or factory.
    """
    target = _import_ref(config.probe)
    if isinstance(target, Probe):
        probe = target
    elif callable(target):
        try:
            probe = target(**config.options)
        except TypeError as exc:
            raise ConfigurationError(
                f"monitor {config.id!r}: bad options for {config.probe!r}: {exc}",
                source=config.id,
            ) from exc
    else:
        raise ConfigurationError(
            f"monitor {config.id!r}: {config.probe!r} is not a probe", source=config.id,
        )
    if not isinstance(probe, Probe):
        raise ConfigurationError(
            f"monitor {config.id!r}: {config.probe!r} did not produce a Probe",
            source=config.id,
        )
    return probe
