"""Exception hierarchy for probes."""

from __future__ import annotations


class ProbeError(Exception):
    """A sample could not be taken. Transient: recorded as ``unknown``."""


class ProbeTimeoutError(ProbeError):
    """The probe did not return within its time budget."""
