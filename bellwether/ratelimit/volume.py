"""Volume clamp applied where play actions are dispatched."""

from __future__ import annotations


def clamp_volume(requested: float, configured_max: float = 1.0) -> float:
    """``min(requested, configured_max)``, kept inside [0, 1]."""
    return max(0.0, min(requested, configured_max, 1.0))
