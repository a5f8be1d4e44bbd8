"""Tests for clamp_volume."""

from __future__ import annotations

import pytest

from bellwether.ratelimit.volume import clamp_volume


@pytest.mark.parametrize(
    ("requested", "configured_max", "expected"),
    [
        (0.5, 1.0, 0.5),
        (0.9, 0.6, 0.6),
        (1.7, 2.0, 1.0),
        (-0.2, 1.0, 0.0),
    ],
)
def test_clamp_volume(requested: float, configured_max: float, expected: float) -> None:
    assert clamp_volume(requested, configured_max) == expected
