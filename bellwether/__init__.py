"""bellwether — state-change detection and alert dispatch for system monitors."""

__version__ = "0.1.0"
