"""Configuration errors raised while compiling triggers and workflows."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Malformed trigger/workflow/monitor configuration.

    Raised at load time, before any scheduler starts. ``source`` names the
    trigger, workflow or monitor the problem was found in.
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source
