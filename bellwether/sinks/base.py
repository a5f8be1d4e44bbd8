"""Action sink contract — where workflow steps send their side effects."""

from __future__ import annotations

import abc
from typing import Any


class ActionError(Exception):
    """An action sink could not carry out a call."""


class ActionSink(abc.ABC):
    """``play``, ``notify``, ``log`` and ``webhook``; each raises ActionError."""

    @abc.abstractmethod
    async def play(self, sound_ref: str, volume: float) -> None:
        """Start playing a sound. Returns once playback is started."""

    @abc.abstractmethod
    async def notify(self, message: str) -> None:
        """Deliver a user-facing notification."""

    @abc.abstractmethod
    async def log(self, message: str) -> None:
        """Write an action log record."""

    @abc.abstractmethod
    async def webhook(self, url: str, payload: dict[str, Any]) -> None:
        """POST a JSON payload."""

    async def close(self) -> None:
        """Release resources. Default is a no-op."""
