"""SinkRouter — the default ActionSink, composed from the concrete sinks."""

from __future__ import annotations

from typing import Any

import structlog

from bellwether.core.config import SinksConfig
from bellwether.sinks.base import ActionError, ActionSink
from bellwether.sinks.channels import NotificationChannel, build_channels
from bellwether.sinks.sound import SoundPlayer
from bellwether.sinks.webhook import WebhookClient

# Dedicated structured logger for ``log`` actions.
action_logger = structlog.get_logger("actions")

logger = structlog.get_logger(__name__)


class SinkRouter(ActionSink):
    """Routes each action kind to its sink.

    ``notify`` fans out to every channel and fails only if all of them fail.
    """

    def __init__(
        self,
        sound: SoundPlayer | None = None,
        webhooks: WebhookClient | None = None,
        channels: list[NotificationChannel] | None = None,
    ) -> None:
        self._sound = sound or SoundPlayer()
        self._webhooks = webhooks or WebhookClient()
        self._channels: list[NotificationChannel] = channels or []

    @classmethod
    def from_config(cls, config: SinksConfig) -> SinkRouter:
        return cls(
            sound=SoundPlayer(config.sound),
            webhooks=WebhookClient(config.webhook_timeout_secs),
            channels=build_channels(config.notify),
        )

    async def play(self, sound_ref: str, volume: float) -> None:
        await self._sound.play(sound_ref, volume)

    async def notify(self, message: str) -> None:
        if not self._channels:
            action_logger.info("notify", message=message)
            return
        delivered = 0
        for ch in self._channels:
            try:
                if await ch.send(message):
                    delivered += 1
            except Exception:
                logger.exception("channel_dispatch_error", channel=type(ch).__name__)
        if delivered == 0:
            raise ActionError("notification not delivered on any channel")

    async def log(self, message: str) -> None:
        action_logger.info("action", message=message)

    async def webhook(self, url: str, payload: dict[str, Any]) -> None:
        await self._webhooks.post(url, payload)

    async def wait_for_playback(self, timeout: float | None = None) -> None:
        await self._sound.wait(timeout)

    async def close(self) -> None:
        await self._sound.close()
        await self._webhooks.close()
        for ch in self._channels:
            try:
                await ch.close()
            except Exception:
                logger.exception("channel_close_error", channel=type(ch).__name__)
