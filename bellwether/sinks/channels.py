"""Notification channels — desktop pop-ups and Discord delivery."""

from __future__ import annotations

import abc
import asyncio
import platform
import shutil

import aiohttp
import structlog

from bellwether.core.config import NotifyConfig

logger = structlog.get_logger(__name__)

_TITLE = "bellwether"


class NotificationChannel(abc.ABC):
    """Base class for notification delivery channels."""

    @abc.abstractmethod
    async def send(self, message: str) -> bool:
        """Send a notification. Returns True on success."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class DesktopChannel(NotificationChannel):
    """Native desktop notification via osascript (macOS) or notify-send."""

    def __init__(self, system: str | None = None) -> None:
        self._system = system or platform.system()

    def _argv(self, message: str) -> list[str] | None:
        if self._system == "Darwin":
            escaped = message.replace("\\", "\\\\").replace('"', '\\"')
            return ["osascript", "-e", f'display notification "{escaped}" with title "{_TITLE}"']
        if shutil.which("notify-send"):
            return ["notify-send", _TITLE, message]
        return None

    async def send(self, message: str) -> bool:
        argv = self._argv(message)
        if argv is None:
            logger.warning("desktop_notify_unavailable", system=self._system)
            return False
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            return await proc.wait() == 0
        except OSError:
            logger.exception("desktop_notify_error")
            return False

    async def close(self) -> None:
        return None


class DiscordChannel(NotificationChannel):
    """Delivers notifications via a Discord webhook."""

    def __init__(self, webhook_url: str) -> None:
        self._webhook_url = webhook_url
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def send(self, message: str) -> bool:
        payload = {"content": message}
        try:
            session = self._get_session()
            async with session.post(self._webhook_url, json=payload) as resp:
                if resp.status in (200, 204):
                    return True
                body = await resp.text()
                logger.warning(
                    "discord_send_failed",
                    status=resp.status,
                    body=body[:200],
                )
                return False
        except aiohttp.ClientError:
            logger.exception("discord_send_error")
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


def build_channels(config: NotifyConfig) -> list[NotificationChannel]:
    channels: list[NotificationChannel] = []
    if config.desktop:
        channels.append(DesktopChannel())
    url = config.discord_webhook_url.get_secret_value()
    if url:
        channels.append(DiscordChannel(url))
    return channels
