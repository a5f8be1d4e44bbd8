"""Tests for notification channels — Discord HTTP mocking, desktop argv."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
from pydantic import SecretStr

from bellwether.core.config import NotifyConfig
from bellwether.sinks.channels import DesktopChannel, DiscordChannel, build_channels


def _mock_response(status: int = 204, text: str = "") -> AsyncMock:
    resp = AsyncMock()
    resp.status = status
    resp.text = AsyncMock(return_value=text)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def _session(resp: AsyncMock | None = None, error: Exception | None = None) -> MagicMock:
    session = MagicMock()
    if error is not None:
        session.post = MagicMock(side_effect=error)
    else:
        session.post = MagicMock(return_value=resp)
    session.closed = False
    return session


# ── DiscordChannel ──────────────────────────────────────────────


class TestDiscordChannel:
    async def test_send_success(self) -> None:
        ch = DiscordChannel("https://discord.com/api/webhooks/fake")
        session = _session(_mock_response(204))
        ch._session = session

        assert await ch.send("cpu critical") is True
        args, kwargs = session.post.call_args
        assert args[0] == "https://discord.com/api/webhooks/fake"
        assert kwargs["json"] == {"content": "cpu critical"}

    async def test_send_failure_status(self) -> None:
        ch = DiscordChannel("https://discord.com/api/webhooks/fake")
        ch._session = _session(_mock_response(429, "rate limited"))
        assert await ch.send("x") is False

    async def test_send_client_error(self) -> None:
        ch = DiscordChannel("https://discord.com/api/webhooks/fake")
        ch._session = _session(error=aiohttp.ClientConnectionError("down"))
        assert await ch.send("x") is False

    async def test_close(self) -> None:
        ch = DiscordChannel("https://discord.com/api/webhooks/fake")
        session = _session()
        session.close = AsyncMock()
        ch._session = session
        await ch.close()
        session.close.assert_awaited_once()
        assert ch._session is None

    async def test_close_without_session(self) -> None:
        ch = DiscordChannel("https://discord.com/api/webhooks/fake")
        await ch.close()


# ── DesktopChannel ──────────────────────────────────────────────


class TestDesktopChannel:
    def test_macos_argv_escapes_quotes(self) -> None:
        argv = DesktopChannel("Darwin")._argv('say "hi"')
        assert argv[0] == "osascript"
        assert 'say \\"hi\\"' in argv[2]

    def test_linux_uses_notify_send(self) -> None:
        with patch("bellwether.sinks.channels.shutil.which", return_value="/usr/bin/notify-send"):
            assert DesktopChannel("Linux")._argv("hi") == ["notify-send", "bellwether", "hi"]

    async def test_unavailable(self) -> None:
        with patch("bellwether.sinks.channels.shutil.which", return_value=None):
            assert await DesktopChannel("Linux").send("hi") is False

    async def test_send_runs_command(self) -> None:
        proc = MagicMock()
        proc.wait = AsyncMock(return_value=0)
        with patch(
            "bellwether.sinks.channels.asyncio.create_subprocess_exec",
            AsyncMock(return_value=proc),
        ) as spawn:
            assert await DesktopChannel("Darwin").send("hi") is True
        assert spawn.call_args[0][0] == "osascript"


# ── build_channels ──────────────────────────────────────────────


class TestBuildChannels:
    def test_none_by_default(self) -> None:
        assert build_channels(NotifyConfig()) == []

    def test_desktop_and_discord(self) -> None:
        cfg = NotifyConfig(desktop=True, discord_webhook_url=SecretStr("https://d/x"))
        kinds = [type(c) for c in build_channels(cfg)]
        assert kinds == [DesktopChannel, DiscordChannel]
